from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from powerpot.db.metadata import metadata_obj

# Surrogate keys for high-volume tables; SQLite only autoincrements INTEGER.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Declarative base bound to the shared naming-convention metadata."""

    metadata = metadata_obj
