from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .ticket import Ticket


class Player(Base):
    """Ticket owner identified by the wallet that receives payouts."""

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="player")

    @validates("wallet_address")
    def _normalize_wallet(self, _key: str, value: str) -> str:
        if value is None:
            raise ValueError("wallet_address must not be None")
        normalized = value.strip()
        if not normalized:
            raise ValueError("wallet_address must not be empty")
        return normalized

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, wallet_address='{self.wallet_address}')>"

    @classmethod
    def get_by_wallet(cls, session: Session, wallet_address: str) -> Optional["Player"]:
        """Get a player by their wallet address."""
        return session.scalar(
            select(cls).where(cls.wallet_address == wallet_address.strip())
        )
