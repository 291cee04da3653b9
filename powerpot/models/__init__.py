from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .player import Player  # noqa: F401
from .ticket import Ticket  # noqa: F401
from .draw import Draw, PayoutStatus, WinRecord  # noqa: F401
from .pot import POT_ID, Pot  # noqa: F401
from .settlement import SettlementLock, SettlementRun  # noqa: F401

__all__ = [
    "Base",
    "Player",
    "Ticket",
    "Draw",
    "PayoutStatus",
    "WinRecord",
    "POT_ID",
    "Pot",
    "SettlementLock",
    "SettlementRun",
]
