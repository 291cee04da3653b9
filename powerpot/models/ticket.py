from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .base import ID_TYPE, Base
from .utils import normalize_main_numbers, validate_powerball

if TYPE_CHECKING:
    from .draw import WinRecord
    from .player import Player


class Ticket(Base):
    """A purchased pick of five numbers and a powerball.

    Tickets are written once at purchase time and only read by settlement.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    player_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("players.id", ondelete="CASCADE"), nullable=False, index=True
    )
    """Owner of the ticket."""

    numbers: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    """Five distinct numbers in [1, 30], stored sorted ascending."""

    powerball: Mapped[int] = mapped_column(Integer, nullable=False)
    """Powerball pick in [1, 10]."""

    transaction_hash: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    """On-chain purchase transaction; shared by tickets bought together."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    """Purchase timestamp; drives draw eligibility."""

    player: Mapped["Player"] = relationship(back_populates="tickets")
    win_records: Mapped[list["WinRecord"]] = relationship(back_populates="ticket")

    __table_args__ = (Index("ix_tickets_created_at", "created_at"),)

    def __init__(
        self,
        *,
        numbers: list[int],
        powerball: int,
        transaction_hash: str,
        player: Optional["Player"] = None,
        player_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.numbers = numbers
        self.powerball = powerball
        self.transaction_hash = transaction_hash
        if player is not None:
            self.player = player
        if player_id is not None:
            self.player_id = player_id
        if created_at is not None:
            self.created_at = created_at

    @validates("numbers")
    def _validate_numbers(self, _key: str, value: list[int]) -> list[int]:
        return normalize_main_numbers(value)

    @validates("powerball")
    def _validate_powerball(self, _key: str, value: int) -> int:
        return validate_powerball(value)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Ticket(id={self.id}, player_id={self.player_id}, "
            f"numbers={self.numbers}, powerball={self.powerball})>"
        )
