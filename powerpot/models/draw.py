"""Database models for draws and their per-ticket outcomes."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, object_session, relationship

from .base import ID_TYPE, Base
from .utils import normalize_main_numbers, validate_powerball

if TYPE_CHECKING:
    from .ticket import Ticket


# Amounts are carried with lamport precision (9 decimal places).
MONEY = Numeric(20, 9, asdecimal=True)


class PayoutStatus:
    """Lifecycle of a single prize disbursement."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    PAID = "paid"
    FAILED = "failed"
    NEEDS_RECONCILIATION = "needs_reconciliation"
    ZERO_PRIZE = "zero_prize"

    ALL = (PENDING, IN_FLIGHT, PAID, FAILED, NEEDS_RECONCILIATION, ZERO_PRIZE)
    RETRYABLE = (PENDING, FAILED)


class Draw(Base):
    """Winning combination produced for one settlement cycle.

    A draw is written once by the generator and never modified.
    """

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Primary key."""

    winning_numbers: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    """Five distinct winning numbers in [1, 30], sorted ascending."""

    powerball: Mapped[int] = mapped_column(Integer, nullable=False)
    """Winning powerball in [1, 10]."""

    drawn_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    """Timestamp of the draw; the eligibility window ends here."""

    win_records: Mapped[list["WinRecord"]] = relationship(back_populates="draw")
    """Outcomes of every winning ticket for this draw."""

    def __init__(
        self,
        *,
        winning_numbers: list[int],
        powerball: int,
        drawn_at: Optional[datetime] = None,
    ) -> None:
        self.winning_numbers = normalize_main_numbers(winning_numbers)
        self.powerball = validate_powerball(powerball)
        if drawn_at is not None:
            self.drawn_at = drawn_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Draw(id={id}, winning_numbers={nums}, powerball={pb})>".format(
            id=self.id,
            nums=self.winning_numbers,
            pb=self.powerball,
        )

    @classmethod
    def latest(cls, session: Session) -> Optional["Draw"]:
        """Return the most recent draw, if any."""

        stmt = select(cls).order_by(cls.drawn_at.desc(), cls.id.desc())
        return session.scalars(stmt).first()


@event.listens_for(Draw, "before_update")
def _reject_draw_mutation(mapper, connection, target: Draw) -> None:
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise ValueError("Draw records are immutable once persisted")


class WinRecord(Base):
    """Audit record of a winning ticket for a draw, including payout status."""

    __tablename__ = "win_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Surrogate primary key."""

    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    """Winning ticket."""

    draw_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    """Draw the ticket won."""

    match_count: Mapped[int] = mapped_column(Integer, nullable=False)
    """Size of the intersection between ticket and winning numbers."""

    powerball_match: Mapped[bool] = mapped_column(Boolean, nullable=False)
    """Whether the ticket's powerball equals the winning powerball."""

    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    """Prize tier (1 = jackpot ... 6 = three numbers)."""

    prize_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    """Allocated prize; may legitimately be zero when the pot is empty or clamped."""

    disbursed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """``True`` once the prize has been transferred (or closed as a zero prize)."""

    payout_status: Mapped[str] = mapped_column(
        String(24), nullable=False, default=PayoutStatus.PENDING
    )
    """One of :attr:`PayoutStatus.ALL`."""

    payout_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    """Transaction signature returned by the payment sender."""

    disbursed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """When the transfer was confirmed."""

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Failure reason of the most recent payout attempt."""

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Number of transfer attempts made."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="win_records")
    draw: Mapped["Draw"] = relationship(back_populates="win_records")

    __table_args__ = (
        UniqueConstraint("ticket_id", "draw_id", name="uq_win_record_ticket_draw"),
        CheckConstraint("match_count >= 0 AND match_count <= 5", name="match_count_range"),
        CheckConstraint("tier >= 1 AND tier <= 6", name="tier_range"),
        CheckConstraint("prize_amount >= 0", name="prize_non_negative"),
        CheckConstraint(
            "payout_status IN ('pending','in_flight','paid','failed',"
            "'needs_reconciliation','zero_prize')",
            name="payout_status_enum",
        ),
        Index("ix_win_records_draw_disbursed", "draw_id", "disbursed"),
    )

    def __repr__(self) -> str:
        return (
            f"<WinRecord(id={self.id}, draw_id={self.draw_id}, ticket_id={self.ticket_id}, "
            f"tier={self.tier}, prize_amount={self.prize_amount}, status='{self.payout_status}')>"
        )


__all__ = ["Draw", "MONEY", "PayoutStatus", "WinRecord"]
