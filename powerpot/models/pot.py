"""Singleton ledger holding the prize pot."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column

from powerpot.errors import LedgerConflictError, LedgerError, NegativePotBalanceError

from .base import Base
from .draw import MONEY

POT_ID = 1


class Pot(Base):
    """Running balance of the prize pot and ticket sale counters.

    Two writers touch this row: ticket sales (increments) and settlement
    (decrements). Every mutation is a single ``UPDATE`` whose arithmetic runs
    in the database, so concurrent writers never overwrite each other's
    changes. Do not assign to the balance attributes from application code.
    """

    __tablename__ = "pot"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    current_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal(0))
    total_tickets_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_revenue: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal(0))
    cycle_tickets_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("current_balance >= 0", name="balance_non_negative"),
        CheckConstraint("id = 1", name="singleton"),
    )

    def __repr__(self) -> str:
        return (
            f"<Pot(current_balance={self.current_balance}, "
            f"total_tickets_sold={self.total_tickets_sold}, "
            f"cycle_tickets_sold={self.cycle_tickets_sold})>"
        )

    @classmethod
    def ensure(cls, session: Session) -> "Pot":
        """Return the ledger row, creating an empty one on first use."""

        pot = session.get(cls, POT_ID)
        if pot is not None:
            return pot
        pot = cls(
            id=POT_ID,
            current_balance=Decimal(0),
            total_tickets_sold=0,
            total_revenue=Decimal(0),
            cycle_tickets_sold=0,
        )
        session.add(pot)
        session.flush()
        return pot

    @classmethod
    def current(cls, session: Session) -> "Pot":
        """Load the ledger row, bypassing any stale copy in the identity map."""

        pot = session.get(cls, POT_ID, populate_existing=True)
        if pot is None:
            raise LedgerError("Pot ledger row does not exist")
        return pot

    @classmethod
    def balance(cls, session: Session) -> Decimal:
        value = session.scalar(select(cls.current_balance).where(cls.id == POT_ID))
        if value is None:
            raise LedgerError("Pot ledger row does not exist")
        return Decimal(value)

    @classmethod
    def adjust_balance(
        cls,
        session: Session,
        delta: Decimal,
        *,
        expected_current: Optional[Decimal] = None,
    ) -> Decimal:
        """Atomically add ``delta`` to the pot balance and return the new balance.

        Parameters
        ----------
        session : Session
            Session whose transaction the update joins.
        delta : Decimal
            Signed amount to apply.
        expected_current : Optional[Decimal], default: None
            When given, the update only applies if the stored balance still
            equals this value (optimistic concurrency).

        Raises
        ------
        LedgerConflictError
            If ``expected_current`` no longer matches the stored balance.
        NegativePotBalanceError
            If the update would make the balance negative.
        """

        delta = Decimal(delta)
        now = datetime.now(timezone.utc)
        stmt = (
            update(cls)
            .where(cls.id == POT_ID, cls.current_balance + delta >= 0)
            .values(current_balance=cls.current_balance + delta, last_updated=now)
            .execution_options(synchronize_session=False)
        )
        if expected_current is not None:
            stmt = stmt.where(cls.current_balance == Decimal(expected_current))

        result = session.execute(stmt)
        if result.rowcount != 1:
            actual = session.scalar(select(cls.current_balance).where(cls.id == POT_ID))
            if actual is None:
                raise LedgerError("Pot ledger row does not exist")
            actual = Decimal(actual)
            if expected_current is not None and actual != Decimal(expected_current):
                raise LedgerConflictError(Decimal(expected_current), actual)
            raise NegativePotBalanceError(
                f"Applying {delta} to pot balance {actual} would make it negative"
            )
        return cls.balance(session)

    @classmethod
    def record_ticket_sale(
        cls, session: Session, price: Decimal, *, count: int = 1
    ) -> None:
        """Credit ``count`` tickets at ``price`` to the pot and its counters."""

        if count < 1:
            raise ValueError("count must be positive")
        price = Decimal(price)
        if price < 0:
            raise ValueError("price must not be negative")
        amount = price * count
        now = datetime.now(timezone.utc)
        result = session.execute(
            update(cls)
            .where(cls.id == POT_ID)
            .values(
                current_balance=cls.current_balance + amount,
                total_revenue=cls.total_revenue + amount,
                total_tickets_sold=cls.total_tickets_sold + count,
                cycle_tickets_sold=cls.cycle_tickets_sold + count,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LedgerError("Pot ledger row does not exist")

    @classmethod
    def clear_cycle_tickets(cls, session: Session, sold_in_cycle: int) -> None:
        """Subtract the cycle's ticket count, keeping sales made after the snapshot."""

        if sold_in_cycle <= 0:
            return
        now = datetime.now(timezone.utc)
        session.execute(
            update(cls)
            .where(cls.id == POT_ID, cls.cycle_tickets_sold >= sold_in_cycle)
            .values(
                cycle_tickets_sold=cls.cycle_tickets_sold - sold_in_cycle,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )


__all__ = ["POT_ID", "Pot"]
