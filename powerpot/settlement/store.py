"""Transactional persistence used by the settlement engine.

Every public method runs in its own short transaction opened from the
``sessionmaker`` it is given, so each settlement step is durable on its own:
a committed Draw survives a later payout failure, and one winner's payout
update never rolls back another's.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from powerpot.db.utils import as_utc
from powerpot.models import (
    Draw,
    PayoutStatus,
    Player,
    Pot,
    SettlementLock,
    SettlementRun,
    Ticket,
    WinRecord,
)


@dataclass(frozen=True)
class EligibleTicket:
    """Read-only view of a ticket taking part in a draw."""

    ticket_id: int
    wallet_address: str
    numbers: tuple[int, ...]
    powerball: int
    created_at: datetime


@dataclass(frozen=True)
class NewWinRecord:
    """Values for a WinRecord about to be inserted."""

    ticket_id: int
    wallet_address: str
    match_count: int
    powerball_match: bool
    tier: int
    prize_amount: Decimal


@dataclass(frozen=True)
class PayoutInstruction:
    """One prize to disburse."""

    win_record_id: int
    wallet_address: str
    amount: Decimal
    tier: Optional[int] = None


@dataclass(frozen=True)
class PotSnapshot:
    balance: Decimal
    cycle_tickets_sold: int
    taken_at: datetime
    outstanding_prizes: Decimal = Decimal(0)
    """Prizes of earlier draws that are still owed (``disbursed = false``)."""

    def available(self, reserve_outstanding: bool = True) -> Decimal:
        """Balance left for a new draw once earlier unpaid prizes are set aside."""
        if not reserve_outstanding:
            return self.balance
        return max(self.balance - self.outstanding_prizes, Decimal(0))


class SettlementStore:
    """Draw, ticket, WinRecord and pot access for one database."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def session(self) -> Session:
        return self._session_factory()

    def bootstrap(self, lock_name: Optional[str] = None) -> None:
        """Create the pot row and (optionally) a lock row if they are missing."""

        with self._session_factory.begin() as session:
            Pot.ensure(session)
        if lock_name is not None:
            self.ensure_lock(lock_name)

    # -------- draws --------
    def insert_draw(
        self,
        winning_numbers: Sequence[int],
        powerball: int,
        *,
        drawn_at: Optional[datetime] = None,
    ) -> Draw:
        with self._session_factory.begin() as session:
            draw = Draw(
                winning_numbers=list(winning_numbers),
                powerball=powerball,
                drawn_at=drawn_at or datetime.now(timezone.utc),
            )
            session.add(draw)
            session.flush()
            # Detach so the loaded attributes outlive the transaction.
            session.expunge(draw)
        return draw

    # -------- tickets --------
    def list_eligible_tickets(
        self, since: datetime, until: Optional[datetime] = None
    ) -> list[EligibleTicket]:
        """Return tickets created in ``[since, until]`` with their owner wallet."""

        stmt = (
            select(Ticket, Player.wallet_address)
            .join(Player, Player.id == Ticket.player_id)
            .where(Ticket.created_at >= since)
            .order_by(Ticket.created_at.asc(), Ticket.id.asc())
        )
        if until is not None:
            stmt = stmt.where(Ticket.created_at <= until)

        with self._session_factory() as session:
            rows = session.execute(stmt).all()
            return [
                EligibleTicket(
                    ticket_id=ticket.id,
                    wallet_address=wallet,
                    numbers=tuple(ticket.numbers),
                    powerball=ticket.powerball,
                    created_at=as_utc(ticket.created_at),
                )
                for ticket, wallet in rows
            ]

    # -------- win records --------
    def insert_win_records(
        self, draw_id: int, batch: Sequence[NewWinRecord]
    ) -> list[PayoutInstruction]:
        """Insert all WinRecords of a draw in a single transaction.

        Returns one payout instruction per record, in input order.
        """

        with self._session_factory.begin() as session:
            records = [
                WinRecord(
                    ticket_id=entry.ticket_id,
                    draw_id=draw_id,
                    match_count=entry.match_count,
                    powerball_match=entry.powerball_match,
                    tier=entry.tier,
                    prize_amount=entry.prize_amount,
                    disbursed=False,
                    payout_status=PayoutStatus.PENDING,
                    attempts=0,
                )
                for entry in batch
            ]
            session.add_all(records)
            session.flush()
            return [
                PayoutInstruction(
                    win_record_id=record.id,
                    wallet_address=entry.wallet_address,
                    amount=entry.prize_amount,
                    tier=entry.tier,
                )
                for record, entry in zip(records, batch)
            ]

    def list_win_records(self, draw_id: int) -> list[WinRecord]:
        with self._session_factory() as session:
            records = list(
                session.scalars(
                    select(WinRecord)
                    .where(WinRecord.draw_id == draw_id)
                    .order_by(WinRecord.id.asc())
                ).all()
            )
            session.expunge_all()
            return records

    def list_unpaid_win_records(
        self, draw_id: int, *, include_unreconciled: bool = False
    ) -> list[PayoutInstruction]:
        """Payout instructions for records of ``draw_id`` that still need paying."""

        statuses = list(PayoutStatus.RETRYABLE)
        if include_unreconciled:
            statuses.append(PayoutStatus.NEEDS_RECONCILIATION)
        stmt = (
            select(WinRecord.id, WinRecord.prize_amount, WinRecord.tier, Player.wallet_address)
            .join(Ticket, Ticket.id == WinRecord.ticket_id)
            .join(Player, Player.id == Ticket.player_id)
            .where(
                WinRecord.draw_id == draw_id,
                WinRecord.disbursed.is_(False),
                WinRecord.payout_status.in_(statuses),
            )
            .order_by(WinRecord.id.asc())
        )
        with self._session_factory() as session:
            return [
                PayoutInstruction(
                    win_record_id=row.id,
                    wallet_address=row.wallet_address,
                    amount=Decimal(row.prize_amount),
                    tier=row.tier,
                )
                for row in session.execute(stmt).all()
            ]

    def claim_win_record(
        self, win_record_id: int, *, include_unreconciled: bool = False
    ) -> bool:
        """Mark an unpaid record as in flight; ``False`` if it is not claimable.

        The conditional update is what keeps a record from being paid twice
        when two disbursement passes overlap.
        """

        statuses = list(PayoutStatus.RETRYABLE)
        if include_unreconciled:
            statuses.append(PayoutStatus.NEEDS_RECONCILIATION)
        with self._session_factory.begin() as session:
            result = session.execute(
                update(WinRecord)
                .where(
                    WinRecord.id == win_record_id,
                    WinRecord.disbursed.is_(False),
                    WinRecord.payout_status.in_(statuses),
                )
                .values(
                    payout_status=PayoutStatus.IN_FLIGHT,
                    attempts=WinRecord.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def update_win_record(
        self,
        win_record_id: int,
        *,
        status: str,
        reference: Optional[str] = None,
        error: Optional[str] = None,
        disbursed_at: Optional[datetime] = None,
        expected_status: Optional[str] = None,
    ) -> None:
        """Record the outcome of a payout attempt on an in-flight record.

        With ``expected_status`` the write only applies while the record is
        still in that status.
        """

        if status not in PayoutStatus.ALL:
            raise ValueError(f"Unknown payout status '{status}'")
        disbursed = status in (PayoutStatus.PAID, PayoutStatus.ZERO_PRIZE)
        values: dict = {
            "payout_status": status,
            "disbursed": disbursed,
            "last_error": error,
        }
        if disbursed:
            values["payout_reference"] = reference
            values["disbursed_at"] = disbursed_at or datetime.now(timezone.utc)
        conditions = [WinRecord.id == win_record_id, WinRecord.disbursed.is_(False)]
        if expected_status is not None:
            conditions.append(WinRecord.payout_status == expected_status)
        with self._session_factory.begin() as session:
            result = session.execute(
                update(WinRecord)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValueError(
                    f"WinRecord {win_record_id} does not exist, is already disbursed "
                    f"or is no longer {expected_status or 'open'}"
                )

    def transition_win_record(
        self,
        win_record_id: int,
        from_status: str,
        to_status: str,
        *,
        error: Optional[str] = None,
    ) -> bool:
        """Move an undisbursed record between statuses; ``False`` if it was not in ``from_status``."""

        if to_status not in PayoutStatus.ALL or to_status in (
            PayoutStatus.PAID,
            PayoutStatus.ZERO_PRIZE,
        ):
            raise ValueError(f"Cannot transition a WinRecord to '{to_status}'")
        with self._session_factory.begin() as session:
            result = session.execute(
                update(WinRecord)
                .where(
                    WinRecord.id == win_record_id,
                    WinRecord.disbursed.is_(False),
                    WinRecord.payout_status == from_status,
                )
                .values(payout_status=to_status, last_error=error)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def close_zero_prize(self, win_record_id: int) -> bool:
        """Settle a zero-amount record without a transfer."""

        with self._session_factory.begin() as session:
            result = session.execute(
                update(WinRecord)
                .where(
                    WinRecord.id == win_record_id,
                    WinRecord.disbursed.is_(False),
                    WinRecord.prize_amount == 0,
                )
                .values(
                    payout_status=PayoutStatus.ZERO_PRIZE,
                    disbursed=True,
                    disbursed_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # -------- pot --------
    def get_pot_balance(self) -> Decimal:
        with self._session_factory() as session:
            return Pot.balance(session)

    def pot_snapshot(self) -> PotSnapshot:
        with self._session_factory() as session:
            pot = Pot.current(session)
            return PotSnapshot(
                balance=Decimal(pot.current_balance),
                cycle_tickets_sold=pot.cycle_tickets_sold,
                taken_at=datetime.now(timezone.utc),
                outstanding_prizes=self._outstanding(session),
            )

    def outstanding_prize_total(self) -> Decimal:
        """Sum of every prize that has been allocated but not yet disbursed."""

        with self._session_factory() as session:
            return self._outstanding(session)

    @staticmethod
    def _outstanding(session: Session) -> Decimal:
        total = session.scalar(
            select(func.coalesce(func.sum(WinRecord.prize_amount), 0)).where(
                WinRecord.disbursed.is_(False)
            )
        )
        return Decimal(total or 0)

    def update_pot_balance(
        self, delta: Decimal, *, expected_current: Optional[Decimal] = None
    ) -> Decimal:
        with self._session_factory.begin() as session:
            return Pot.adjust_balance(session, delta, expected_current=expected_current)

    def clear_cycle_tickets(self, sold_in_cycle: int) -> None:
        with self._session_factory.begin() as session:
            Pot.clear_cycle_tickets(session, sold_in_cycle)

    def record_ticket_sale(self, price: Decimal, *, count: int = 1) -> None:
        with self._session_factory.begin() as session:
            Pot.record_ticket_sale(session, price, count=count)

    # -------- lock --------
    def ensure_lock(self, name: str) -> None:
        with self._session_factory() as session:
            if session.get(SettlementLock, name) is not None:
                return
        try:
            with self._session_factory.begin() as session:
                session.add(SettlementLock(name=name))
        except IntegrityError:
            # Created concurrently by another contender.
            pass

    def try_acquire_lock(
        self, name: str, holder: str, *, stale_before: Optional[datetime] = None
    ) -> bool:
        """Take ``name`` for ``holder`` if it is free (or its holder went stale)."""

        free = SettlementLock.holder.is_(None)
        if stale_before is not None:
            free = or_(
                free,
                and_(
                    SettlementLock.acquired_at.isnot(None),
                    SettlementLock.acquired_at < stale_before,
                ),
            )
        with self._session_factory.begin() as session:
            result = session.execute(
                update(SettlementLock)
                .where(SettlementLock.name == name, free)
                .values(holder=holder, acquired_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def release_lock(self, name: str, holder: str) -> bool:
        with self._session_factory.begin() as session:
            result = session.execute(
                update(SettlementLock)
                .where(SettlementLock.name == name, SettlementLock.holder == holder)
                .values(holder=None, acquired_at=None)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # -------- runs --------
    def start_run(self) -> int:
        with self._session_factory.begin() as session:
            run = SettlementRun(state="idle")
            session.add(run)
            session.flush()
            return run.id

    def update_run(self, run_id: int, **values) -> None:
        with self._session_factory.begin() as session:
            session.execute(
                update(SettlementRun)
                .where(SettlementRun.id == run_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )


__all__ = [
    "EligibleTicket",
    "NewWinRecord",
    "PayoutInstruction",
    "PotSnapshot",
    "SettlementStore",
]
