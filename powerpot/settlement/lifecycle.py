"""State machine that runs one complete draw settlement."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from powerpot.blockchain.sender import PaymentSender
from powerpot.config import ResiduePolicy, SettlementConfig
from powerpot.db.utils import as_utc
from powerpot.errors import (
    AllocationInvariantError,
    DrawGenerationError,
    LedgerError,
    SettlementError,
    TicketReadError,
    WinRecordPersistenceError,
)

from .allocation import AllocationPlan, allocate
from .draw_generator import DrawGenerator
from .locking import SettlementLockGuard
from .matching import count_winners_by_tier, evaluate
from .payouts import PayoutOrchestrator, PayoutOutcome, PayoutReport
from .store import NewWinRecord, PotSnapshot, SettlementStore

logger = logging.getLogger(__name__)

Announcer = Callable[[dict], None]


class SettlementState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    EVALUATING = "evaluating"
    ALLOCATING = "allocating"
    PERSISTING = "persisting"
    DISBURSING = "disbursing"
    RESETTING = "resetting"
    DONE = "done"
    FAILED = "failed"


# Error kind reported for unexpected exceptions raised in each stage.
STAGE_FAILURE_KINDS = {
    SettlementState.IDLE: LedgerError.kind,
    SettlementState.GENERATING: DrawGenerationError.kind,
    SettlementState.EVALUATING: TicketReadError.kind,
    SettlementState.ALLOCATING: AllocationInvariantError.kind,
    SettlementState.PERSISTING: WinRecordPersistenceError.kind,
    SettlementState.DISBURSING: SettlementError.kind,
    SettlementState.RESETTING: LedgerError.kind,
}


@dataclass(frozen=True)
class SettlementFailure:
    stage: SettlementState
    kind: str
    message: str


@dataclass
class SettlementResult:
    """Structured outcome of :meth:`SettlementController.run`."""

    run_id: Optional[int] = None
    state: SettlementState = SettlementState.IDLE
    transitions: list[SettlementState] = field(
        default_factory=lambda: [SettlementState.IDLE]
    )
    draw_id: Optional[int] = None
    winning_numbers: tuple[int, ...] = ()
    powerball: Optional[int] = None
    eligible_tickets: int = 0
    winner_count: int = 0
    winners_by_tier: dict[int, int] = field(default_factory=dict)
    pot_balance: Decimal = Decimal(0)
    reserved_for_unpaid: Decimal = Decimal(0)
    winner_pool: Decimal = Decimal(0)
    revenue_share: Decimal = Decimal(0)
    total_allocated: Decimal = Decimal(0)
    residue: Decimal = Decimal(0)
    total_disbursed: Decimal = Decimal(0)
    pot_debit: Decimal = Decimal(0)
    outcomes: list[PayoutOutcome] = field(default_factory=list)
    failure: Optional[SettlementFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.state is SettlementState.DONE

    def summary(self) -> dict:
        """JSON-friendly digest handed to announcement sinks and operators."""
        data = {
            "run_id": self.run_id,
            "state": self.state.value,
            "draw_id": self.draw_id,
            "winning_numbers": list(self.winning_numbers),
            "powerball": self.powerball,
            "eligible_tickets": self.eligible_tickets,
            "winner_count": self.winner_count,
            "winners_by_tier": {str(k): v for k, v in self.winners_by_tier.items()},
            "pot_balance": str(self.pot_balance),
            "reserved_for_unpaid": str(self.reserved_for_unpaid),
            "total_allocated": str(self.total_allocated),
            "total_disbursed": str(self.total_disbursed),
            "outcomes": [o.as_dict() for o in self.outcomes],
        }
        if self.failure is not None:
            data["failure"] = {
                "stage": self.failure.stage.value,
                "kind": self.failure.kind,
                "message": self.failure.message,
            }
        return data


def pot_debit_for(
    policy: ResiduePolicy,
    snapshot: PotSnapshot,
    plan: AllocationPlan,
    report: PayoutReport,
) -> Decimal:
    """Amount to take out of the pot once a cycle with winners has paid out."""

    if policy is ResiduePolicy.ZERO:
        return snapshot.balance
    if policy is ResiduePolicy.RETAIN:
        return report.total_disbursed + plan.revenue_share + plan.residue
    return report.total_disbursed


class SettlementController:
    """Sequence generate, evaluate, allocate, persist, disburse and reset.

    Only one controller run may be active at a time across every process
    sharing the database; a concurrent trigger is rejected with
    :class:`~powerpot.errors.SettlementInProgressError`.

    Parameters
    ----------
    store : SettlementStore
        Transactional store for draws, tickets, WinRecords and the pot.
    sender : PaymentSender
        Payment backend used for disbursement.
    config : Optional[SettlementConfig], default: None
        Settlement parameters; defaults to :class:`SettlementConfig()`.
    generator : Optional[DrawGenerator], default: None
        Source of winning combinations.
    lock : Optional[SettlementLockGuard], default: None
        Single-flight guard; defaults to the database lock row.
    announcer : Optional[Callable[[dict], None]], default: None
        Best-effort sink called with :meth:`SettlementResult.summary` after a
        successful cycle.
    clock : Optional[Callable[[], datetime]], default: None
        Returns the draw timestamp; defaults to the current UTC time.
    """

    def __init__(
        self,
        store: SettlementStore,
        sender: PaymentSender,
        *,
        config: Optional[SettlementConfig] = None,
        generator: Optional[DrawGenerator] = None,
        lock: Optional[SettlementLockGuard] = None,
        announcer: Optional[Announcer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or SettlementConfig()
        self.generator = generator or DrawGenerator()
        self.lock = lock or SettlementLockGuard(
            store, stale_after=self.config.lock_stale_after
        )
        self.announcer = announcer
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.orchestrator = PayoutOrchestrator(
            store,
            sender,
            treasury_account=self.config.treasury_account,
            max_workers=self.config.payout_concurrency,
            transfer_timeout=self.config.payout_timeout,
        )

    def run(self) -> SettlementResult:
        """Run one settlement cycle to ``DONE`` or ``FAILED``.

        Raises
        ------
        SettlementInProgressError
            If another settlement is already running.
        """

        token = self.lock.acquire()
        result = SettlementResult()
        try:
            try:
                result.run_id = self.store.start_run()
            except Exception:
                logger.exception("Could not create settlement run record")
            self._execute(result)
        finally:
            self.lock.release(token)

        if result.succeeded:
            self._announce(result)
        return result

    # -------- stages --------
    def _execute(self, result: SettlementResult) -> None:
        stage = SettlementState.IDLE
        try:
            snapshot = self.store.pot_snapshot()
            result.pot_balance = snapshot.balance
            # Prizes still owed by earlier draws stay in the pot for their resume.
            reserve = self.config.residue_policy is not ResiduePolicy.ZERO
            available = snapshot.available(reserve_outstanding=reserve)
            result.reserved_for_unpaid = snapshot.balance - available
            if result.reserved_for_unpaid > 0:
                logger.info(
                    f"Setting aside {result.reserved_for_unpaid} of the pot for "
                    "unpaid prizes of earlier draws"
                )

            stage = self._enter(result, SettlementState.GENERATING)
            draw = self.generator.generate(self.store, drawn_at=self.clock())
            result.draw_id = draw.id
            result.winning_numbers = tuple(draw.winning_numbers)
            result.powerball = draw.powerball
            self._record_run(result, draw_id=draw.id)

            stage = self._enter(result, SettlementState.EVALUATING)
            drawn_at = as_utc(draw.drawn_at)
            try:
                tickets = self.store.list_eligible_tickets(
                    drawn_at - self.config.eligibility_window, drawn_at
                )
            except Exception as exc:
                raise TicketReadError(f"Could not load eligible tickets: {exc}") from exc
            result.eligible_tickets = len(tickets)

            winners = []
            for ticket in tickets:
                match = evaluate(ticket, draw)
                if match.is_winner:
                    winners.append((ticket, match))
            logger.info(
                f"Draw {draw.id}: {len(tickets)} eligible tickets, {len(winners)} winners"
            )

            if winners:
                stage = self._enter(result, SettlementState.ALLOCATING)
                counts = count_winners_by_tier(match.tier for _, match in winners)
                plan = allocate(
                    available,
                    counts,
                    winner_share=self.config.winner_share,
                    tier_fractions=self.config.tier_fractions,
                    quantum=self.config.payout_quantum,
                )
                result.winner_count = plan.winner_count
                result.winners_by_tier = {t: n for t, n in counts.items() if n}
                result.winner_pool = plan.winner_pool
                result.revenue_share = plan.revenue_share
                result.total_allocated = plan.total_allocated
                result.residue = plan.residue

                stage = self._enter(result, SettlementState.PERSISTING)
                batch = [
                    NewWinRecord(
                        ticket_id=ticket.ticket_id,
                        wallet_address=ticket.wallet_address,
                        match_count=match.match_count,
                        powerball_match=match.powerball_match,
                        tier=int(match.tier),
                        prize_amount=plan.per_winner(int(match.tier)),
                    )
                    for ticket, match in winners
                ]
                try:
                    instructions = self.store.insert_win_records(draw.id, batch)
                except Exception as exc:
                    raise WinRecordPersistenceError(
                        f"Could not persist {len(batch)} win records for draw {draw.id}: {exc}"
                    ) from exc

                stage = self._enter(result, SettlementState.DISBURSING)
                report = self.orchestrator.disburse(instructions)
                result.outcomes = list(report.outcomes)
                result.total_disbursed = report.total_disbursed

                stage = self._enter(result, SettlementState.RESETTING)
                debit = pot_debit_for(self.config.residue_policy, snapshot, plan, report)
                if debit > 0:
                    self.store.update_pot_balance(-debit)
                result.pot_debit = debit
            else:
                stage = self._enter(result, SettlementState.RESETTING)

            self.store.clear_cycle_tickets(snapshot.cycle_tickets_sold)
            self._enter(result, SettlementState.DONE)
            self._record_run(
                result,
                winner_count=result.winner_count,
                total_allocated=result.total_allocated,
                total_disbursed=result.total_disbursed,
                finished_at=datetime.now(timezone.utc),
            )
            logger.info(
                f"Settlement of draw {result.draw_id} done: {result.winner_count} winners, "
                f"{result.total_disbursed} disbursed, pot debited by {result.pot_debit}"
            )
        except Exception as exc:
            self._fail(result, stage, exc)

    def _enter(self, result: SettlementResult, state: SettlementState) -> SettlementState:
        logger.info(f"Settlement run {result.run_id}: {result.state.value} -> {state.value}")
        result.state = state
        result.transitions.append(state)
        self._record_run(result, state=state.value)
        return state

    def _fail(self, result: SettlementResult, stage: SettlementState, exc: Exception) -> None:
        if isinstance(exc, SettlementError):
            kind = exc.kind
        else:
            kind = STAGE_FAILURE_KINDS.get(stage, SettlementError.kind)
        result.failure = SettlementFailure(stage=stage, kind=kind, message=str(exc))
        result.state = SettlementState.FAILED
        result.transitions.append(SettlementState.FAILED)
        logger.error(
            f"Settlement run {result.run_id} failed while {stage.value} ({kind}): {exc}",
            exc_info=not isinstance(exc, SettlementError),
        )
        self._record_run(
            result,
            state=SettlementState.FAILED.value,
            failure_stage=stage.value,
            failure_kind=kind,
            failure_message=str(exc),
            total_disbursed=result.total_disbursed,
            finished_at=datetime.now(timezone.utc),
        )

    def _record_run(self, result: SettlementResult, **values) -> None:
        if result.run_id is None:
            return
        try:
            self.store.update_run(result.run_id, **values)
        except Exception:
            logger.exception(f"Could not update settlement run {result.run_id}")

    def _announce(self, result: SettlementResult) -> None:
        if self.announcer is None:
            return
        try:
            self.announcer(result.summary())
        except Exception:
            logger.exception(f"Announcement of draw {result.draw_id} failed; ignoring")


__all__ = [
    "SettlementController",
    "SettlementFailure",
    "SettlementResult",
    "SettlementState",
    "pot_debit_for",
]
