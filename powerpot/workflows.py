import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .config import DEFAULT_TICKET_PRICE, ResiduePolicy, SettlementConfig
from .models import Draw, PayoutStatus, Player, Pot, Ticket, WinRecord
from .settlement.draw_generator import DrawGenerator
from .settlement.lifecycle import SettlementController, SettlementResult
from .settlement.locking import SettlementLockGuard
from .settlement.payouts import PayoutOrchestrator, PayoutReport
from .settlement.store import SettlementStore

if TYPE_CHECKING:
    from .blockchain.sender import PaymentSender

logger = logging.getLogger(__name__)


def _default_sender() -> "PaymentSender":
    from .blockchain.api import ChainClient

    return ChainClient()


def register_ticket(
    session: Session,
    player: Player,
    numbers: Sequence[int],
    powerball: int,
    transaction_hash: str,
    *,
    price: Decimal = DEFAULT_TICKET_PRICE,
) -> Ticket:
    """Persist a purchased ticket and credit its price to the pot.

    The pot increment is a single atomic ``UPDATE``, so a settlement running
    at the same time never loses the sale.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session. The caller commits.
    player : Player
        Owner of the ticket.
    numbers : Sequence[int]
        Five distinct numbers in [1, 30].
    powerball : int
        Powerball pick in [1, 10].
    transaction_hash : str
        On-chain purchase transaction.
    price : Decimal, default: 0.05
        Amount credited to the pot.

    Returns
    -------
    Ticket
        The flushed ticket with its ``id`` populated.

    Raises
    ------
    ValueError
        If the pick is invalid or ``transaction_hash`` is empty.
    """

    return register_tickets(
        session, player, [(numbers, powerball)], transaction_hash, price=price
    )[0]


def register_tickets(
    session: Session,
    player: Player,
    picks: Sequence[tuple[Sequence[int], int]],
    transaction_hash: str,
    *,
    price: Decimal = DEFAULT_TICKET_PRICE,
) -> list[Ticket]:
    """Persist a bulk purchase paid by one transaction.

    Every pick is validated before anything is written, so an invalid pick
    rejects the whole purchase.
    """

    if not picks:
        raise ValueError("At least one ticket is required")
    if not transaction_hash or not transaction_hash.strip():
        raise ValueError("transaction_hash is required")

    tickets = [
        Ticket(
            numbers=list(numbers),
            powerball=powerball,
            transaction_hash=transaction_hash.strip(),
            player=player,
        )
        for numbers, powerball in picks
    ]
    Pot.ensure(session)
    session.add_all(tickets)
    session.flush()
    Pot.record_ticket_sale(session, price, count=len(tickets))
    logger.info(
        f"Registered {len(tickets)} ticket(s) for {player.wallet_address} "
        f"(tx {transaction_hash})"
    )
    return tickets


def run_settlement(
    session_factory: sessionmaker,
    *,
    sender: Optional["PaymentSender"] = None,
    config: Optional[SettlementConfig] = None,
    announcer: Optional[Callable[[dict], None]] = None,
    generator: Optional[DrawGenerator] = None,
) -> SettlementResult:
    """Run one full settlement cycle.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory for the database holding tickets, draws and the pot.
    sender : Optional[PaymentSender], default: None
        Payment backend. A :class:`~powerpot.blockchain.api.ChainClient` is
        created from the environment when omitted.
    config : Optional[SettlementConfig], default: None
        Settlement parameters; read from the environment when omitted.
    announcer : Optional[Callable[[dict], None]], default: None
        Best-effort sink for the result summary.
    generator : Optional[DrawGenerator], default: None
        Source of the winning combination.

    Returns
    -------
    SettlementResult
        Terminal state (``DONE`` or ``FAILED``) with totals and per-winner
        outcomes.

    Raises
    ------
    SettlementInProgressError
        If another settlement is already running.
    """

    config = config or SettlementConfig.from_env()
    store = SettlementStore(session_factory)
    store.bootstrap()
    controller = SettlementController(
        store,
        sender or _default_sender(),
        config=config,
        generator=generator,
        announcer=announcer,
    )
    return controller.run()


def resume_disbursement(
    session_factory: sessionmaker,
    draw_id: int,
    *,
    sender: Optional["PaymentSender"] = None,
    config: Optional[SettlementConfig] = None,
    include_unreconciled: bool = False,
) -> PayoutReport:
    """Pay the WinRecords of ``draw_id`` that are still unpaid.

    Only records with ``disbursed = false`` and a retryable status are
    attempted; a record already paid is never transferred again. The prizes
    are taken out of the pot before any transfer and the part that was not
    paid is put back afterwards, so the pot ends up debited by what this pass
    disbursed. Under the ``zero`` residue policy the settlement already took
    the full balance and the pot is left alone.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory for the settlement database.
    draw_id : int
        Draw whose unpaid prizes should be retried.
    sender : Optional[PaymentSender], default: None
        Payment backend; created from the environment when omitted.
    config : Optional[SettlementConfig], default: None
        Settlement parameters; read from the environment when omitted.
    include_unreconciled : bool, default: False
        Also retry records parked as ``needs_reconciliation`` after a
        timeout. Only use this once the earlier transfer is known to have
        failed.

    Raises
    ------
    ValueError
        If ``draw_id`` does not exist.
    SettlementInProgressError
        If a settlement (or another resume) is running.
    InsufficientTreasuryFundsError
        If the treasury cannot cover the remaining prizes.
    NegativePotBalanceError
        If the pot no longer holds the unpaid prizes; nothing is transferred.
    """

    config = config or SettlementConfig.from_env()
    store = SettlementStore(session_factory)
    with session_factory() as session:
        if session.get(Draw, draw_id) is None:
            raise ValueError(f"Draw {draw_id} does not exist")

    lock = SettlementLockGuard(store, stale_after=config.lock_stale_after)
    with lock.hold():
        instructions = store.list_unpaid_win_records(
            draw_id, include_unreconciled=include_unreconciled
        )
        if not instructions:
            logger.info(f"Draw {draw_id} has no unpaid win records")
            return PayoutReport()

        orchestrator = PayoutOrchestrator(
            store,
            sender or _default_sender(),
            treasury_account=config.treasury_account,
            max_workers=config.payout_concurrency,
            transfer_timeout=config.payout_timeout,
        )

        # Under the zero policy the settlement already took the whole pot.
        reserved = Decimal(0)
        if config.residue_policy is not ResiduePolicy.ZERO:
            reserved = sum((Decimal(i.amount) for i in instructions), Decimal(0))
        if reserved > 0:
            # Fails before any transfer if the pot no longer holds these prizes.
            store.update_pot_balance(-reserved)

        try:
            report = orchestrator.disburse(
                instructions, include_unreconciled=include_unreconciled
            )
        except Exception:
            _return_to_pot(store, reserved, draw_id)
            raise

        _return_to_pot(store, reserved - report.total_disbursed, draw_id)
        logger.info(
            f"Resumed disbursement of draw {draw_id}: {report.paid_count} paid, "
            f"{len(report.failed)} still unpaid"
        )
        return report


def _return_to_pot(store: SettlementStore, amount: Decimal, draw_id: int) -> None:
    if amount <= 0:
        return
    try:
        store.update_pot_balance(amount)
    except Exception:
        # Transfers already happened; the report must still reach the caller.
        logger.critical(
            f"Could not return {amount} reserved for draw {draw_id} to the pot; "
            "adjust the ledger manually",
            exc_info=True,
        )


def treasury_stats(
    session: Session,
    *,
    sender: Optional["PaymentSender"] = None,
    treasury_account: Optional[str] = None,
) -> dict:
    """Summarize sales, prizes and (optionally) the live treasury balance.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    sender : Optional[PaymentSender], default: None
        When given together with ``treasury_account``, the treasury balance
        is fetched from it.
    treasury_account : Optional[str], default: None
        Funding wallet.

    Returns
    -------
    dict
        Amounts are :class:`~decimal.Decimal`; ``treasury_balance`` is
        ``None`` when no sender was supplied.
    """

    Pot.ensure(session)
    pot = Pot.current(session)
    total_winners = session.scalar(select(func.count(WinRecord.id))) or 0
    prizes_paid = session.scalar(
        select(func.coalesce(func.sum(WinRecord.prize_amount), 0)).where(
            WinRecord.disbursed.is_(True)
        )
    )
    unpaid = session.execute(
        select(
            func.count(WinRecord.id),
            func.coalesce(func.sum(WinRecord.prize_amount), 0),
        ).where(WinRecord.disbursed.is_(False))
    ).one()
    to_reconcile = session.scalar(
        select(func.count(WinRecord.id)).where(
            WinRecord.payout_status == PayoutStatus.NEEDS_RECONCILIATION
        )
    ) or 0

    treasury_balance = None
    if sender is not None and treasury_account:
        treasury_balance = Decimal(sender.get_balance(treasury_account))

    total_revenue = Decimal(pot.total_revenue)
    prizes_paid = Decimal(prizes_paid)
    return {
        "pot_balance": Decimal(pot.current_balance),
        "total_tickets_sold": pot.total_tickets_sold,
        "cycle_tickets_sold": pot.cycle_tickets_sold,
        "total_revenue": total_revenue,
        "total_winners": total_winners,
        "total_prizes_paid": prizes_paid,
        "unpaid_prizes": unpaid[0],
        "unpaid_amount": Decimal(unpaid[1]),
        "needs_reconciliation": to_reconcile,
        "treasury_balance": treasury_balance,
        "profit": total_revenue - prizes_paid,
    }
