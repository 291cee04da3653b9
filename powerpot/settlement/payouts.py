"""Disbursement of allocated prizes through a payment sender."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from powerpot.blockchain.sender import PaymentSender, TransferResult
from powerpot.errors import InsufficientTreasuryFundsError, TreasuryUnavailableError
from powerpot.models import PayoutStatus

from .store import PayoutInstruction, SettlementStore

logger = logging.getLogger(__name__)

# Seconds to wait for a worker that is between its claim and its outcome write.
ABANDON_GRACE = 1.0


@dataclass(frozen=True)
class PayoutOutcome:
    """What happened to one WinRecord during a disbursement pass."""

    win_record_id: int
    wallet_address: str
    amount: Decimal
    status: str
    reference: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (PayoutStatus.PAID, PayoutStatus.ZERO_PRIZE)

    def as_dict(self) -> dict:
        return {
            "win_record_id": self.win_record_id,
            "wallet_address": self.wallet_address,
            "amount": str(self.amount),
            "status": self.status,
            "reference": self.reference,
            "error": self.error,
        }


@dataclass
class PayoutReport:
    outcomes: list[PayoutOutcome] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    """WinRecord ids that were already disbursed or claimed elsewhere."""

    @property
    def total_disbursed(self) -> Decimal:
        """Sum actually transferred in this pass."""
        return sum(
            (o.amount for o in self.outcomes if o.status == PayoutStatus.PAID),
            Decimal(0),
        )

    @property
    def total_unpaid(self) -> Decimal:
        return sum((o.amount for o in self.outcomes if not o.success), Decimal(0))

    @property
    def paid_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == PayoutStatus.PAID)

    @property
    def failed(self) -> list[PayoutOutcome]:
        return [o for o in self.outcomes if not o.success]


class PayoutOrchestrator:
    """Pay each winner independently after a batch-wide funds check.

    Parameters
    ----------
    store : SettlementStore
        Where payout outcomes are recorded.
    sender : PaymentSender
        Backend that moves funds.
    treasury_account : Optional[str]
        Funding wallet. Needed as soon as a non-zero prize is paid.
    max_workers : int, default: 4
        Upper bound on concurrent transfers.
    transfer_timeout : float, default: 45.0
        Deadline in seconds for each individual transfer.
    """

    def __init__(
        self,
        store: SettlementStore,
        sender: PaymentSender,
        *,
        treasury_account: Optional[str],
        max_workers: int = 4,
        transfer_timeout: float = 45.0,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.sender = sender
        self.treasury_account = treasury_account
        self.max_workers = max_workers
        self.transfer_timeout = transfer_timeout

    def disburse(
        self,
        instructions: Iterable[PayoutInstruction],
        *,
        include_unreconciled: bool = False,
    ) -> PayoutReport:
        """Transfer every prize in ``instructions``.

        Zero-amount prizes are closed without a transfer. The treasury balance
        is read once, before any transfer starts, and must cover the whole
        batch. After that, each winner's transfer succeeds or fails on its own
        and is recorded in its own transaction. The batch waits at most one
        ``transfer_timeout`` per wave of workers plus one; a transfer still
        running after that is parked as ``needs_reconciliation`` and one that
        never started is left ``pending``.

        Parameters
        ----------
        instructions : Iterable[PayoutInstruction]
            Prizes to pay.
        include_unreconciled : bool, default: False
            Also pay records parked as ``needs_reconciliation``. Only set this
            after confirming the earlier transfer never landed.

        Returns
        -------
        PayoutReport
            Per-winner outcomes and totals.

        Raises
        ------
        TreasuryUnavailableError
            If the treasury balance cannot be read.
        InsufficientTreasuryFundsError
            If the treasury cannot cover the batch; no transfer is attempted.
        """

        report = PayoutReport()
        payable: list[PayoutInstruction] = []
        for instruction in instructions:
            amount = Decimal(instruction.amount)
            if amount < 0:
                raise ValueError(
                    f"WinRecord {instruction.win_record_id} has a negative prize {amount}"
                )
            if amount == 0:
                if self.store.close_zero_prize(instruction.win_record_id):
                    report.outcomes.append(
                        PayoutOutcome(
                            win_record_id=instruction.win_record_id,
                            wallet_address=instruction.wallet_address,
                            amount=amount,
                            status=PayoutStatus.ZERO_PRIZE,
                        )
                    )
                else:
                    report.skipped.append(instruction.win_record_id)
                continue
            payable.append(instruction)

        if not payable:
            return report

        self._preflight(payable)

        workers = min(self.max_workers, len(payable))
        stop = threading.Event()
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payout")
        try:
            futures = [
                pool.submit(self._pay_one, instruction, include_unreconciled, stop)
                for instruction in payable
            ]
            # Every transfer gets its own deadline; queued ones wait for a free worker.
            waves = -(-len(payable) // workers)
            wait(futures, timeout=self.transfer_timeout * (waves + 1))
            stop.set()
            for instruction, future in zip(payable, futures):
                outcome = (
                    future.result() if future.done() and not future.cancelled()
                    else self._abandon(instruction, future)
                )
                if outcome is None:
                    report.skipped.append(instruction.win_record_id)
                else:
                    report.outcomes.append(outcome)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        logger.info(
            f"Disbursement pass finished: {report.paid_count} paid, "
            f"{len(report.failed)} unpaid, {len(report.skipped)} skipped, "
            f"total {report.total_disbursed}"
        )
        return report

    def _preflight(self, payable: list[PayoutInstruction]) -> None:
        if not self.treasury_account:
            raise TreasuryUnavailableError("No treasury account configured")
        required = sum((Decimal(p.amount) for p in payable), Decimal(0))
        try:
            available = Decimal(self.sender.get_balance(self.treasury_account))
        except Exception as exc:
            raise TreasuryUnavailableError(
                f"Could not read treasury balance: {exc}"
            ) from exc
        if available < required:
            logger.error(
                f"Treasury {self.treasury_account} holds {available}, "
                f"batch requires {required}; no transfers attempted"
            )
            raise InsufficientTreasuryFundsError(required, available)

    def _abandon(
        self, instruction: PayoutInstruction, future: Future
    ) -> Optional[PayoutOutcome]:
        """Settle the report entry of a transfer that missed the batch deadline."""

        record_id = instruction.win_record_id
        amount = Decimal(instruction.amount)
        if future.cancel():
            return PayoutOutcome(
                win_record_id=record_id,
                wallet_address=instruction.wallet_address,
                amount=amount,
                status=PayoutStatus.PENDING,
                error="not attempted: disbursement deadline passed",
            )

        error = f"no transfer result within {self.transfer_timeout}s; outcome unknown"
        try:
            parked = self.store.transition_win_record(
                record_id,
                PayoutStatus.IN_FLIGHT,
                PayoutStatus.NEEDS_RECONCILIATION,
                error=error,
            )
        except Exception:
            logger.exception(f"Could not park overdue WinRecord {record_id}")
            parked = False
        if parked:
            logger.error(
                f"Transfer of WinRecord {record_id} to {instruction.wallet_address} "
                "ignored its deadline; parked for reconciliation"
            )
            return PayoutOutcome(
                win_record_id=record_id,
                wallet_address=instruction.wallet_address,
                amount=amount,
                status=PayoutStatus.NEEDS_RECONCILIATION,
                error=error,
            )

        # Not claimed yet, or its outcome is being written right now.
        try:
            return future.result(timeout=ABANDON_GRACE)
        except FutureTimeoutError:
            logger.error(f"Outcome of WinRecord {record_id} unknown after the deadline")
            return PayoutOutcome(
                win_record_id=record_id,
                wallet_address=instruction.wallet_address,
                amount=amount,
                status=PayoutStatus.PENDING,
                error=error,
            )

    def _pay_one(
        self,
        instruction: PayoutInstruction,
        include_unreconciled: bool,
        stop: threading.Event,
    ) -> Optional[PayoutOutcome]:
        record_id = instruction.win_record_id
        try:
            claimed = self.store.claim_win_record(
                record_id, include_unreconciled=include_unreconciled
            )
        except Exception as exc:
            logger.exception(f"Could not claim WinRecord {record_id}")
            return PayoutOutcome(
                win_record_id=record_id,
                wallet_address=instruction.wallet_address,
                amount=Decimal(instruction.amount),
                status=PayoutStatus.PENDING,
                error=f"claim failed: {exc}",
            )
        if not claimed:
            logger.info(f"WinRecord {record_id} is not claimable; skipping")
            return None
        if stop.is_set():
            # The batch gave up on this record before its transfer started.
            self.store.transition_win_record(
                record_id, PayoutStatus.IN_FLIGHT, PayoutStatus.PENDING
            )
            return PayoutOutcome(
                win_record_id=record_id,
                wallet_address=instruction.wallet_address,
                amount=Decimal(instruction.amount),
                status=PayoutStatus.PENDING,
                error="not attempted: disbursement deadline passed",
            )

        try:
            result = self.sender.transfer(
                self.treasury_account,
                instruction.wallet_address,
                Decimal(instruction.amount),
                idempotency_key=f"win-record-{record_id}",
                timeout=self.transfer_timeout,
            )
        except TimeoutError as exc:
            result = TransferResult(success=False, error=f"timed out: {exc}", timed_out=True)
        except Exception as exc:
            logger.warning(f"Transfer for WinRecord {record_id} raised: {exc!r}")
            result = TransferResult(success=False, error=str(exc) or type(exc).__name__)

        if result.success and result.reference:
            status = PayoutStatus.PAID
        elif result.timed_out:
            status = PayoutStatus.NEEDS_RECONCILIATION
        elif result.success:
            # Reported as sent but with nothing to verify against.
            status = PayoutStatus.NEEDS_RECONCILIATION
            result = TransferResult(
                success=False, error="Transfer confirmed without a transaction reference"
            )
        else:
            status = PayoutStatus.FAILED

        outcome = PayoutOutcome(
            win_record_id=record_id,
            wallet_address=instruction.wallet_address,
            amount=Decimal(instruction.amount),
            status=status,
            reference=result.reference if status == PayoutStatus.PAID else None,
            error=result.error,
        )

        try:
            self.store.update_win_record(
                record_id,
                status=status,
                reference=outcome.reference,
                error=outcome.error,
                expected_status=PayoutStatus.IN_FLIGHT,
            )
        except Exception:
            if status == PayoutStatus.PAID:
                # Funds moved; the record stays out of the retryable statuses.
                logger.critical(
                    f"WinRecord {record_id} was paid ({outcome.reference}) "
                    "but the outcome could not be recorded; reconcile manually",
                    exc_info=True,
                )
            else:
                logger.exception(f"Failed to record payout outcome of WinRecord {record_id}")
            return outcome

        if status == PayoutStatus.PAID:
            logger.info(
                f"Paid {outcome.amount} to {outcome.wallet_address} "
                f"(WinRecord {record_id}, tx {outcome.reference})"
            )
        else:
            logger.warning(
                f"Payout of WinRecord {record_id} to {outcome.wallet_address} "
                f"ended as {status}: {outcome.error}"
            )
        return outcome


__all__ = ["PayoutOrchestrator", "PayoutOutcome", "PayoutReport"]
