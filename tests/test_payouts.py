import threading
import time
import unittest
from decimal import Decimal

from powerpot.blockchain.sender import TransferResult
from powerpot.errors import InsufficientTreasuryFundsError, TreasuryUnavailableError
from powerpot.models import PayoutStatus, WinRecord
from powerpot.settlement.payouts import PayoutOrchestrator
from powerpot.settlement.store import NewWinRecord

from support import TREASURY, DummySender, FileDatabaseTestCase

WALLETS = ["WalletA", "WalletB", "WalletC"]


class WinRecordBatchTestCase(FileDatabaseTestCase):
    def setUp(self):
        super().setUp()
        draw = self.store.insert_draw([1, 2, 3, 4, 5], 6)
        self.draw_id = draw.id
        batch = []
        for wallet in WALLETS:
            ticket_id = self.add_ticket(wallet, [1, 2, 3, 4, 20], 9)
            batch.append(
                NewWinRecord(
                    ticket_id=ticket_id,
                    wallet_address=wallet,
                    match_count=4,
                    powerball_match=False,
                    tier=4,
                    prize_amount=Decimal("3.4"),
                )
            )
        self.instructions = self.store.insert_win_records(self.draw_id, batch)

    def _orchestrator(self, sender, **kwargs):
        kwargs.setdefault("max_workers", 3)
        return PayoutOrchestrator(self.store, sender, treasury_account=TREASURY, **kwargs)

    def _records(self):
        return {r.id: r for r in self.store.list_win_records(self.draw_id)}


class PayoutOrchestratorTestCase(WinRecordBatchTestCase):
    def test_one_failure_does_not_block_others(self):
        sender = DummySender(fail_for={"WalletB"})
        report = self._orchestrator(sender).disburse(self.instructions)

        self.assertEqual(report.total_disbursed, Decimal("6.8"))
        self.assertEqual(report.paid_count, 2)
        self.assertEqual([o.wallet_address for o in report.failed], ["WalletB"])

        records = self._records()
        by_wallet = {i.wallet_address: records[i.win_record_id] for i in self.instructions}
        for wallet in ("WalletA", "WalletC"):
            record = by_wallet[wallet]
            self.assertTrue(record.disbursed)
            self.assertEqual(record.payout_status, PayoutStatus.PAID)
            self.assertEqual(record.payout_reference, f"sig-win-record-{record.id}")
            self.assertIsNotNone(record.disbursed_at)
        failed = by_wallet["WalletB"]
        self.assertFalse(failed.disbursed)
        self.assertEqual(failed.payout_status, PayoutStatus.FAILED)
        self.assertIsNone(failed.payout_reference)
        self.assertIn("rejected", failed.last_error)
        self.assertEqual(failed.attempts, 1)

    def test_rerun_never_pays_twice(self):
        sender = DummySender()
        first = self._orchestrator(sender).disburse(self.instructions)
        self.assertEqual(first.paid_count, 3)

        second = self._orchestrator(sender).disburse(self.instructions)
        self.assertEqual(second.outcomes, [])
        self.assertEqual(sorted(second.skipped), sorted(i.win_record_id for i in self.instructions))
        self.assertEqual(len(sender.transfers), 3)
        for wallet in WALLETS:
            self.assertEqual(sender.paid_to(wallet), 1)

    def test_retry_only_pays_unpaid_records(self):
        self._orchestrator(DummySender(fail_for={"WalletB"})).disburse(self.instructions)

        unpaid = self.store.list_unpaid_win_records(self.draw_id)
        self.assertEqual([i.wallet_address for i in unpaid], ["WalletB"])
        self.assertEqual(unpaid[0].amount, Decimal("3.4"))

        retry_sender = DummySender()
        report = self._orchestrator(retry_sender).disburse(unpaid)
        self.assertEqual(report.paid_count, 1)
        self.assertEqual([t["to"] for t in retry_sender.transfers], ["WalletB"])
        self.assertEqual(self.store.list_unpaid_win_records(self.draw_id), [])
        record = self._records()[unpaid[0].win_record_id]
        self.assertEqual(record.attempts, 2)

    def test_insufficient_treasury_fails_whole_batch(self):
        sender = DummySender(balance=Decimal("10"))
        with self.assertRaises(InsufficientTreasuryFundsError) as ctx:
            self._orchestrator(sender).disburse(self.instructions)
        self.assertEqual(ctx.exception.required, Decimal("10.2"))
        self.assertEqual(ctx.exception.available, Decimal("10"))
        self.assertEqual(sender.transfers, [])
        for record in self._records().values():
            self.assertEqual(record.payout_status, PayoutStatus.PENDING)
            self.assertFalse(record.disbursed)

    def test_balance_is_read_once_per_batch(self):
        sender = DummySender()
        self._orchestrator(sender).disburse(self.instructions)
        self.assertEqual(sender.balance_calls, 1)

    def test_unreadable_treasury(self):
        class Unreachable(DummySender):
            def get_balance(self, account):
                raise ConnectionError("RPC down")

        sender = Unreachable()
        with self.assertRaises(TreasuryUnavailableError):
            self._orchestrator(sender).disburse(self.instructions)
        self.assertEqual(sender.transfers, [])

    def test_missing_treasury_account(self):
        orchestrator = PayoutOrchestrator(self.store, DummySender(), treasury_account=None)
        with self.assertRaises(TreasuryUnavailableError):
            orchestrator.disburse(self.instructions)

    def test_timeout_needs_reconciliation(self):
        sender = DummySender(timeout_for={"WalletC"})
        report = self._orchestrator(sender, transfer_timeout=2.5).disburse(self.instructions)
        self.assertEqual(report.paid_count, 2)
        self.assertTrue(all(t["timeout"] == 2.5 for t in sender.transfers))

        timed_out = [o for o in report.outcomes if o.wallet_address == "WalletC"][0]
        self.assertEqual(timed_out.status, PayoutStatus.NEEDS_RECONCILIATION)
        record = self._records()[timed_out.win_record_id]
        self.assertFalse(record.disbursed)
        self.assertEqual(record.payout_status, PayoutStatus.NEEDS_RECONCILIATION)

        # Not retried automatically; only on explicit request.
        self.assertEqual(self.store.list_unpaid_win_records(self.draw_id), [])
        explicit = self.store.list_unpaid_win_records(self.draw_id, include_unreconciled=True)
        self.assertEqual([i.wallet_address for i in explicit], ["WalletC"])
        self.assertEqual(
            self._orchestrator(DummySender()).disburse(explicit).skipped,
            [timed_out.win_record_id],
        )
        report = self._orchestrator(DummySender()).disburse(explicit, include_unreconciled=True)
        self.assertEqual(report.paid_count, 1)

    def test_sender_exception_is_recorded_as_failure(self):
        sender = DummySender(raise_for={"WalletA"})
        report = self._orchestrator(sender).disburse(self.instructions)
        failed = report.failed
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].status, PayoutStatus.FAILED)
        self.assertIn("RPC node unreachable", failed[0].error)
        self.assertEqual(report.paid_count, 2)

    def test_parallelism_is_bounded(self):
        sender = DummySender(delay=0.05)
        self._orchestrator(sender, max_workers=2).disburse(self.instructions)
        self.assertLessEqual(sender.max_concurrent, 2)
        self.assertEqual(len(sender.transfers), 3)


class HangingSender(DummySender):
    """Ignores the per-transfer timeout until released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = threading.Event()

    def transfer(self, from_account, to_account, amount, *, idempotency_key=None, timeout=None):
        self.transfers.append({"to": to_account, "timeout": timeout})
        self.release.wait(10)
        return TransferResult(success=True, reference=f"late-{idempotency_key}")


class OverdueTransferTestCase(WinRecordBatchTestCase):
    def join_workers(self):
        for thread in threading.enumerate():
            if thread.name.startswith("payout"):
                thread.join(5)

    def test_sender_ignoring_timeout_does_not_block_disbursement(self):
        sender = HangingSender()
        orchestrator = self._orchestrator(sender, max_workers=1, transfer_timeout=0.2)

        started = time.monotonic()
        try:
            report = orchestrator.disburse(self.instructions)
            elapsed = time.monotonic() - started
        finally:
            with self.assertLogs("powerpot.settlement.payouts", level="CRITICAL"):
                sender.release.set()
                self.join_workers()

        self.assertLess(elapsed, 3)
        self.assertEqual(len(sender.transfers), 1)
        self.assertEqual(report.total_disbursed, Decimal("0"))
        statuses = [o.status for o in report.outcomes]
        self.assertEqual(
            statuses,
            [PayoutStatus.NEEDS_RECONCILIATION, PayoutStatus.PENDING, PayoutStatus.PENDING],
        )

        records = self._records()
        hung = records[self.instructions[0].win_record_id]
        # The late success is not written over the reconciliation status.
        self.assertEqual(hung.payout_status, PayoutStatus.NEEDS_RECONCILIATION)
        self.assertFalse(hung.disbursed)
        for instruction in self.instructions[1:]:
            record = records[instruction.win_record_id]
            self.assertEqual(record.payout_status, PayoutStatus.PENDING)
            self.assertEqual(record.attempts, 0)

        # Only the never-attempted records are offered to a later retry.
        unpaid = self.store.list_unpaid_win_records(self.draw_id)
        self.assertEqual(
            [i.win_record_id for i in unpaid],
            [i.win_record_id for i in self.instructions[1:]],
        )


class WinRecordStoreTestCase(WinRecordBatchTestCase):
    def test_outstanding_total_counts_undisbursed_prizes(self):
        self.assertEqual(self.store.outstanding_prize_total(), Decimal("10.2"))

        self._orchestrator(DummySender(fail_for={"WalletB"})).disburse(self.instructions)

        self.assertEqual(self.store.outstanding_prize_total(), Decimal("3.4"))
        snapshot = self.store.pot_snapshot()
        self.assertEqual(snapshot.outstanding_prizes, Decimal("3.4"))

    def test_transition_requires_expected_status(self):
        record_id = self.instructions[0].win_record_id

        moved = self.store.transition_win_record(
            record_id, PayoutStatus.IN_FLIGHT, PayoutStatus.NEEDS_RECONCILIATION
        )
        self.assertFalse(moved)
        self.assertEqual(self._records()[record_id].payout_status, PayoutStatus.PENDING)

        moved = self.store.transition_win_record(
            record_id, PayoutStatus.PENDING, PayoutStatus.FAILED, error="manual"
        )
        self.assertTrue(moved)
        record = self._records()[record_id]
        self.assertEqual(record.payout_status, PayoutStatus.FAILED)
        self.assertEqual(record.last_error, "manual")

    def test_transition_cannot_mark_paid(self):
        with self.assertRaises(ValueError):
            self.store.transition_win_record(
                self.instructions[0].win_record_id, PayoutStatus.PENDING, PayoutStatus.PAID
            )


class ZeroPrizeTestCase(FileDatabaseTestCase):
    def test_zero_prizes_close_without_transfer(self):
        draw = self.store.insert_draw([1, 2, 3, 4, 5], 6)
        ticket_id = self.add_ticket("WalletZ", [1, 2, 3, 4, 5], 6)
        instructions = self.store.insert_win_records(
            draw.id,
            [
                NewWinRecord(
                    ticket_id=ticket_id,
                    wallet_address="WalletZ",
                    match_count=5,
                    powerball_match=True,
                    tier=1,
                    prize_amount=Decimal("0"),
                )
            ],
        )
        sender = DummySender(balance=Decimal("0"))
        report = PayoutOrchestrator(
            self.store, sender, treasury_account=TREASURY
        ).disburse(instructions)

        self.assertEqual(sender.transfers, [])
        self.assertEqual(sender.balance_calls, 0)
        self.assertEqual(report.outcomes[0].status, PayoutStatus.ZERO_PRIZE)
        self.assertEqual(report.total_disbursed, Decimal("0"))
        with self.Session() as session:
            record = session.get(WinRecord, instructions[0].win_record_id)
            self.assertTrue(record.disbursed)
            self.assertEqual(record.payout_status, PayoutStatus.ZERO_PRIZE)
            self.assertIsNone(record.payout_reference)


if __name__ == "__main__":
    unittest.main()
