"""Exception hierarchy shared by the settlement engine and the ledger."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class SettlementError(RuntimeError):
    """Base class for failures that stop a settlement cycle.

    ``kind`` is a stable machine-readable tag surfaced in
    :class:`~powerpot.settlement.lifecycle.SettlementFailure`.
    """

    kind = "unexpected"


class SettlementInProgressError(SettlementError):
    """Raised when a trigger arrives while another settlement holds the lock."""

    kind = "in_progress"


class DrawGenerationError(SettlementError):
    """Randomness or persistence failure while creating the Draw."""

    kind = "generation"


class TicketReadError(SettlementError):
    """The ticket store could not be read during evaluation."""

    kind = "ticket_read"


class AllocationInvariantError(SettlementError):
    """The allocator produced (or was asked for) an impossible split."""

    kind = "allocation_invariant"


class WinRecordPersistenceError(SettlementError):
    """WinRecords could not be written; disbursement must not start."""

    kind = "win_record_persistence"


class TreasuryUnavailableError(SettlementError):
    """The funding source balance could not be read for the pre-flight check."""

    kind = "treasury_unavailable"


class InsufficientTreasuryFundsError(SettlementError):
    """The treasury cannot cover the whole payout batch.

    Requires an operator top-up before disbursement is resumed.
    """

    kind = "insufficient_funds"

    def __init__(self, required: Decimal, available: Decimal) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient treasury balance. Available: {available}, Required: {required}"
        )


class LedgerError(SettlementError):
    """A pot ledger update was rejected."""

    kind = "ledger"


class LedgerConflictError(LedgerError):
    """The pot balance changed between the read and the conditional update."""

    def __init__(self, expected: Decimal, actual: Optional[Decimal]) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Pot balance changed concurrently (expected {expected}, found {actual})"
        )


class NegativePotBalanceError(LedgerError):
    """Applying the delta would drive the pot balance below zero."""


__all__ = [
    "SettlementError",
    "SettlementInProgressError",
    "DrawGenerationError",
    "TicketReadError",
    "AllocationInvariantError",
    "WinRecordPersistenceError",
    "TreasuryUnavailableError",
    "InsufficientTreasuryFundsError",
    "LedgerError",
    "LedgerConflictError",
    "NegativePotBalanceError",
]
