"""Interface the settlement engine expects from a payment backend."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a single transfer attempt.

    Attributes
    ----------
    success : bool
        ``True`` only when the transfer is confirmed with a verifiable reference.
    reference : Optional[str]
        Transaction signature for successful transfers.
    error : Optional[str]
        Human-readable failure reason.
    timed_out : bool
        ``True`` when the outcome is unknown because the deadline passed. Such
        transfers must be reconciled manually rather than retried.
    """

    success: bool
    reference: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False


class PaymentSender(Protocol):
    """Backend that moves funds out of the treasury.

    ``transfer`` must return within ``timeout`` seconds, reporting
    ``timed_out=True`` when the outcome is still unknown. The payout
    orchestrator stops waiting on a transfer that overruns its deadline and
    parks the record for reconciliation, but the worker thread stays busy
    until the sender returns.
    """

    def get_balance(self, account: str) -> Decimal: ...

    def transfer(
        self,
        from_account: str,
        to_account: str,
        amount: Decimal,
        *,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TransferResult: ...
