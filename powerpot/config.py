"""Environment-driven settings for the settlement engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Mapping, Optional

from dotenv import load_dotenv


class ResiduePolicy(str, Enum):
    """What happens to pot funds that were not paid out in a cycle."""

    ROLLOVER = "rollover"
    """Debit the pot only by what was disbursed; everything else carries over."""

    RETAIN = "retain"
    """Also sweep the revenue share and unallocated residue out of the pot."""

    ZERO = "zero"
    """Debit the full snapshot balance, even when payouts failed."""


DEFAULT_WINNER_SHARE = Decimal("0.85")
DEFAULT_TIER_FRACTIONS: Mapping[int, Decimal] = {
    1: Decimal("1.00"),
    2: Decimal("0.50"),
    3: Decimal("0.25"),
    4: Decimal("0.10"),
    5: Decimal("0.05"),
    6: Decimal("0.02"),
}
DEFAULT_PAYOUT_QUANTUM = Decimal("0.000000001")
DEFAULT_TICKET_PRICE = Decimal("0.05")


def _decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Environment variable '{name}' must be a decimal number") from exc


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be an integer") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be a number") from exc


def parse_tier_fractions(raw: str) -> dict[int, Decimal]:
    """Parse ``"1:1.00,2:0.50,..."`` into a tier -> fraction mapping."""

    fractions: dict[int, Decimal] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        tier_text, sep, fraction_text = chunk.partition(":")
        if not sep:
            raise ValueError(f"Invalid tier fraction entry '{chunk}'; expected 'tier:fraction'")
        try:
            fractions[int(tier_text)] = Decimal(fraction_text.strip())
        except (ValueError, InvalidOperation) as exc:
            raise ValueError(f"Invalid tier fraction entry '{chunk}'") from exc
    if not fractions:
        raise ValueError("Tier fraction list must not be empty")
    return fractions


@dataclass(frozen=True)
class SettlementConfig:
    """Tunable parameters of a settlement cycle.

    Attributes
    ----------
    winner_share : Decimal
        Fraction of the pot available to winners; the rest is revenue.
    tier_fractions : Mapping[int, Decimal]
        Budget of each tier as a fraction of the original winner pool.
    residue_policy : ResiduePolicy
        Ledger treatment of funds not disbursed in the cycle.
    eligibility_window : timedelta
        Tickets created within this window before the draw participate.
    treasury_account : Optional[str]
        Wallet that funds payouts. Required once there is something to pay.
    payout_concurrency : int
        Maximum number of transfers in flight at once.
    payout_timeout : float
        Per-transfer deadline in seconds handed to the payment sender.
    payout_quantum : Decimal
        Smallest transferable amount; per-winner prizes are rounded down to it.
    lock_stale_after : timedelta
        Age after which an abandoned settlement lock may be taken over.
    ticket_price : Decimal
        Amount credited to the pot per ticket sold.
    """

    winner_share: Decimal = DEFAULT_WINNER_SHARE
    tier_fractions: Mapping[int, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_TIER_FRACTIONS)
    )
    residue_policy: ResiduePolicy = ResiduePolicy.ROLLOVER
    eligibility_window: timedelta = timedelta(days=7)
    treasury_account: Optional[str] = None
    payout_concurrency: int = 4
    payout_timeout: float = 45.0
    payout_quantum: Decimal = DEFAULT_PAYOUT_QUANTUM
    lock_stale_after: timedelta = timedelta(hours=1)
    ticket_price: Decimal = DEFAULT_TICKET_PRICE

    def __post_init__(self) -> None:
        if not Decimal(0) <= self.winner_share <= Decimal(1):
            raise ValueError("winner_share must be between 0 and 1")
        if self.payout_concurrency < 1:
            raise ValueError("payout_concurrency must be at least 1")
        if self.payout_timeout <= 0:
            raise ValueError("payout_timeout must be positive")
        if self.payout_quantum <= 0:
            raise ValueError("payout_quantum must be positive")
        if self.eligibility_window <= timedelta(0):
            raise ValueError("eligibility_window must be positive")
        if not isinstance(self.residue_policy, ResiduePolicy):
            object.__setattr__(self, "residue_policy", ResiduePolicy(self.residue_policy))

    @classmethod
    def from_env(cls) -> "SettlementConfig":
        """Build a config from ``POWERPOT_*`` environment variables (and ``.env``)."""

        load_dotenv()
        raw_fractions = os.getenv("POWERPOT_TIER_FRACTIONS")
        tier_fractions = (
            parse_tier_fractions(raw_fractions)
            if raw_fractions
            else dict(DEFAULT_TIER_FRACTIONS)
        )
        policy_raw = os.getenv("POWERPOT_RESIDUE_POLICY", ResiduePolicy.ROLLOVER.value)
        try:
            policy = ResiduePolicy(policy_raw.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(p.value for p in ResiduePolicy)
            raise ValueError(
                f"POWERPOT_RESIDUE_POLICY must be one of: {allowed}"
            ) from exc

        return cls(
            winner_share=_decimal_env("POWERPOT_WINNER_SHARE", DEFAULT_WINNER_SHARE),
            tier_fractions=tier_fractions,
            residue_policy=policy,
            eligibility_window=timedelta(days=_int_env("POWERPOT_ELIGIBILITY_DAYS", 7)),
            treasury_account=os.getenv("TREASURY_WALLET") or None,
            payout_concurrency=_int_env("POWERPOT_PAYOUT_CONCURRENCY", 4),
            payout_timeout=_float_env("POWERPOT_PAYOUT_TIMEOUT", 45.0),
            payout_quantum=_decimal_env("POWERPOT_PAYOUT_QUANTUM", DEFAULT_PAYOUT_QUANTUM),
            lock_stale_after=timedelta(
                seconds=_int_env("POWERPOT_LOCK_STALE_AFTER", 3600)
            ),
            ticket_price=_decimal_env("POWERPOT_TICKET_PRICE", DEFAULT_TICKET_PRICE),
        )


__all__ = [
    "DEFAULT_PAYOUT_QUANTUM",
    "DEFAULT_TICKET_PRICE",
    "DEFAULT_TIER_FRACTIONS",
    "DEFAULT_WINNER_SHARE",
    "ResiduePolicy",
    "SettlementConfig",
    "parse_tier_fractions",
]
