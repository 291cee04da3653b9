"""Cascading (waterfall) split of the winner pool across prize tiers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Mapping, Optional

from powerpot.config import (
    DEFAULT_PAYOUT_QUANTUM,
    DEFAULT_TIER_FRACTIONS,
    DEFAULT_WINNER_SHARE,
)
from powerpot.errors import AllocationInvariantError


@dataclass(frozen=True)
class TierAllocation:
    """Budget and spend of one tier.

    Attributes
    ----------
    tier : int
        Tier number (1 = jackpot).
    winners : int
        Number of winning tickets in the tier.
    budget : Decimal
        ``winner_pool * fraction``; what the tier would get with unlimited funds.
    spend : Decimal
        What the tier actually received (``per_winner * winners``).
    per_winner : Decimal
        Equal share of each winner, rounded down to the payout quantum.
    """

    tier: int
    winners: int
    budget: Decimal
    spend: Decimal
    per_winner: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    """Result of :func:`allocate`."""

    pot_balance: Decimal
    winner_pool: Decimal
    revenue_share: Decimal
    tiers: tuple[TierAllocation, ...]

    @property
    def total_allocated(self) -> Decimal:
        return sum((t.spend for t in self.tiers), Decimal(0))

    @property
    def residue(self) -> Decimal:
        """Winner-pool funds no tier claimed (including rounding dust)."""
        return self.winner_pool - self.total_allocated

    @property
    def winner_count(self) -> int:
        return sum(t.winners for t in self.tiers)

    def per_winner(self, tier: int) -> Decimal:
        """Prize of a single winner in ``tier`` (zero if the tier had no winners)."""
        for allocation in self.tiers:
            if allocation.tier == tier:
                return allocation.per_winner
        return Decimal(0)

    def for_tier(self, tier: int) -> Optional[TierAllocation]:
        for allocation in self.tiers:
            if allocation.tier == tier:
                return allocation
        return None


def _validate_inputs(
    pot_balance: Decimal,
    winner_counts: Mapping[int, int],
    winner_share: Decimal,
    tier_fractions: Mapping[int, Decimal],
    quantum: Decimal,
) -> None:
    if pot_balance < 0:
        raise AllocationInvariantError(f"Pot balance must not be negative (got {pot_balance})")
    if not Decimal(0) <= winner_share <= Decimal(1):
        raise AllocationInvariantError(f"winner_share must be within [0, 1] (got {winner_share})")
    if quantum <= 0:
        raise AllocationInvariantError("payout quantum must be positive")
    for tier, fraction in tier_fractions.items():
        if Decimal(fraction) < 0:
            raise AllocationInvariantError(f"Tier {tier} fraction must not be negative")
    for tier, count in winner_counts.items():
        if count < 0:
            raise AllocationInvariantError(f"Tier {tier} winner count must not be negative")
        if count and tier not in tier_fractions:
            raise AllocationInvariantError(f"No allocation fraction configured for tier {tier}")


def allocate(
    pot_balance: Decimal,
    winner_counts: Mapping[int, int],
    *,
    winner_share: Decimal = DEFAULT_WINNER_SHARE,
    tier_fractions: Optional[Mapping[int, Decimal]] = None,
    quantum: Decimal = DEFAULT_PAYOUT_QUANTUM,
) -> AllocationPlan:
    """Split ``pot_balance`` across winners with a tier-ordered waterfall.

    Parameters
    ----------
    pot_balance : Decimal
        Pot snapshot the settlement works from.
    winner_counts : Mapping[int, int]
        Number of winning tickets per tier; missing tiers count as zero.
    winner_share : Decimal, default: 0.85
        Fraction of the pot reserved for winners.
    tier_fractions : Optional[Mapping[int, Decimal]], default: None
        Budget of each tier as a fraction of the *original* winner pool.
        Defaults to ``{1: 1.00, 2: 0.50, 3: 0.25, 4: 0.10, 5: 0.05, 6: 0.02}``.
    quantum : Decimal, default: 1e-9
        Per-winner amounts are rounded down to a multiple of this value.

    Returns
    -------
    AllocationPlan
        Per-tier spend and per-winner amounts. Only tiers with winners appear.

    Notes
    -----
    Tiers are processed from 1 to 6. Each tier claims
    ``min(winner_pool * fraction, remaining)`` and divides it equally among
    its winners. The fractions add up to more than 100%, so lower tiers
    routinely receive less than their budget, or nothing at all.

    Raises
    ------
    AllocationInvariantError
        On negative or inconsistent inputs, or if the computed plan would
        exceed the winner pool.
    """

    fractions = {
        int(tier): Decimal(fraction)
        for tier, fraction in (tier_fractions or DEFAULT_TIER_FRACTIONS).items()
    }
    pot_balance = Decimal(pot_balance)
    winner_share = Decimal(winner_share)
    quantum = Decimal(quantum)
    _validate_inputs(pot_balance, winner_counts, winner_share, fractions, quantum)

    with localcontext() as ctx:
        ctx.prec = 38
        winner_pool = pot_balance * winner_share
        remaining = winner_pool
        tiers: list[TierAllocation] = []
        for tier in sorted(fractions):
            count = int(winner_counts.get(tier, 0))
            if count == 0:
                continue
            budget = winner_pool * fractions[tier]
            available = min(budget, remaining)
            per_winner = (available / count).quantize(quantum, rounding=ROUND_DOWN)
            spend = per_winner * count
            remaining -= spend
            tiers.append(
                TierAllocation(
                    tier=tier,
                    winners=count,
                    budget=budget,
                    spend=spend,
                    per_winner=per_winner,
                )
            )

        plan = AllocationPlan(
            pot_balance=pot_balance,
            winner_pool=winner_pool,
            revenue_share=pot_balance - winner_pool,
            tiers=tuple(tiers),
        )

    if plan.total_allocated > plan.winner_pool:
        raise AllocationInvariantError(
            f"Allocated {plan.total_allocated} exceeds winner pool {plan.winner_pool}"
        )
    if any(t.per_winner < 0 or t.spend < 0 for t in plan.tiers):
        raise AllocationInvariantError("Allocation produced a negative prize")
    return plan


__all__ = ["AllocationPlan", "TierAllocation", "allocate"]
