"""Draw settlement engine."""

from .allocation import AllocationPlan, TierAllocation, allocate
from .draw_generator import DrawGenerator, DrawNumbers
from .lifecycle import (
    SettlementController,
    SettlementFailure,
    SettlementResult,
    SettlementState,
)
from .locking import SettlementLockGuard
from .matching import MatchResult, PrizeTier, count_winners_by_tier, evaluate, tier_for
from .payouts import PayoutOrchestrator, PayoutOutcome, PayoutReport
from .store import EligibleTicket, NewWinRecord, PayoutInstruction, SettlementStore

__all__ = [
    "AllocationPlan",
    "DrawGenerator",
    "DrawNumbers",
    "EligibleTicket",
    "MatchResult",
    "NewWinRecord",
    "PayoutInstruction",
    "PayoutOrchestrator",
    "PayoutOutcome",
    "PayoutReport",
    "PrizeTier",
    "SettlementController",
    "SettlementFailure",
    "SettlementLockGuard",
    "SettlementResult",
    "SettlementState",
    "SettlementStore",
    "TierAllocation",
    "allocate",
    "count_winners_by_tier",
    "evaluate",
    "tier_for",
]
