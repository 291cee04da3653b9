"""Classification of tickets against a winning combination."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional, Protocol, Sequence


class PrizeTier(IntEnum):
    """Prize tiers in payout priority order (1 is paid first)."""

    JACKPOT = 1
    FIVE = 2
    FOUR_PLUS_POWERBALL = 3
    FOUR = 4
    THREE_PLUS_POWERBALL = 5
    THREE = 6


# (match_count, powerball_match) -> tier. Anything not listed wins nothing.
TIER_TABLE: dict[tuple[int, bool], PrizeTier] = {
    (5, True): PrizeTier.JACKPOT,
    (5, False): PrizeTier.FIVE,
    (4, True): PrizeTier.FOUR_PLUS_POWERBALL,
    (4, False): PrizeTier.FOUR,
    (3, True): PrizeTier.THREE_PLUS_POWERBALL,
    (3, False): PrizeTier.THREE,
}


class _Pick(Protocol):
    numbers: Sequence[int]
    powerball: int


class _Winning(Protocol):
    winning_numbers: Sequence[int]
    powerball: int


def tier_for(match_count: int, powerball_match: bool) -> Optional[PrizeTier]:
    """Return the prize tier for a match, or ``None`` when it does not win."""

    if not 0 <= match_count <= 5:
        raise ValueError("match_count must be between 0 and 5")
    return TIER_TABLE.get((match_count, bool(powerball_match)))


@dataclass(frozen=True)
class MatchResult:
    match_count: int
    powerball_match: bool

    @property
    def tier(self) -> Optional[PrizeTier]:
        return tier_for(self.match_count, self.powerball_match)

    @property
    def is_winner(self) -> bool:
        return self.tier is not None


def evaluate(ticket: _Pick, draw: _Winning) -> MatchResult:
    """Compare a ticket with a draw.

    Numbers are compared as sets, so ordering on either side is irrelevant.
    """

    match_count = len(set(ticket.numbers) & set(draw.winning_numbers))
    return MatchResult(
        match_count=match_count,
        powerball_match=ticket.powerball == draw.powerball,
    )


def count_winners_by_tier(tiers: Iterable[Optional[PrizeTier]]) -> dict[int, int]:
    """Tally winners per tier, ignoring non-winning entries."""

    counts = Counter(int(t) for t in tiers if t is not None)
    return {int(tier): counts.get(int(tier), 0) for tier in PrizeTier}


__all__ = [
    "MatchResult",
    "PrizeTier",
    "TIER_TABLE",
    "count_winners_by_tier",
    "evaluate",
    "tier_for",
]
