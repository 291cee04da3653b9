"""Cryptographically secure generation of winning combinations."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from powerpot.errors import DrawGenerationError
from powerpot.models.utils import (
    MAIN_NUMBER_COUNT,
    MAIN_NUMBER_MAX,
    MAIN_NUMBER_MIN,
    POWERBALL_MAX,
    POWERBALL_MIN,
)

if TYPE_CHECKING:
    from powerpot.models import Draw

    from .store import SettlementStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrawNumbers:
    """A winning combination before it is persisted."""

    numbers: tuple[int, ...]
    powerball: int


class DrawGenerator:
    """Pick winning numbers with an unbiased, cryptographically secure source.

    ``randbelow(n)`` must return an integer uniformly distributed over
    ``[0, n)``; :func:`secrets.randbelow` does this by rejection sampling. The
    five main numbers are drawn with a partial Fisher-Yates shuffle, so every
    5-subset of [1, 30] is equally likely.
    """

    def __init__(self, randbelow: Callable[[int], int] = secrets.randbelow) -> None:
        self._randbelow = randbelow

    def _below(self, n: int) -> int:
        value = self._randbelow(n)
        if not isinstance(value, int) or not 0 <= value < n:
            raise DrawGenerationError(
                f"Random source returned {value!r}, expected an integer in [0, {n})"
            )
        return value

    def pick(self) -> DrawNumbers:
        pool = list(range(MAIN_NUMBER_MIN, MAIN_NUMBER_MAX + 1))
        for i in range(MAIN_NUMBER_COUNT):
            j = i + self._below(len(pool) - i)
            pool[i], pool[j] = pool[j], pool[i]
        numbers = tuple(sorted(pool[:MAIN_NUMBER_COUNT]))
        powerball = POWERBALL_MIN + self._below(POWERBALL_MAX - POWERBALL_MIN + 1)
        return DrawNumbers(numbers=numbers, powerball=powerball)

    def generate(
        self, store: "SettlementStore", *, drawn_at: Optional[datetime] = None
    ) -> "Draw":
        """Pick a combination and persist it as a new :class:`Draw`.

        Raises
        ------
        DrawGenerationError
            If the random source misbehaves or the draw cannot be stored.
        """

        try:
            picked = self.pick()
        except DrawGenerationError:
            raise
        except Exception as exc:
            raise DrawGenerationError(f"Random source failed: {exc}") from exc

        try:
            draw = store.insert_draw(
                list(picked.numbers), picked.powerball, drawn_at=drawn_at
            )
        except Exception as exc:
            raise DrawGenerationError(f"Failed to persist draw: {exc}") from exc

        logger.info(
            f"Draw {draw.id} generated: numbers={list(picked.numbers)} "
            f"powerball={picked.powerball}"
        )
        return draw


__all__ = ["DrawGenerator", "DrawNumbers"]
