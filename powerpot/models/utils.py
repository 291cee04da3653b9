"""Number rules shared by tickets and draws."""

from __future__ import annotations

from typing import Iterable

MAIN_NUMBER_COUNT = 5
MAIN_NUMBER_MIN = 1
MAIN_NUMBER_MAX = 30
POWERBALL_MIN = 1
POWERBALL_MAX = 10


def normalize_main_numbers(numbers: Iterable[int]) -> list[int]:
    """Validate a 5-number pick and return it sorted ascending.

    Raises
    ------
    TypeError
        If any value is not an integer.
    ValueError
        If the pick does not contain exactly five distinct values in [1, 30].
    """

    values = list(numbers)
    for value in values:
        # bool is an int subclass but never a valid lottery number
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError("lottery numbers must be integers")
    if len(values) != MAIN_NUMBER_COUNT:
        raise ValueError(f"exactly {MAIN_NUMBER_COUNT} numbers are required")
    if len(set(values)) != len(values):
        raise ValueError("numbers must be distinct")
    if any(v < MAIN_NUMBER_MIN or v > MAIN_NUMBER_MAX for v in values):
        raise ValueError(
            f"numbers must be between {MAIN_NUMBER_MIN} and {MAIN_NUMBER_MAX}"
        )
    return sorted(values)


def validate_powerball(value: int) -> int:
    """Return ``value`` if it is a valid powerball, otherwise raise."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError("powerball must be an integer")
    if value < POWERBALL_MIN or value > POWERBALL_MAX:
        raise ValueError(
            f"powerball must be between {POWERBALL_MIN} and {POWERBALL_MAX}"
        )
    return value
