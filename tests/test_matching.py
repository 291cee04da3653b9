import unittest
from types import SimpleNamespace

from powerpot.settlement.matching import (
    MatchResult,
    PrizeTier,
    count_winners_by_tier,
    evaluate,
    tier_for,
)


def _ticket(numbers, powerball):
    return SimpleNamespace(numbers=numbers, powerball=powerball)


def _draw(numbers, powerball):
    return SimpleNamespace(winning_numbers=numbers, powerball=powerball)


class TierTableTestCase(unittest.TestCase):
    EXPECTED = {
        (5, True): 1,
        (5, False): 2,
        (4, True): 3,
        (4, False): 4,
        (3, True): 5,
        (3, False): 6,
    }

    def test_table_is_total_and_exact(self):
        for match_count in range(0, 6):
            for powerball_match in (True, False):
                with self.subTest(match_count=match_count, powerball_match=powerball_match):
                    tier = tier_for(match_count, powerball_match)
                    expected = self.EXPECTED.get((match_count, powerball_match))
                    if expected is None:
                        self.assertIsNone(tier)
                    else:
                        self.assertEqual(tier, expected)
                        self.assertIsInstance(tier, PrizeTier)

    def test_powerball_alone_or_two_numbers_win_nothing(self):
        self.assertIsNone(tier_for(2, True))
        self.assertIsNone(tier_for(1, True))
        self.assertIsNone(tier_for(0, True))

    def test_out_of_range_match_count(self):
        with self.assertRaises(ValueError):
            tier_for(6, False)
        with self.assertRaises(ValueError):
            tier_for(-1, True)


class EvaluateTestCase(unittest.TestCase):
    def test_jackpot(self):
        result = evaluate(_ticket([1, 2, 3, 4, 5], 7), _draw([1, 2, 3, 4, 5], 7))
        self.assertEqual(result, MatchResult(match_count=5, powerball_match=True))
        self.assertEqual(result.tier, PrizeTier.JACKPOT)
        self.assertTrue(result.is_winner)

    def test_comparison_is_by_set_not_position(self):
        result = evaluate(_ticket([5, 4, 3, 2, 1], 2), _draw([1, 2, 3, 4, 5], 7))
        self.assertEqual(result.match_count, 5)
        self.assertFalse(result.powerball_match)
        self.assertEqual(result.tier, PrizeTier.FIVE)

    def test_partial_match(self):
        result = evaluate(_ticket([1, 2, 3, 20, 21], 9), _draw([1, 2, 3, 4, 5], 9))
        self.assertEqual(result.match_count, 3)
        self.assertTrue(result.powerball_match)
        self.assertEqual(result.tier, PrizeTier.THREE_PLUS_POWERBALL)

    def test_loser_has_no_tier(self):
        result = evaluate(_ticket([10, 11, 12, 13, 14], 3), _draw([1, 2, 3, 4, 5], 3))
        self.assertEqual(result.match_count, 0)
        self.assertIsNone(result.tier)
        self.assertFalse(result.is_winner)


class CountWinnersTestCase(unittest.TestCase):
    def test_counts_every_tier(self):
        counts = count_winners_by_tier(
            [PrizeTier.JACKPOT, None, PrizeTier.FOUR, PrizeTier.FOUR, None]
        )
        self.assertEqual(counts, {1: 1, 2: 0, 3: 0, 4: 2, 5: 0, 6: 0})

    def test_empty(self):
        self.assertEqual(sum(count_winners_by_tier([]).values()), 0)


if __name__ == "__main__":
    unittest.main()
