import os
import unittest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from powerpot.config import (
    DEFAULT_TIER_FRACTIONS,
    ResiduePolicy,
    SettlementConfig,
    parse_tier_fractions,
)


@patch("powerpot.config.load_dotenv")
class TestFromEnv(unittest.TestCase):
    def test_defaults(self, mock_load_dotenv):
        with patch.dict(os.environ, {}, clear=True):
            config = SettlementConfig.from_env()
        self.assertEqual(config.winner_share, Decimal("0.85"))
        self.assertEqual(dict(config.tier_fractions), dict(DEFAULT_TIER_FRACTIONS))
        self.assertIs(config.residue_policy, ResiduePolicy.ROLLOVER)
        self.assertEqual(config.eligibility_window, timedelta(days=7))
        self.assertIsNone(config.treasury_account)
        self.assertEqual(config.payout_concurrency, 4)
        self.assertEqual(config.lock_stale_after, timedelta(hours=1))
        mock_load_dotenv.assert_called_once()

    def test_overrides(self, mock_load_dotenv):
        env = {
            "POWERPOT_WINNER_SHARE": "0.9",
            "POWERPOT_TIER_FRACTIONS": "1:1, 2:0.4",
            "POWERPOT_RESIDUE_POLICY": "Retain",
            "POWERPOT_ELIGIBILITY_DAYS": "3",
            "TREASURY_WALLET": "Treasury1",
            "POWERPOT_PAYOUT_CONCURRENCY": "8",
            "POWERPOT_PAYOUT_TIMEOUT": "12.5",
            "POWERPOT_LOCK_STALE_AFTER": "600",
            "POWERPOT_TICKET_PRICE": "0.1",
        }
        with patch.dict(os.environ, env, clear=True):
            config = SettlementConfig.from_env()
        self.assertEqual(config.winner_share, Decimal("0.9"))
        self.assertEqual(config.tier_fractions, {1: Decimal("1"), 2: Decimal("0.4")})
        self.assertIs(config.residue_policy, ResiduePolicy.RETAIN)
        self.assertEqual(config.eligibility_window, timedelta(days=3))
        self.assertEqual(config.treasury_account, "Treasury1")
        self.assertEqual(config.payout_concurrency, 8)
        self.assertEqual(config.payout_timeout, 12.5)
        self.assertEqual(config.lock_stale_after, timedelta(minutes=10))
        self.assertEqual(config.ticket_price, Decimal("0.1"))

    def test_unknown_policy(self, mock_load_dotenv):
        with patch.dict(os.environ, {"POWERPOT_RESIDUE_POLICY": "burn"}, clear=True):
            with self.assertRaises(ValueError) as ctx:
                SettlementConfig.from_env()
        self.assertIn("rollover", str(ctx.exception))

    def test_malformed_numbers(self, mock_load_dotenv):
        for name, value in (
            ("POWERPOT_WINNER_SHARE", "lots"),
            ("POWERPOT_PAYOUT_CONCURRENCY", "four"),
            ("POWERPOT_PAYOUT_TIMEOUT", "soon"),
        ):
            with self.subTest(name=name):
                with patch.dict(os.environ, {name: value}, clear=True):
                    with self.assertRaises(ValueError):
                        SettlementConfig.from_env()


class TestParseTierFractions(unittest.TestCase):
    def test_parses_and_skips_blanks(self):
        self.assertEqual(
            parse_tier_fractions("1:1.00,,3:0.25 "),
            {1: Decimal("1.00"), 3: Decimal("0.25")},
        )

    def test_rejects_bad_entries(self):
        for raw in ("", "1=0.5", "x:0.5", "1:abc"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_tier_fractions(raw)


class TestValidation(unittest.TestCase):
    def test_policy_string_is_coerced(self):
        self.assertIs(SettlementConfig(residue_policy="zero").residue_policy, ResiduePolicy.ZERO)

    def test_invalid_values(self):
        cases = [
            {"winner_share": Decimal("1.5")},
            {"payout_concurrency": 0},
            {"payout_timeout": 0},
            {"payout_quantum": Decimal("0")},
            {"eligibility_window": timedelta(0)},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValueError):
                    SettlementConfig(**kwargs)


if __name__ == "__main__":
    unittest.main()
