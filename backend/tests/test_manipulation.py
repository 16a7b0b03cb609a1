from __future__ import annotations

import unittest

import numpy as np

from marketsim.config import MarketParameters
from marketsim.services.manipulation import MarketMakerDesk


class MarketMakerDeskTests(unittest.TestCase):
    def setUp(self) -> None:
        self.params = MarketParameters()
        self.desk = MarketMakerDesk(params=self.params)
        self.rng = np.random.default_rng(5)

    def test_manipulation_requires_market_maker_mode(self) -> None:
        self.assertFalse(self.desk.start_manipulation("up", 10))
        self.assertFalse(self.desk.active)
        self.assertEqual(self.desk.price_multiplier(self.rng, 0.0), 1.0)

    def test_forced_direction_is_bounded_and_expires(self) -> None:
        self.desk.set_mode(True)
        self.assertTrue(self.desk.start_manipulation("down", 3))

        upper = self.params.manipulation_min_strength + self.params.manipulation_strength_spread
        for _ in range(3):
            multiplier = self.desk.price_multiplier(self.rng, 0.0)
            self.assertLessEqual(multiplier, 1 - self.params.manipulation_min_strength)
            self.assertGreaterEqual(multiplier, 1 - upper)
            self.desk.advance()

        self.assertFalse(self.desk.active)
        self.assertIsNone(self.desk.direction)
        self.assertEqual(self.desk.remaining, 0)

    def test_zero_ticks_is_rejected(self) -> None:
        self.desk.set_mode(True)
        self.assertFalse(self.desk.start_manipulation("up", 0))

    def test_disabling_mode_cancels_manipulation(self) -> None:
        self.desk.set_mode(True)
        self.desk.start_manipulation("up", 50)

        self.desk.set_mode(False)

        self.assertFalse(self.desk.active)
        self.assertEqual(self.desk.price_multiplier(self.rng, 0.0), 1.0)

    def test_volume_impact_points_with_net_flow_and_decays(self) -> None:
        self.desk.add_trade_volume(1_000_000_000.0, "buy", now=0.0)

        impact = self.desk.volume_impact(0.0)
        self.assertEqual(impact.direction, "up")
        self.assertGreater(impact.strength, 0.0)
        self.assertLessEqual(impact.strength, self.params.volume_impact_cap)

        faded = self.desk.volume_impact(self.params.volume_decay_seconds)
        self.assertEqual(faded.direction, "neutral")

    def test_volume_drift_only_applies_in_market_maker_mode(self) -> None:
        self.desk.add_trade_volume(1_000_000_000.0, "buy", now=0.0)
        self.assertEqual(self.desk.price_multiplier(self.rng, 1.0), 1.0)

        self.desk.set_mode(True)
        multiplier = self.desk.price_multiplier(self.rng, 1.0)
        self.assertGreater(multiplier, 1.0)
        self.assertLessEqual(multiplier, 1 + self.params.max_price_step)

    def test_closing_a_position_records_opposite_pressure(self) -> None:
        self.desk.add_trade_volume(1_000_000.0, "buy", now=0.0, position_id="long-1")
        self.assertIn("long-1", self.desk.positions)

        self.desk.add_trade_volume(1_000_000.0, "sell", now=1.0, position_id="long-1", closing=True)

        impact = self.desk.volume_impact(1.0)
        self.assertNotIn("long-1", self.desk.positions)
        self.assertEqual(impact.closing_notional, 1_000_000.0)
        self.assertEqual(impact.direction, "down")

    def test_status_reports_mode_and_positions(self) -> None:
        self.desk.set_mode(True)
        self.desk.start_manipulation("up", 4)
        self.desk.add_trade_volume(2_000_000.0, "buy", now=0.0, position_id="long-1")

        status = self.desk.status(0.0)

        self.assertTrue(status["enabled"])
        self.assertTrue(status["active"])
        self.assertEqual(status["direction"], "up")
        self.assertEqual(status["ticks_remaining"], 4)
        self.assertEqual(status["open_positions"], 1)
        self.assertEqual(status["largest_positions"][0]["notional"], 2_000_000.0)
