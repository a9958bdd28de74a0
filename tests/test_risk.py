from __future__ import annotations

import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from kalshi_deployer.risk import SafetyGate, per_event_cap
from tests.helpers import test_config


class RiskTests(unittest.TestCase):
    def test_per_event_cap_floors_fraction_of_portfolio(self) -> None:
        self.assertEqual(per_event_cap(10_000, 0.03), 300)
        self.assertEqual(per_event_cap(10_033, 0.03), 300)
        self.assertEqual(per_event_cap(0, 0.03), 0)
        self.assertEqual(per_event_cap(10_000, 0.0), 0)

    def test_gate_allows_order_within_cap(self) -> None:
        gate = SafetyGate(test_config(max_order_cents=50_000))
        decision = gate.can_place(
            event_ticker="KXNBAGAME-25DEC26BOSIND",
            cost_cents=200,
            existing_exposure_cents=100,
            per_event_cap_cents=300,
        )
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, "")

    def test_gate_rejects_order_crossing_event_cap(self) -> None:
        gate = SafetyGate(test_config(max_order_cents=50_000))
        decision = gate.can_place(
            event_ticker="KXNBAGAME-25DEC26BOSIND",
            cost_cents=201,
            existing_exposure_cents=100,
            per_event_cap_cents=300,
        )
        self.assertFalse(decision.allowed)
        self.assertIn("would exceed cap", decision.reason)

    def test_gate_rejects_order_above_absolute_ceiling(self) -> None:
        gate = SafetyGate(test_config(max_order_cents=1_000))
        decision = gate.can_place(
            event_ticker="KXNBAGAME-25DEC26BOSIND",
            cost_cents=1_001,
            existing_exposure_cents=0,
            per_event_cap_cents=100_000,
        )
        self.assertFalse(decision.allowed)
        self.assertIn("per-order ceiling", decision.reason)

    def test_gate_rejects_empty_order(self) -> None:
        gate = SafetyGate(test_config())
        decision = gate.can_place(
            event_ticker="KXNBAGAME-25DEC26BOSIND",
            cost_cents=0,
            existing_exposure_cents=0,
            per_event_cap_cents=300,
        )
        self.assertFalse(decision.allowed)


if __name__ == "__main__":
    unittest.main()
