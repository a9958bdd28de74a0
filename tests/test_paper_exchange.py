from __future__ import annotations

import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from kalshi_deployer.exchange import ExchangeError, OrderNotFoundError, PaperExchange, load_exchange
from kalshi_deployer.models import ExchangeOrderStatus, Side
from tests.helpers import Clock, test_config


class PaperExchangeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.exchange = PaperExchange(1_000, now_fn=Clock())

    def _buy(self, count: int = 5, price: int = 90):
        return self.exchange.place_order(
            ticker="KXNBAGAME-25DEC26BOSIND-BOS",
            side=Side.YES,
            count=count,
            limit_price_cents=price,
            client_order_id="c1",
        )

    def test_place_reserves_cash_and_rests(self) -> None:
        result = self._buy()
        self.assertEqual(result.status, ExchangeOrderStatus.RESTING)
        self.assertEqual(self.exchange.get_balance(), 550)
        resting = self.exchange.get_resting_orders()
        self.assertEqual(len(resting), 1)
        self.assertEqual(resting[0].notional_cents, 450)

    def test_partial_fill_then_cancel_refunds_remainder(self) -> None:
        result = self._buy()
        self.exchange.fill(result.order_id, 2)
        self.exchange.cancel_order(result.order_id)
        self.assertEqual(self.exchange.get_balance(), 550 + 270)
        self.assertEqual(self.exchange.get_positions()[0].cost_cents, 180)
        detail = self.exchange.get_order_detail(result.order_id)
        self.assertEqual(detail.status, ExchangeOrderStatus.CANCELLED)
        self.assertEqual(detail.filled_count, 2)

    def test_cancel_of_filled_or_unknown_order_raises(self) -> None:
        result = self._buy()
        self.exchange.fill(result.order_id)
        with self.assertRaises(ExchangeError):
            self.exchange.cancel_order(result.order_id)
        with self.assertRaises(OrderNotFoundError):
            self.exchange.cancel_order("nope")
        with self.assertRaises(OrderNotFoundError):
            self.exchange.get_order_detail("nope")

    def test_rejects_invalid_orders(self) -> None:
        with self.assertRaises(ExchangeError):
            self._buy(price=100)
        with self.assertRaises(ExchangeError):
            self._buy(count=0)
        with self.assertRaises(ExchangeError):
            self._buy(count=20)

    def test_load_exchange_paper_and_live_requirements(self) -> None:
        exchange = load_exchange(test_config(paper_bankroll_cents=2_500))
        self.assertIsInstance(exchange, PaperExchange)
        self.assertEqual(exchange.get_balance(), 2_500)
        with self.assertRaises(RuntimeError):
            load_exchange(test_config(mode="live", exchange_client=""))
        with self.assertRaises(RuntimeError):
            load_exchange(test_config(mode="live", exchange_client="kalshi_deployer.missing:factory"))


if __name__ == "__main__":
    unittest.main()
