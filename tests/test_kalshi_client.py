from __future__ import annotations

from datetime import date, datetime, timezone
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from kalshi_deployer.clients_kalshi import KalshiMarketClient
from kalshi_deployer.models import Side

NOW = datetime(2025, 12, 26, 17, 0, tzinfo=timezone.utc)
TODAY = date(2025, 12, 26)


class FakeKalshiMarketClient(KalshiMarketClient):
    def __init__(self, items_by_series: dict[str, list[dict]], failing: tuple[str, ...] = ()) -> None:
        super().__init__(
            base_url="https://api.elections.kalshi.com/trade-api/v2",
            timeout_seconds=1.0,
            series=tuple(items_by_series) + failing,
            page_delay_seconds=0.0,
        )
        self._items_by_series = items_by_series
        self._failing = failing

    def fetch_markets(self, series_ticker: str, max_close_ts: int) -> list[dict]:
        if series_ticker in self._failing:
            raise RuntimeError("HTTP 500")
        return list(self._items_by_series.get(series_ticker, []))


def _market(ticker: str, yes_price: float, open_interest: int = 500, **extra) -> dict:
    item = {
        "ticker": ticker,
        "event_ticker": ticker.rsplit("-", 1)[0],
        "title": f"{ticker} winner?",
        "status": "active",
        "close_time": "2025-12-27T04:00:00Z",
        "last_price_dollars": str(yes_price),
        "open_interest": open_interest,
    }
    item.update(extra)
    return item


class KalshiMarketClientTests(unittest.TestCase):
    def test_keeps_favourite_priced_in_cents(self) -> None:
        client = FakeKalshiMarketClient({"KXNBAGAME": [_market("KXNBAGAME-25DEC26BOSIND-BOS", 0.93)]})
        candidates = client.candidates(TODAY, NOW)
        self.assertEqual(len(candidates), 1)
        candidate = candidates[0]
        self.assertEqual(candidate.side, Side.YES)
        self.assertEqual(candidate.price_cents, 93)
        self.assertEqual(candidate.event_ticker, "KXNBAGAME-25DEC26BOSIND")
        self.assertEqual(candidate.close_time, datetime(2025, 12, 27, 4, 0, tzinfo=timezone.utc))

    def test_no_side_favourite_uses_complement(self) -> None:
        client = FakeKalshiMarketClient({"KXNBAGAME": [_market("KXNBAGAME-25DEC26BOSIND-IND", 0.05)]})
        candidate = client.candidates(TODAY, NOW)[0]
        self.assertEqual(candidate.side, Side.NO)
        self.assertEqual(candidate.price_cents, 95)

    def test_filters_odds_liquidity_and_game_date(self) -> None:
        client = FakeKalshiMarketClient(
            {
                "KXNBAGAME": [
                    _market("KXNBAGAME-25DEC26AAABBB-AAA", 0.70),
                    _market("KXNBAGAME-25DEC26CCCDDD-CCC", 0.999),
                    _market("KXNBAGAME-25DEC26EEEFFF-EEE", 0.95, open_interest=10),
                    _market("KXNBAGAME-25DEC27GGGHHH-GGG", 0.95),
                    _market("KXNBAGAME-25DEC26IIIJJJ-III", 0.95),
                ]
            }
        )
        tickers = [c.ticker for c in client.candidates(TODAY, NOW)]
        self.assertEqual(tickers, ["KXNBAGAME-25DEC26IIIJJJ-III"])

    def test_one_market_per_event_with_highest_odds(self) -> None:
        client = FakeKalshiMarketClient(
            {
                "KXNBAGAME": [
                    _market("KXNBAGAME-25DEC26BOSIND-BOS", 0.91),
                    _market("KXNBAGAME-25DEC26BOSIND-IND", 0.04),
                ]
            }
        )
        candidates = client.candidates(TODAY, NOW)
        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].ticker, "KXNBAGAME-25DEC26BOSIND-IND")
        self.assertEqual(candidates[0].side, Side.NO)

    def test_sorted_by_open_interest_and_series_failure_is_isolated(self) -> None:
        client = FakeKalshiMarketClient(
            {
                "KXNBAGAME": [_market("KXNBAGAME-25DEC26BOSIND-BOS", 0.92, open_interest=100)],
                "KXNHLGAME": [_market("KXNHLGAME-25DEC26NYRBOS-NYR", 0.92, open_interest=5_000)],
            },
            failing=("KXMLBGAME",),
        )
        tickers = [c.ticker for c in client.candidates(TODAY, NOW)]
        self.assertEqual(tickers, ["KXNHLGAME-25DEC26NYRBOS-NYR", "KXNBAGAME-25DEC26BOSIND-BOS"])
        self.assertEqual(client.last_series_counts["KXMLBGAME"], 0)

    def test_game_date_fallback_uses_expected_expiration(self) -> None:
        item = _market("KXUFCFIGHT-JONESMIOCIC-JON", 0.92, expected_expiration_time="2025-12-27T08:00:00Z")
        client = FakeKalshiMarketClient({"KXUFCFIGHT": [item]})
        self.assertEqual(len(client.candidates(TODAY, NOW)), 1)

    def test_cent_price_used_when_dollar_price_missing(self) -> None:
        item = _market("KXNBAGAME-25DEC26BOSIND-BOS", 0.0)
        del item["last_price_dollars"]
        item["last_price"] = 94
        client = FakeKalshiMarketClient({"KXNBAGAME": [item]})
        self.assertEqual(client.candidates(TODAY, NOW)[0].price_cents, 94)


if __name__ == "__main__":
    unittest.main()
