from __future__ import annotations

from datetime import date, datetime, timezone
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from kalshi_deployer.models import event_of_ticker
from kalshi_deployer.trading_day import execution_gate_open, extract_game_date, trading_day

TZ = "America/New_York"


class TradingDayTests(unittest.TestCase):
    def test_before_rollover_belongs_to_previous_day(self) -> None:
        # 03:30 EST on Dec 27
        now = datetime(2025, 12, 27, 8, 30, tzinfo=timezone.utc)
        self.assertEqual(trading_day(now, TZ, 4), date(2025, 12, 26))

    def test_after_rollover_is_local_calendar_day(self) -> None:
        # 04:00 EST on Dec 27
        now = datetime(2025, 12, 27, 9, 0, tzinfo=timezone.utc)
        self.assertEqual(trading_day(now, TZ, 4), date(2025, 12, 27))

    def test_utc_midnight_is_still_previous_evening_in_new_york(self) -> None:
        now = datetime(2025, 12, 27, 1, 0, tzinfo=timezone.utc)
        self.assertEqual(trading_day(now, TZ, 4), date(2025, 12, 26))

    def test_gate_opens_at_six_local_time(self) -> None:
        self.assertFalse(execution_gate_open(datetime(2025, 12, 26, 10, 59, tzinfo=timezone.utc), TZ, 6))
        self.assertTrue(execution_gate_open(datetime(2025, 12, 26, 11, 0, tzinfo=timezone.utc), TZ, 6))
        # EDT: 06:00 local is 10:00 UTC
        self.assertTrue(execution_gate_open(datetime(2025, 7, 4, 10, 0, tzinfo=timezone.utc), TZ, 6))

    def test_game_date_from_event_ticker(self) -> None:
        self.assertEqual(extract_game_date("KXNBAGAME-25DEC26BOSIND"), date(2025, 12, 26))
        self.assertEqual(extract_game_date("kxnflgame-26jan04bufnyj"), date(2026, 1, 4))

    def test_game_date_falls_back_to_expiration(self) -> None:
        expiration = datetime(2025, 12, 27, 8, 0, tzinfo=timezone.utc)
        self.assertEqual(extract_game_date("KXUFCFIGHT-JONESMIOCIC", expiration), date(2025, 12, 26))
        self.assertIsNone(extract_game_date("KXUFCFIGHT-JONESMIOCIC"))

    def test_event_of_ticker_drops_last_segment(self) -> None:
        self.assertEqual(event_of_ticker("KXNBAGAME-25DEC26BOSIND-BOS"), "KXNBAGAME-25DEC26BOSIND")
        self.assertEqual(event_of_ticker("PLAIN"), "PLAIN")


if __name__ == "__main__":
    unittest.main()
