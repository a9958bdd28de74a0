from __future__ import annotations

import contextlib
from datetime import date
import io
import json
import os
import tempfile
import unittest
from pathlib import Path
import sys
from unittest import mock

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from kalshi_deployer.main import build_parser, cli
from kalshi_deployer.models import IlliquidMarket
from kalshi_deployer.storage import Storage
from tests.helpers import make_candidate


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "deployer.db")
        self.env = mock.patch.dict(
            os.environ,
            {"BOT_DB_PATH": self.db_path, "BOT_MODE": "paper", "CALL_DELAY_SECONDS": "0"},
        )
        self.env.start()

    def tearDown(self) -> None:
        self.env.stop()
        self.tmp.cleanup()

    def _invoke(self, *argv: str) -> tuple[int, object]:
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            code = cli(list(argv))
        output = buffer.getvalue()
        return code, json.loads(output) if output.strip() else None

    def test_parser_accepts_run_mode(self) -> None:
        args = build_parser().parse_args(["run", "--mode", "live"])
        self.assertEqual(args.mode, "live")

    def test_clear_blacklist_requires_a_target(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["clear-blacklist"])

    def test_pause_and_resume_named_day(self) -> None:
        code, payload = self._invoke("pause", "--date", "2025-12-26")
        self.assertEqual(code, 0)
        self.assertTrue(payload["is_paused"])
        code, payload = self._invoke("resume", "--date", "2025-12-26")
        self.assertEqual(code, 0)
        self.assertFalse(payload["is_paused"])

    def test_pause_rejects_bad_date(self) -> None:
        code, _ = self._invoke("pause", "--date", "26/12/2025")
        self.assertEqual(code, 2)

    def test_blacklist_listing_and_clear(self) -> None:
        storage = Storage(self.db_path)
        storage.upsert_illiquid_market(
            IlliquidMarket(ticker="KXNBAGAME-25DEC26BOSIND-BOS", event_ticker="KXNBAGAME-25DEC26BOSIND", title="", reason="x")
        )
        storage.close()

        code, payload = self._invoke("blacklist")
        self.assertEqual(code, 0)
        self.assertEqual([e["ticker"] for e in payload], ["KXNBAGAME-25DEC26BOSIND-BOS"])

        code, payload = self._invoke("clear-blacklist", "--all")
        self.assertEqual(payload, {"removed": 1})

    def test_run_paper_mode_without_candidates(self) -> None:
        with mock.patch("kalshi_deployer.main.KalshiMarketClient.candidates", return_value=[]):
            code, payload = self._invoke("run")
        self.assertEqual(code, 0)
        self.assertTrue(payload["success"])
        self.assertEqual(payload["actions"]["placed"], 0)
        self.assertEqual(payload["capital"]["available"], 10_000)

    def test_run_paper_mode_warns_that_state_is_not_kept(self) -> None:
        with mock.patch("kalshi_deployer.main.KalshiMarketClient.candidates", return_value=[]):
            with self.assertLogs("kalshi_deployer", level="WARNING") as logs:
                code, _ = self._invoke("run")
        self.assertEqual(code, 0)
        self.assertTrue(any("does not persist across invocations" in line for line in logs.output))

    def test_prepare_writes_pending_orders_without_submitting(self) -> None:
        candidate = make_candidate("KXNBAGAME-25DEC26BOSIND-BOS", price_cents=92)
        with mock.patch("kalshi_deployer.main.KalshiMarketClient.candidates", return_value=[candidate]):
            code, payload = self._invoke("prepare", "--date", "2025-12-26")

        self.assertEqual(code, 0)
        self.assertEqual(payload["actions"]["prepared"], 1)
        self.assertEqual(payload["actions"]["placed"], 0)
        storage = Storage(self.db_path)
        try:
            pending = storage.pending_orders_for_day(date(2025, 12, 26))
        finally:
            storage.close()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].units, 3)
        self.assertIsNone(pending[0].exchange_order_id)

    def test_prepare_rejects_bad_date(self) -> None:
        code, _ = self._invoke("prepare", "--date", "tomorrow")
        self.assertEqual(code, 2)

    def test_live_mode_without_client_fails_cleanly(self) -> None:
        with mock.patch.dict(os.environ, {"EXCHANGE_CLIENT": ""}):
            code, payload = self._invoke("run", "--mode", "live")
        self.assertEqual(code, 2)
        self.assertIsNone(payload)

    def test_report(self) -> None:
        code, payload = self._invoke("report")
        self.assertEqual(code, 0)
        self.assertEqual(payload["placement_status"], {})


if __name__ == "__main__":
    unittest.main()
