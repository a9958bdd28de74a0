from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from kalshi_deployer.config import load_config  # noqa: E402
from kalshi_deployer.exchange import PaperExchange  # noqa: E402
from kalshi_deployer.models import (  # noqa: E402
    MarketCandidate,
    Order,
    PlacementStatus,
    Side,
    event_of_ticker,
)
from kalshi_deployer.runtime_state import RunReport  # noqa: E402
from kalshi_deployer.storage import Storage, new_id  # noqa: E402

# 12:00 America/New_York on 2025-12-26: gate open, trading day 2025-12-26.
NOON_ET = datetime(2025, 12, 26, 17, 0, tzinfo=timezone.utc)
TODAY = date(2025, 12, 26)


def test_config(**kwargs):
    cfg = load_config()
    defaults = {"database_path": ":memory:", "call_delay_seconds": 0.0, "mode": "paper"}
    defaults.update(kwargs)
    return replace(cfg, **defaults)


test_config.__test__ = False  # type: ignore[attr-defined]


class Clock:
    def __init__(self, now: datetime = NOON_ET) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def no_sleep(_seconds: float) -> None:
    return None


def empty_report(now: datetime = NOON_ET) -> RunReport:
    return RunReport(timestamp=now.isoformat(), trading_day=TODAY)


def make_order(
    ticker: str = "KXNBAGAME-25DEC26BOSIND-BOS",
    *,
    price_cents: int = 90,
    units: int = 10,
    status: PlacementStatus = PlacementStatus.PENDING,
    batch_id: str | None = None,
    exchange_order_id: str | None = None,
    open_interest: int = 1000,
    placed_at: datetime | None = None,
    side: Side = Side.YES,
) -> Order:
    return Order(
        id=new_id(),
        ticker=ticker,
        event_ticker=event_of_ticker(ticker),
        title=f"{ticker} to win",
        side=side,
        price_cents=price_cents,
        units=units,
        cost_cents=price_cents * units,
        potential_payout_cents=100 * units,
        batch_id=batch_id,
        open_interest=open_interest,
        placement_status=status,
        exchange_order_id=exchange_order_id,
        placed_at=placed_at,
    )


def make_candidate(
    ticker: str,
    *,
    price_cents: int = 92,
    open_interest: int = 1000,
    side: Side = Side.YES,
) -> MarketCandidate:
    return MarketCandidate(
        ticker=ticker,
        event_ticker=event_of_ticker(ticker),
        title=f"{ticker} to win",
        side=side,
        price_cents=price_cents,
        odds=price_cents / 100.0,
        open_interest=open_interest,
    )


class StaticFeed:
    def __init__(self, candidates: list[MarketCandidate] | None = None) -> None:
        self.items = list(candidates or [])
        self.calls: list[date] = []

    def candidates(self, trading_day: date, now: datetime | None = None) -> list[MarketCandidate]:
        self.calls.append(trading_day)
        return list(self.items)


class FlakyExchange(PaperExchange):
    """Paper exchange whose named calls raise until cleared."""

    def __init__(self, balance_cents: int, **kwargs) -> None:
        super().__init__(balance_cents, **kwargs)
        self.failing: set[str] = set()
        self.place_calls: list[dict] = []
        self.cancel_calls: list[str] = []

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def get_balance(self) -> int:
        self._maybe_fail("get_balance")
        return super().get_balance()

    def get_positions(self):
        self._maybe_fail("get_positions")
        return super().get_positions()

    def get_resting_orders(self):
        self._maybe_fail("get_resting_orders")
        return super().get_resting_orders()

    def get_order_detail(self, order_id: str):
        self._maybe_fail("get_order_detail")
        return super().get_order_detail(order_id)

    def place_order(self, **kwargs):
        self.place_calls.append(dict(kwargs))
        self._maybe_fail("place_order")
        return super().place_order(**kwargs)

    def cancel_order(self, order_id: str) -> None:
        self.cancel_calls.append(order_id)
        self._maybe_fail("cancel_order")
        super().cancel_order(order_id)

    def get_market_result(self, ticker: str):
        self._maybe_fail("get_market_result")
        return super().get_market_result(ticker)


def memory_storage() -> Storage:
    return Storage(":memory:")


def place_resting(
    exchange: PaperExchange,
    storage: Storage,
    ticker: str,
    *,
    price_cents: int = 90,
    units: int = 10,
    placed_at: datetime | None = None,
) -> Order:
    """Rest an order on the paper exchange and record it as `placed` in the ledger."""
    result = exchange.place_order(
        ticker=ticker,
        side=Side.YES,
        count=units,
        limit_price_cents=price_cents,
        client_order_id=f"test_{ticker}",
    )
    order = make_order(
        ticker,
        price_cents=price_cents,
        units=units,
        status=PlacementStatus.PLACED,
        exchange_order_id=result.order_id,
        placed_at=placed_at or exchange.now_fn(),
    )
    storage.insert_order(order)
    return order
