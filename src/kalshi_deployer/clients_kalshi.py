from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
import logging
import time
from typing import TypedDict, cast

from kalshi_deployer.config import DeployerConfig
from kalshi_deployer.http_utils import get_json
from kalshi_deployer.models import MarketCandidate, parse_float, parse_int, parse_ts
from kalshi_deployer.pricing import favorite_side, odds_to_cents
from kalshi_deployer.trading_day import extract_game_date

LOGGER = logging.getLogger("kalshi_deployer")


class KalshiMarketPayload(TypedDict, total=False):
    ticker: str
    event_ticker: str
    title: str
    status: str
    close_time: str
    expected_expiration_time: str
    last_price: object
    last_price_dollars: object
    open_interest: object
    liquidity: object


def _yes_probability(item: KalshiMarketPayload) -> float:
    dollars = parse_float(item.get("last_price_dollars"), -1.0)
    if dollars >= 0:
        return dollars
    return parse_float(item.get("last_price")) / 100.0


def _safe_ts(raw: object) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return parse_ts(raw)
    except ValueError:
        return None


@dataclass
class KalshiMarketClient:
    """Public (unsigned) market listing; owns odds, liquidity and game-date filtering."""

    base_url: str
    timeout_seconds: float = 10.0
    series: tuple[str, ...] = ()
    min_odds: float = 0.90
    max_odds: float = 0.995
    min_open_interest: int = 50
    max_close_hours: int = 720
    pages: int = 2
    page_limit: int = 500
    page_delay_seconds: float = 1.0
    last_series_counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: DeployerConfig) -> "KalshiMarketClient":
        return cls(
            base_url=config.kalshi_api_url.rstrip("/"),
            timeout_seconds=config.api_timeout_seconds,
            series=config.sports_series,
            min_odds=config.min_odds,
            max_odds=config.max_odds,
            min_open_interest=config.min_open_interest,
            max_close_hours=config.market_max_close_hours,
            pages=config.market_pages,
        )

    def fetch_markets(self, series_ticker: str, max_close_ts: int) -> list[KalshiMarketPayload]:
        out: list[KalshiMarketPayload] = []
        cursor = ""
        for page in range(max(1, self.pages)):
            params = {
                "limit": str(self.page_limit),
                "status": "open",
                "max_close_ts": str(max_close_ts),
                "series_ticker": series_ticker,
            }
            if cursor:
                params["cursor"] = cursor
            payload = get_json(f"{self.base_url}/markets", params=params, timeout=self.timeout_seconds)
            if not isinstance(payload, dict):
                raise RuntimeError("Kalshi /markets response must be a JSON object")
            markets = payload.get("markets") or []
            for item in markets:
                if isinstance(item, dict):
                    out.append(cast(KalshiMarketPayload, item))
            cursor = str(payload.get("cursor") or "")
            if not markets or not cursor:
                break
            if page < self.pages - 1 and self.page_delay_seconds > 0:
                time.sleep(self.page_delay_seconds)
        return out

    def to_candidate(self, item: KalshiMarketPayload) -> MarketCandidate | None:
        ticker = str(item.get("ticker") or "").strip()
        event_ticker = str(item.get("event_ticker") or "").strip()
        if not ticker or not event_ticker:
            return None
        side, odds = favorite_side(_yes_probability(item))
        return MarketCandidate(
            ticker=ticker,
            event_ticker=event_ticker,
            title=str(item.get("title") or ""),
            side=side,
            price_cents=odds_to_cents(odds),
            odds=odds,
            open_interest=parse_int(item.get("open_interest")),
            close_time=_safe_ts(item.get("close_time")),
        )

    def candidates(self, trading_day: date, now: datetime | None = None) -> list[MarketCandidate]:
        current = now or datetime.now(tz=timezone.utc)
        max_close_ts = int((current + timedelta(hours=self.max_close_hours)).timestamp())

        best_by_event: dict[str, MarketCandidate] = {}
        self.last_series_counts = {}
        for series in self.series:
            try:
                items = self.fetch_markets(series, max_close_ts)
            except Exception as exc:
                LOGGER.warning("market_fetch_failed series=%s error=%s", series, exc)
                self.last_series_counts[series] = 0
                continue
            self.last_series_counts[series] = len(items)
            for item in items:
                candidate = self.to_candidate(item)
                if candidate is None:
                    continue
                if not (self.min_odds <= candidate.odds <= self.max_odds):
                    continue
                if candidate.open_interest < self.min_open_interest:
                    continue
                game_date = extract_game_date(
                    candidate.event_ticker,
                    _safe_ts(item.get("expected_expiration_time")),
                )
                if game_date != trading_day:
                    continue
                incumbent = best_by_event.get(candidate.event_ticker)
                if incumbent is None or candidate.odds > incumbent.odds:
                    best_by_event[candidate.event_ticker] = candidate

        out = sorted(best_by_event.values(), key=lambda c: (-c.open_interest, c.ticker))
        LOGGER.info(
            "candidates trading_day=%s series=%s fetched=%s eligible=%s",
            trading_day.isoformat(),
            len(self.series),
            sum(self.last_series_counts.values()),
            len(out),
        )
        return out
