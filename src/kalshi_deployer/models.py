from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_ts(value: str | None) -> datetime | None:
    if value is None or value == "":
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_float(raw: Any, default: float = 0.0) -> float:
    if raw is None:
        return default
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str) and raw.strip() == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def parse_int(raw: Any, default: int = 0) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return default


def event_of_ticker(ticker: str) -> str:
    """KXNBAGAME-25DEC26BOSIND-BOS -> KXNBAGAME-25DEC26BOSIND"""
    parts = ticker.split("-")
    if len(parts) < 2:
        return ticker
    return "-".join(parts[:-1])


class Side(str, Enum):
    YES = "YES"
    NO = "NO"

    @staticmethod
    def parse(raw: object) -> "Side":
        return Side(str(raw or "").strip().upper())


class PlacementStatus(str, Enum):
    PENDING = "pending"
    PLACED = "placed"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    QUEUE = "queue"


# Orders whose cost still counts against an event's cap.
ACTIVE_PLACEMENT_STATUSES = (
    PlacementStatus.PENDING,
    PlacementStatus.PLACED,
    PlacementStatus.CONFIRMED,
)


class ResultStatus(str, Enum):
    UNDECIDED = "undecided"
    WON = "won"
    LOST = "lost"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    CLOSED = "closed"
    SUCCESS = "success"


class ExchangeOrderStatus(str, Enum):
    RESTING = "resting"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


@dataclass
class Order:
    id: str
    ticker: str
    event_ticker: str
    title: str
    side: Side
    price_cents: int
    units: int
    cost_cents: int
    potential_payout_cents: int
    batch_id: str | None = None
    open_interest: int = 0
    market_close_time: datetime | None = None
    placement_status: PlacementStatus = PlacementStatus.PENDING
    result_status: ResultStatus = ResultStatus.UNDECIDED
    settlement_status: SettlementStatus = SettlementStatus.PENDING
    exchange_order_id: str | None = None
    executed_price_cents: int | None = None
    executed_cost_cents: int | None = None
    actual_payout_cents: int | None = None
    fee_cents: int | None = None
    cancel_reason: str | None = None
    placed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def filled_count(self) -> int:
        if not self.executed_price_cents or self.executed_cost_cents is None:
            return 0
        return self.executed_cost_cents // self.executed_price_cents

    @property
    def committed_cents(self) -> int:
        if self.placement_status == PlacementStatus.CONFIRMED and self.executed_cost_cents is not None:
            return self.executed_cost_cents
        return self.cost_cents


@dataclass
class OrderBatch:
    id: str
    batch_date: date
    unit_size_cents: int
    total_orders: int = 0
    total_cost_cents: int = 0
    total_potential_payout_cents: int = 0
    is_paused: bool = False


@dataclass
class IlliquidMarket:
    ticker: str
    event_ticker: str
    title: str
    reason: str
    original_order_id: str | None = None
    created_at: datetime | None = None


@dataclass
class MarketCandidate:
    ticker: str
    event_ticker: str
    title: str
    side: Side
    price_cents: int
    odds: float
    open_interest: int
    close_time: datetime | None = None


@dataclass
class ExchangePosition:
    ticker: str
    cost_cents: int

    @property
    def event_ticker(self) -> str:
        return event_of_ticker(self.ticker)


@dataclass
class RestingOrder:
    order_id: str
    ticker: str
    side: Side
    price_cents: int
    remaining_count: int
    created_time: datetime

    @property
    def event_ticker(self) -> str:
        return event_of_ticker(self.ticker)

    @property
    def notional_cents(self) -> int:
        return self.price_cents * max(0, self.remaining_count)


@dataclass
class OrderDetail:
    order_id: str
    status: ExchangeOrderStatus
    filled_count: int
    price_cents: int


@dataclass
class PlaceResult:
    order_id: str
    status: ExchangeOrderStatus
    filled_count: int = 0
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_executed(self) -> bool:
        return self.status == ExchangeOrderStatus.EXECUTED


@dataclass
class MarketResult:
    ticker: str
    settled: bool
    result: str | None = None
    status: str = ""
