from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import importlib
import logging
from typing import Callable
import uuid

from kalshi_deployer.config import DeployerConfig
from kalshi_deployer.models import (
    ExchangeOrderStatus,
    ExchangePosition,
    MarketResult,
    OrderDetail,
    PlaceResult,
    RestingOrder,
    Side,
    utc_now,
)
from kalshi_deployer.pricing import MAX_PRICE_CENTS, MIN_PRICE_CENTS

LOGGER = logging.getLogger("kalshi_deployer")


class ExchangeError(RuntimeError):
    pass


class OrderNotFoundError(ExchangeError):
    pass


class BaseExchange:
    """Signed exchange calls the engine depends on. All amounts are integer cents."""

    def get_balance(self) -> int:
        raise NotImplementedError

    def get_positions(self) -> list[ExchangePosition]:
        raise NotImplementedError

    def get_resting_orders(self) -> list[RestingOrder]:
        raise NotImplementedError

    def get_order_detail(self, order_id: str) -> OrderDetail:
        raise NotImplementedError

    def place_order(
        self,
        *,
        ticker: str,
        side: Side,
        count: int,
        limit_price_cents: int,
        client_order_id: str,
    ) -> PlaceResult:
        raise NotImplementedError

    def cancel_order(self, order_id: str) -> None:
        raise NotImplementedError

    def get_market_result(self, ticker: str) -> MarketResult:
        return MarketResult(ticker=ticker, settled=False, status="unsupported")


@dataclass
class PaperOrder:
    order_id: str
    client_order_id: str
    ticker: str
    side: Side
    price_cents: int
    count: int
    created_time: datetime
    filled_count: int = 0
    status: ExchangeOrderStatus = ExchangeOrderStatus.RESTING

    @property
    def remaining_count(self) -> int:
        return max(0, self.count - self.filled_count)


class PaperExchange(BaseExchange):
    """In-memory exchange: limit buys reserve cash on placement and rest until filled or cancelled."""

    def __init__(
        self,
        balance_cents: int,
        *,
        fill_on_place: bool = False,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self.balance_cents = int(balance_cents)
        self.fill_on_place = fill_on_place
        self.now_fn = now_fn
        self.orders: dict[str, PaperOrder] = {}
        self.position_costs: dict[str, int] = {}
        self.market_results: dict[str, MarketResult] = {}

    def get_balance(self) -> int:
        return self.balance_cents

    def get_positions(self) -> list[ExchangePosition]:
        return [
            ExchangePosition(ticker=ticker, cost_cents=cost)
            for ticker, cost in self.position_costs.items()
            if cost > 0
        ]

    def get_resting_orders(self) -> list[RestingOrder]:
        return [
            RestingOrder(
                order_id=order.order_id,
                ticker=order.ticker,
                side=order.side,
                price_cents=order.price_cents,
                remaining_count=order.remaining_count,
                created_time=order.created_time,
            )
            for order in self.orders.values()
            if order.status == ExchangeOrderStatus.RESTING
        ]

    def get_order_detail(self, order_id: str) -> OrderDetail:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        return OrderDetail(
            order_id=order.order_id,
            status=order.status,
            filled_count=order.filled_count,
            price_cents=order.price_cents,
        )

    def place_order(
        self,
        *,
        ticker: str,
        side: Side,
        count: int,
        limit_price_cents: int,
        client_order_id: str,
    ) -> PlaceResult:
        if not MIN_PRICE_CENTS <= limit_price_cents <= MAX_PRICE_CENTS:
            raise ExchangeError(f"invalid limit price {limit_price_cents}")
        if count < 1:
            raise ExchangeError(f"invalid count {count}")
        cost = limit_price_cents * count
        if cost > self.balance_cents:
            raise ExchangeError(f"insufficient balance need={cost} have={self.balance_cents}")
        self.balance_cents -= cost
        order = PaperOrder(
            order_id=f"paper-{uuid.uuid4().hex[:12]}",
            client_order_id=client_order_id,
            ticker=ticker,
            side=side,
            price_cents=limit_price_cents,
            count=count,
            created_time=self.now_fn(),
        )
        self.orders[order.order_id] = order
        if self.fill_on_place:
            self.fill(order.order_id)
        return PlaceResult(
            order_id=order.order_id,
            status=order.status,
            filled_count=order.filled_count,
            raw={"paper": True, "client_order_id": client_order_id},
        )

    def cancel_order(self, order_id: str) -> None:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        if order.status != ExchangeOrderStatus.RESTING:
            raise ExchangeError(f"order {order_id} is {order.status.value}, cannot cancel")
        self.balance_cents += order.remaining_count * order.price_cents
        order.status = ExchangeOrderStatus.CANCELLED

    def fill(self, order_id: str, count: int | None = None) -> None:
        order = self.orders[order_id]
        if order.status != ExchangeOrderStatus.RESTING:
            return
        fill_count = order.remaining_count if count is None else min(count, order.remaining_count)
        order.filled_count += fill_count
        self.position_costs[order.ticker] = self.position_costs.get(order.ticker, 0) + fill_count * order.price_cents
        if order.remaining_count == 0:
            order.status = ExchangeOrderStatus.EXECUTED

    def settle_market(self, ticker: str, result: str) -> None:
        self.market_results[ticker] = MarketResult(ticker=ticker, settled=True, result=result, status="settled")

    def get_market_result(self, ticker: str) -> MarketResult:
        return self.market_results.get(ticker, MarketResult(ticker=ticker, settled=False, status="open"))


def load_exchange(config: DeployerConfig) -> BaseExchange:
    if config.paper_mode:
        LOGGER.warning(
            "paper_mode exchange state is in-memory and does not persist across invocations; "
            "placed orders from earlier runs will be reconciled as ghosts and their capital reclaimed"
        )
        return PaperExchange(config.paper_bankroll_cents)
    target = config.exchange_client
    if not target or ":" not in target:
        raise RuntimeError("EXCHANGE_CLIENT=package.module:factory is required for live mode")
    module_name, attr = target.split(":", 1)
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise RuntimeError(f"Unable to load exchange client {target!r}: {exc}") from exc
    exchange = factory(config)
    LOGGER.info("exchange_client_loaded target=%s", target)
    return exchange
