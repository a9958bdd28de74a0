from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import time
from typing import Callable, Iterable

from kalshi_deployer.config import DeployerConfig
from kalshi_deployer.exchange import BaseExchange
from kalshi_deployer.models import (
    IlliquidMarket,
    Order,
    PlacementStatus,
    RestingOrder,
    utc_now,
)
from kalshi_deployer.pricing import improved_price
from kalshi_deployer.runtime_state import RunCapital, RunReport
from kalshi_deployer.storage import Storage

LOGGER = logging.getLogger("kalshi_deployer")

HOLD = "hold"
IMPROVE = "improve"
CANCEL = "cancel"


@dataclass
class RestingDecision:
    action: str
    age_minutes: float
    new_price_cents: int | None = None


class RestingOrderPolicy:
    """
    Age-based handling of orders still resting on the book.

    Age counts from the ledger's first submission, which a repricing does not
    reset; a repricing also waits until the live quote itself has rested for
    the improve window, so an order climbs at most one step per window.
    """

    def __init__(
        self,
        exchange: BaseExchange,
        storage: Storage,
        config: DeployerConfig,
        *,
        now_fn: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.exchange = exchange
        self.storage = storage
        self.config = config
        self.now_fn = now_fn
        self.sleep = sleep

    def decide(self, order: Order, resting: RestingOrder, now: datetime) -> RestingDecision:
        placed_at = order.placed_at or resting.created_time
        age_minutes = (now - placed_at).total_seconds() / 60.0
        quote_age_minutes = (now - resting.created_time).total_seconds() / 60.0

        if age_minutes >= self.config.resting_cancel_after_minutes:
            return RestingDecision(CANCEL, age_minutes)
        if age_minutes < self.config.resting_improve_after_minutes:
            return RestingDecision(HOLD, age_minutes)
        if quote_age_minutes < self.config.resting_improve_after_minutes:
            return RestingDecision(HOLD, age_minutes)
        new_price = improved_price(resting.price_cents, self.config.price_improvement_cents)
        if new_price <= resting.price_cents:
            return RestingDecision(HOLD, age_minutes)
        return RestingDecision(IMPROVE, age_minutes, new_price_cents=new_price)

    def run(
        self,
        live: Iterable[tuple[Order, RestingOrder]],
        capital: RunCapital,
        report: RunReport,
    ) -> None:
        now = self.now_fn()
        for order, resting in live:
            decision = self.decide(order, resting, now)
            if decision.action == HOLD:
                continue
            if decision.action == CANCEL:
                self._cancel_stale(order, resting, decision, capital, report)
            else:
                self._improve(order, resting, decision, capital, report)
            self._throttle()

    def _cancel_stale(
        self,
        order: Order,
        resting: RestingOrder,
        decision: RestingDecision,
        capital: RunCapital,
        report: RunReport,
    ) -> None:
        minutes = round(decision.age_minutes)
        try:
            self.exchange.cancel_order(resting.order_id)
        except Exception as exc:
            LOGGER.warning("stale_cancel_failed ticker=%s error=%s", order.ticker, exc)
            report.error(f"Failed to cancel {order.ticker}: {exc}")
            return

        try:
            changed = self.storage.update_order(
                order.id,
                expected_status=PlacementStatus.PLACED,
                placement_status=PlacementStatus.CANCELLED,
                cancel_reason=f"unfilled for {minutes} minutes",
            )
            if not changed:
                _warn_already_transitioned(order)
                return
            self.storage.upsert_illiquid_market(
                IlliquidMarket(
                    ticker=order.ticker,
                    event_ticker=order.event_ticker,
                    title=order.title,
                    reason=f"order unfilled for {minutes} minutes",
                    original_order_id=order.id,
                )
            )
        except Exception as exc:
            LOGGER.error(
                "ledger_write_failed ticker=%s exchange_order_id=%s action=cancel error=%s manual reconciliation required",
                order.ticker,
                resting.order_id,
                exc,
            )
            report.error(f"Cancelled {order.ticker} on exchange but ledger write failed: {exc}")
            return

        capital.reclaim(order.cost_cents)
        report.cancelled.append(f"{order.ticker}: cancelled after {minutes} min")
        LOGGER.info("stale_order_cancelled ticker=%s age_min=%s", order.ticker, minutes)

    def _improve(
        self,
        order: Order,
        resting: RestingOrder,
        decision: RestingDecision,
        capital: RunCapital,
        report: RunReport,
    ) -> None:
        old_price = resting.price_cents
        new_price = int(decision.new_price_cents or old_price)
        try:
            self.exchange.cancel_order(resting.order_id)
        except Exception as exc:
            LOGGER.warning("improve_cancel_failed ticker=%s error=%s", order.ticker, exc)
            report.error(f"Failed to improve {order.ticker}: {exc}")
            return
        self._throttle()

        try:
            result = self.exchange.place_order(
                ticker=order.ticker,
                side=order.side,
                count=order.units,
                limit_price_cents=new_price,
                client_order_id=f"improve_{order.id}_{int(self.now_fn().timestamp() * 1000)}",
            )
        except Exception as exc:
            LOGGER.warning("replacement_failed ticker=%s price=%s error=%s", order.ticker, new_price, exc)
            report.error(f"Failed to improve {order.ticker}: {exc}")
            self._mark_replacement_failed(order, capital, report)
            return

        fields: dict[str, object] = {
            "price_cents": new_price,
            "exchange_order_id": result.order_id,
            "placement_status": PlacementStatus.PLACED,
        }
        if result.is_executed:
            filled = result.filled_count if result.filled_count > 0 else order.units
            fields.update(
                placement_status=PlacementStatus.CONFIRMED,
                executed_price_cents=new_price,
                executed_cost_cents=new_price * filled,
            )
        try:
            changed = self.storage.update_order(order.id, expected_status=PlacementStatus.PLACED, **fields)
            if not changed:
                raise LookupError(f"order {order.id} is no longer placed")
        except Exception as exc:
            LOGGER.error(
                "ledger_write_failed ticker=%s exchange_order_id=%s action=improve error=%s manual reconciliation required",
                order.ticker,
                result.order_id,
                exc,
            )
            report.error(f"Improved {order.ticker} on exchange but ledger write failed: {exc}")
            return

        capital.spend(order.units * (new_price - old_price))
        report.improved.append(f"{order.ticker}: {old_price}c -> {new_price}c ({result.status.value})")
        LOGGER.info(
            "order_improved ticker=%s old=%s new=%s status=%s",
            order.ticker,
            old_price,
            new_price,
            result.status.value,
        )

    def _mark_replacement_failed(self, order: Order, capital: RunCapital, report: RunReport) -> None:
        try:
            changed = self.storage.update_order(
                order.id,
                expected_status=PlacementStatus.PLACED,
                placement_status=PlacementStatus.CANCELLED,
                cancel_reason="replacement failed after price improvement cancel",
            )
        except Exception as exc:
            LOGGER.error(
                "ledger_write_failed ticker=%s action=replacement_cancel error=%s manual reconciliation required",
                order.ticker,
                exc,
            )
            report.error(f"Ledger write failed for {order.ticker}: {exc}")
            return
        if not changed:
            _warn_already_transitioned(order)
            return
        capital.reclaim(order.cost_cents)
        report.cancelled.append(f"{order.ticker}: replacement failed, reclaimed {order.cost_cents}c")

    def _throttle(self) -> None:
        if self.config.call_delay_seconds > 0:
            self.sleep(self.config.call_delay_seconds)


def _warn_already_transitioned(order: Order) -> None:
    LOGGER.warning("order_already_transitioned id=%s ticker=%s expected=placed", order.id, order.ticker)
