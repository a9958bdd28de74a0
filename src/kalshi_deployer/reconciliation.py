from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from kalshi_deployer.exchange import BaseExchange
from kalshi_deployer.models import (
    ExchangeOrderStatus,
    Order,
    PlacementStatus,
    RestingOrder,
)
from kalshi_deployer.runtime_state import RunCapital, RunReport
from kalshi_deployer.storage import Storage

LOGGER = logging.getLogger("kalshi_deployer")

REASON_CANCELLED_UPSTREAM = "cancelled upstream (detected during reconciliation)"
REASON_NOT_FOUND = "not found on exchange (ghost order)"


class ReconciliationEngine:
    """
    Resolves ledger orders in `placed` against the exchange. The exchange wins:
    an order absent from the resting snapshot is looked up and moved to
    `confirmed` or `cancelled`; one the exchange has no record of is a ghost.
    """

    def __init__(
        self,
        exchange: BaseExchange,
        storage: Storage,
        *,
        call_delay_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.exchange = exchange
        self.storage = storage
        self.call_delay_seconds = call_delay_seconds
        self.sleep = sleep

    def run(
        self,
        resting_snapshot: Iterable[RestingOrder],
        capital: RunCapital,
        report: RunReport,
    ) -> list[tuple[Order, RestingOrder]]:
        """Returns the (order, resting order) pairs that are still live on the book."""
        live_by_id = {resting.order_id: resting for resting in resting_snapshot}
        try:
            placed = self.storage.placed_orders()
        except Exception as exc:
            LOGGER.error("reconcile_load_failed error=%s", exc)
            report.error(f"Failed to load placed orders: {exc}")
            return []

        still_live: list[tuple[Order, RestingOrder]] = []
        for order in placed:
            exchange_order_id = order.exchange_order_id or ""
            resting = live_by_id.get(exchange_order_id)
            if resting is not None:
                still_live.append((order, resting))
                continue
            self._resolve_missing(order, capital, report)
            self._throttle()
        LOGGER.info(
            "reconcile placed=%s live=%s reclaimed=%sc",
            len(placed),
            len(still_live),
            capital.reclaimed_cents,
        )
        return still_live

    def _resolve_missing(self, order: Order, capital: RunCapital, report: RunReport) -> None:
        exchange_order_id = order.exchange_order_id or ""
        try:
            detail = self.exchange.get_order_detail(exchange_order_id)
        except Exception as exc:
            LOGGER.warning(
                "ghost_order ticker=%s exchange_order_id=%s error=%s",
                order.ticker,
                exchange_order_id,
                exc,
            )
            self._cancel(order, REASON_NOT_FOUND, capital, report, label="ghost order not on exchange")
            return

        if detail.status == ExchangeOrderStatus.EXECUTED:
            filled = detail.filled_count if detail.filled_count > 0 else order.units
            price = detail.price_cents if detail.price_cents > 0 else order.price_cents
            try:
                changed = self.storage.update_order(
                    order.id,
                    expected_status=PlacementStatus.PLACED,
                    placement_status=PlacementStatus.CONFIRMED,
                    executed_price_cents=price,
                    executed_cost_cents=price * filled,
                )
            except Exception as exc:
                LOGGER.error("confirm_write_failed ticker=%s error=%s", order.ticker, exc)
                report.error(f"Failed to confirm {order.ticker}: {exc}")
                return
            if not changed:
                _warn_already_transitioned(order)
                return
            report.confirmed.append(f"{order.ticker}: filled {filled}/{order.units}u @ {price}c")
            LOGGER.info("order_filled ticker=%s filled=%s price=%s", order.ticker, filled, price)
        elif detail.status == ExchangeOrderStatus.CANCELLED:
            self._cancel(order, REASON_CANCELLED_UPSTREAM, capital, report, label="cancelled on exchange")
        else:
            # Resting but missing from the snapshot: the next run sees it.
            LOGGER.info("snapshot_race ticker=%s exchange_order_id=%s", order.ticker, exchange_order_id)

    def _cancel(
        self,
        order: Order,
        reason: str,
        capital: RunCapital,
        report: RunReport,
        *,
        label: str,
    ) -> None:
        try:
            changed = self.storage.update_order(
                order.id,
                expected_status=PlacementStatus.PLACED,
                placement_status=PlacementStatus.CANCELLED,
                cancel_reason=reason,
            )
        except Exception as exc:
            LOGGER.error("cancel_write_failed ticker=%s error=%s", order.ticker, exc)
            report.error(f"Failed to cancel {order.ticker} in ledger: {exc}")
            return
        if not changed:
            _warn_already_transitioned(order)
            return
        reclaimed = capital.reclaim(order.cost_cents)
        report.cancelled.append(f"{order.ticker}: {label}, reclaimed {reclaimed}c")

    def _throttle(self) -> None:
        if self.call_delay_seconds > 0:
            self.sleep(self.call_delay_seconds)


def _warn_already_transitioned(order: Order) -> None:
    LOGGER.warning(
        "order_already_transitioned id=%s ticker=%s expected=%s",
        order.id,
        order.ticker,
        PlacementStatus.PLACED.value,
    )
