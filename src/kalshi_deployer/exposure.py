from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from kalshi_deployer.models import (
    ACTIVE_PLACEMENT_STATUSES,
    ExchangePosition,
    Order,
    RestingOrder,
)

SOURCE_LEDGER = "ledger"
SOURCE_POSITION = "position"
SOURCE_RESTING = "resting"


@dataclass
class EventExposureLedger:
    """
    Committed cents per event, rebuilt every run.

    Attribution precedence is fixed: a ledger order claims its ticker and its
    exchange order id first; an exchange position counts only for tickers no
    active ledger order claims; a resting exchange order counts only when its
    id is not claimed by a ledger order. Every cent lands in exactly one bucket.
    """

    by_event: dict[str, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)
    order_tickers: set[str] = field(default_factory=set)
    order_events: set[str] = field(default_factory=set)
    position_events: set[str] = field(default_factory=set)
    deployed_cents: int = 0

    @classmethod
    def build(
        cls,
        orders: Iterable[Order],
        positions: Iterable[ExchangePosition],
        resting_orders: Iterable[RestingOrder],
    ) -> "EventExposureLedger":
        ledger = cls()
        claimed_ids: set[str] = set()

        for order in orders:
            if order.placement_status not in ACTIVE_PLACEMENT_STATUSES:
                continue
            ledger._add(order.event_ticker, order.committed_cents, SOURCE_LEDGER)
            ledger.order_tickers.add(order.ticker)
            ledger.order_events.add(order.event_ticker)
            if order.exchange_order_id:
                claimed_ids.add(order.exchange_order_id)

        for position in positions:
            cost = max(0, int(position.cost_cents))
            ledger.deployed_cents += cost
            if cost <= 0:
                continue
            ledger.position_events.add(position.event_ticker)
            if position.ticker in ledger.order_tickers:
                continue
            ledger._add(position.event_ticker, cost, SOURCE_POSITION)

        for resting in resting_orders:
            if resting.order_id in claimed_ids:
                continue
            ledger._add(resting.event_ticker, resting.notional_cents, SOURCE_RESTING)

        return ledger

    def _add(self, event_ticker: str, cents: int, source: str) -> None:
        amount = max(0, int(cents))
        self.by_event[event_ticker] = self.by_event.get(event_ticker, 0) + amount
        self.by_source[source] = self.by_source.get(source, 0) + amount

    def exposure(self, event_ticker: str) -> int:
        return self.by_event.get(event_ticker, 0)

    def commit(self, event_ticker: str, cents: int) -> None:
        self._add(event_ticker, cents, SOURCE_LEDGER)
        self.order_events.add(event_ticker)

    def release(self, event_ticker: str, cents: int) -> None:
        """Drop a stale estimate before it is recomputed."""
        amount = max(0, int(cents))
        current = self.by_event.get(event_ticker, 0)
        self.by_event[event_ticker] = max(0, current - amount)
        self.by_source[SOURCE_LEDGER] = max(0, self.by_source.get(SOURCE_LEDGER, 0) - amount)

    def is_represented(self, ticker: str, event_ticker: str) -> bool:
        if ticker in self.order_tickers:
            return True
        if event_ticker in self.order_events or event_ticker in self.position_events:
            return True
        return self.exposure(event_ticker) > 0

    @property
    def total_cents(self) -> int:
        return sum(self.by_event.values())
