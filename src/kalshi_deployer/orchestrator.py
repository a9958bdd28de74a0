from __future__ import annotations

from datetime import date, datetime
import logging
import time
from typing import Callable, Protocol

from kalshi_deployer.allocator import Allocation, CapitalAllocator
from kalshi_deployer.config import DeployerConfig
from kalshi_deployer.exchange import BaseExchange
from kalshi_deployer.exposure import EventExposureLedger
from kalshi_deployer.models import (
    ExchangePosition,
    MarketCandidate,
    Order,
    OrderBatch,
    PlacementStatus,
    PlaceResult,
    RestingOrder,
    utc_now,
)
from kalshi_deployer.reconciliation import ReconciliationEngine
from kalshi_deployer.resting import RestingOrderPolicy
from kalshi_deployer.risk import SafetyGate, per_event_cap
from kalshi_deployer.runtime_state import RunCapital, RunReport
from kalshi_deployer.storage import Storage, new_id
from kalshi_deployer.trading_day import execution_gate_open, trading_day

LOGGER = logging.getLogger("kalshi_deployer")

PAYOUT_PER_UNIT_CENTS = 100


class CandidateFeed(Protocol):
    def candidates(self, trading_day: date, now: datetime | None = None) -> list[MarketCandidate]:
        ...


class Orchestrator:
    """
    One deployment pass:
      1. balance, positions and resting orders from the exchange
      2. reconcile `placed` orders that left the book
      3. reprice or cancel orders still resting
      4. execute today's `pending` orders (after the gate hour)
      5. discover candidates not already represented
      6. allocate and submit
    """

    def __init__(
        self,
        config: DeployerConfig,
        storage: Storage,
        exchange: BaseExchange,
        feed: CandidateFeed,
        *,
        now_fn: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.storage = storage
        self.exchange = exchange
        self.feed = feed
        self.now_fn = now_fn
        self.sleep = sleep
        self.allocator = CapitalAllocator()
        self.gate = SafetyGate(config)
        self.reconciler = ReconciliationEngine(
            exchange,
            storage,
            call_delay_seconds=config.call_delay_seconds,
            sleep=sleep,
        )
        self.resting_policy = RestingOrderPolicy(
            exchange,
            storage,
            config,
            now_fn=now_fn,
            sleep=sleep,
        )

    def run(self) -> RunReport:
        now = self.now_fn()
        day = trading_day(now, self.config.exchange_timezone, self.config.trading_day_rollover_hour)
        report = RunReport(timestamp=now.isoformat(), trading_day=day)
        try:
            self._run(now, day, report)
        except Exception as exc:
            LOGGER.exception("run_failed error=%s", exc)
            report.success = False
            report.error(f"Unexpected failure: {exc}")
        LOGGER.info(
            "run_complete day=%s success=%s improved=%s cancelled=%s confirmed=%s placed=%s queued=%s "
            "discovered=%s remaining=%sc errors=%s",
            day,
            report.success,
            len(report.improved),
            len(report.cancelled),
            len(report.confirmed),
            len(report.placed),
            len(report.queued),
            report.discovered,
            report.remaining_cents,
            len(report.errors),
        )
        return report

    def _run(self, now: datetime, day: date, report: RunReport) -> None:
        # Phase 1
        try:
            balance = int(self.exchange.get_balance())
        except Exception as exc:
            LOGGER.error("balance_fetch_failed error=%s", exc)
            report.success = False
            report.error(f"Failed to fetch balance: {exc}")
            return
        capital = RunCapital(available_cents=balance)
        report.available_cents = balance
        report.remaining_cents = balance

        positions = self._fetch_positions(report)
        resting = self._fetch_resting(report)

        # Phases 2 and 3
        if resting is None:
            report.skipped.append("reconciliation skipped: resting order snapshot unavailable")
        else:
            live = self.reconciler.run(resting, capital, report)
            self.resting_policy.run(live, capital, report)

        # Exchange state moved during phases 2 and 3.
        fresh_positions = self._fetch_positions(report)
        fresh_resting = self._fetch_resting(report)
        positions = fresh_positions if fresh_positions is not None else positions
        resting = fresh_resting if fresh_resting is not None else resting
        if positions is None or resting is None:
            report.remaining_cents = capital.available_cents
            report.skipped.append("deployment skipped: exchange exposure unknown")
            return

        exposure = EventExposureLedger.build(self.storage.active_orders(), positions, resting)
        report.deployed_cents = exposure.deployed_cents
        cap_cents = per_event_cap(capital.available_cents + exposure.deployed_cents, self.config.max_event_fraction)
        LOGGER.info(
            "exposure events=%s total=%sc deployed=%sc available=%sc cap=%sc",
            len(exposure.by_event),
            exposure.total_cents,
            exposure.deployed_cents,
            capital.available_cents,
            cap_cents,
        )

        gate_open = execution_gate_open(now, self.config.exchange_timezone, self.config.execution_gate_hour)
        batch = self._batch_for(day, report)
        paused = batch is not None and batch.is_paused
        if paused:
            report.skipped.append(f"batch {day.isoformat()} is paused: no orders submitted")

        # Phase 4
        if gate_open and batch is not None and not paused:
            self._execute_pending(day, exposure, cap_cents, capital, report)

        # Phase 5
        eligible = self._discover(day, now, exposure, cap_cents, report)

        # Phase 6
        if not gate_open:
            report.skipped.append(
                f"before {self.config.execution_gate_hour:02d}:00 {self.config.exchange_timezone}: "
                f"execution paused, {len(eligible)} markets ready"
            )
        elif batch is not None and not paused:
            self._deploy(batch, eligible, exposure, cap_cents, capital, report)
            try:
                self.storage.refresh_batch_totals(batch.id)
            except Exception as exc:
                LOGGER.warning("batch_totals_failed batch=%s error=%s", batch.id, exc)
                report.error(f"Failed to refresh batch totals: {exc}")

        report.remaining_cents = capital.available_cents

    def prepare(self, day: date | None = None) -> RunReport:
        """
        Sizes a trading day's batch as `pending` orders without touching the
        book. A later run after the gate hour resizes and submits them.
        """
        now = self.now_fn()
        if day is None:
            day = trading_day(now, self.config.exchange_timezone, self.config.trading_day_rollover_hour)
        report = RunReport(timestamp=now.isoformat(), trading_day=day)
        try:
            self._prepare(day, now, report)
        except Exception as exc:
            LOGGER.exception("prepare_failed day=%s error=%s", day, exc)
            report.success = False
            report.error(f"Unexpected failure: {exc}")
        LOGGER.info(
            "prepare_complete day=%s success=%s prepared=%s discovered=%s errors=%s",
            day,
            report.success,
            len(report.prepared),
            report.discovered,
            len(report.errors),
        )
        return report

    def _prepare(self, day: date, now: datetime, report: RunReport) -> None:
        try:
            balance = int(self.exchange.get_balance())
        except Exception as exc:
            LOGGER.error("balance_fetch_failed error=%s", exc)
            report.success = False
            report.error(f"Failed to fetch balance: {exc}")
            return
        report.available_cents = balance
        report.remaining_cents = balance

        positions = self._fetch_positions(report)
        resting = self._fetch_resting(report)
        if positions is None or resting is None:
            report.skipped.append("prepare skipped: exchange exposure unknown")
            return

        batch = self._batch_for(day, report)
        if batch is None:
            report.success = False
            return
        if batch.is_paused:
            report.skipped.append(f"batch {day.isoformat()} is paused: nothing prepared")
            return
        existing = self.storage.pending_orders_for_day(day)
        if existing:
            report.skipped.append(f"batch {day.isoformat()} already has {len(existing)} pending orders")
            return

        exposure = EventExposureLedger.build(self.storage.active_orders(), positions, resting)
        report.deployed_cents = exposure.deployed_cents
        cap_cents = per_event_cap(balance + exposure.deployed_cents, self.config.max_event_fraction)

        eligible = self._discover(day, now, exposure, cap_cents, report)
        plan = self.allocator.plan(
            eligible,
            available_cents=balance,
            per_event_cap_cents=cap_cents,
            existing_exposure=exposure.by_event,
        )
        report.skipped.extend(plan.skipped)

        reserved = 0
        for allocation in plan.allocations:
            candidate = allocation.target
            if not isinstance(candidate, MarketCandidate):
                continue
            order = self._new_order(batch, candidate, allocation.units)
            try:
                self.storage.insert_order(order)
            except Exception as exc:
                LOGGER.warning("pending_write_failed ticker=%s error=%s", order.ticker, exc)
                report.error(f"Failed to prepare {order.ticker}: {exc}")
                continue
            reserved += order.cost_cents
            report.prepared.append(f"{order.ticker}: {order.units}u @ {order.price_cents}c {order.side.value}")
            LOGGER.info(
                "order_prepared ticker=%s units=%s price=%s batch=%s",
                order.ticker,
                order.units,
                order.price_cents,
                batch.id,
            )
        try:
            self.storage.refresh_batch_totals(batch.id)
        except Exception as exc:
            LOGGER.warning("batch_totals_failed batch=%s error=%s", batch.id, exc)
            report.error(f"Failed to refresh batch totals: {exc}")
        report.remaining_cents = balance - reserved

    def _fetch_positions(self, report: RunReport) -> list[ExchangePosition] | None:
        try:
            return list(self.exchange.get_positions())
        except Exception as exc:
            LOGGER.warning("positions_fetch_failed error=%s", exc)
            report.error(f"Failed to fetch positions: {exc}")
            return None

    def _fetch_resting(self, report: RunReport) -> list[RestingOrder] | None:
        try:
            return list(self.exchange.get_resting_orders())
        except Exception as exc:
            LOGGER.warning("resting_fetch_failed error=%s", exc)
            report.error(f"Failed to fetch resting orders: {exc}")
            return None

    def _batch_for(self, day: date, report: RunReport) -> OrderBatch | None:
        try:
            return self.storage.get_or_create_batch(day, self.config.unit_size_cents)
        except Exception as exc:
            LOGGER.error("batch_upsert_failed day=%s error=%s", day, exc)
            report.error(f"Failed to upsert batch for {day.isoformat()}: {exc}")
            return None

    def _execute_pending(
        self,
        day: date,
        exposure: EventExposureLedger,
        cap_cents: int,
        capital: RunCapital,
        report: RunReport,
    ) -> None:
        try:
            pending = self.storage.pending_orders_for_day(day)
        except Exception as exc:
            LOGGER.warning("pending_fetch_failed day=%s error=%s", day, exc)
            report.error(f"Failed to fetch pending orders: {exc}")
            return
        if not pending:
            return
        if capital.available_cents <= 0:
            report.skipped.append(f"{len(pending)} pending orders but no available capital")
            return

        # Stale estimates are recomputed, so they must not count against their own event.
        for order in pending:
            exposure.release(order.event_ticker, order.cost_cents)

        plan = self.allocator.plan(
            pending,
            available_cents=capital.available_cents,
            per_event_cap_cents=cap_cents,
            existing_exposure=exposure.by_event,
        )
        report.skipped.extend(plan.skipped)
        LOGGER.info(
            "pending_plan orders=%s allocations=%s even_share=%sc cap=%sc",
            len(pending),
            len(plan.allocations),
            plan.even_share_cents,
            cap_cents,
        )

        submitted: set[str] = set()
        for allocation in plan.allocations:
            order = allocation.target
            if not isinstance(order, Order):
                continue
            if self._submit_pending(order, allocation, exposure, cap_cents, capital, report):
                submitted.add(order.id)

        # Orders left pending keep holding their estimate for the rest of the run.
        for order in pending:
            if order.id not in submitted:
                exposure.commit(order.event_ticker, order.cost_cents)

    def _submit_pending(
        self,
        order: Order,
        allocation: Allocation,
        exposure: EventExposureLedger,
        cap_cents: int,
        capital: RunCapital,
        report: RunReport,
    ) -> bool:
        units = allocation.units
        cost = allocation.cost_cents
        decision = self.gate.can_place(
            event_ticker=order.event_ticker,
            cost_cents=cost,
            existing_exposure_cents=exposure.exposure(order.event_ticker),
            per_event_cap_cents=cap_cents,
        )
        if not decision.allowed:
            try:
                changed = self.storage.update_order(
                    order.id,
                    expected_status=PlacementStatus.PENDING,
                    placement_status=PlacementStatus.QUEUE,
                    cancel_reason=decision.reason,
                )
            except Exception as exc:
                LOGGER.warning("queue_write_failed ticker=%s error=%s", order.ticker, exc)
                report.error(f"Failed to queue {order.ticker}: {exc}")
                return False
            if not changed:
                LOGGER.warning("order_already_transitioned id=%s ticker=%s expected=pending", order.id, order.ticker)
                return True
            report.queued.append(f"{order.ticker}: {decision.reason}")
            LOGGER.warning("order_queued ticker=%s reason=%s", order.ticker, decision.reason)
            return True

        result = self._place(
            order.ticker,
            order,
            units,
            order.price_cents,
            client_order_id=f"pending_{order.id}_{self._millis()}",
            report=report,
        )
        if result is None:
            return False

        placed_at = self.now_fn()
        fields: dict[str, object] = {
            "units": units,
            "cost_cents": cost,
            "potential_payout_cents": PAYOUT_PER_UNIT_CENTS * units,
            "exchange_order_id": result.order_id,
            "placement_status": PlacementStatus.PLACED,
            "placed_at": placed_at,
        }
        fields.update(self._execution_fields(result, units, order.price_cents))
        try:
            if not self.storage.update_order(order.id, expected_status=PlacementStatus.PENDING, **fields):
                raise LookupError(f"order {order.id} is no longer pending")
        except Exception as exc:
            self._ledger_write_failed(order.ticker, result.order_id, exc, report)
        capital.spend(cost)
        exposure.commit(order.event_ticker, cost)
        report.placed.append(
            f"[pending] {order.ticker}: {units}u @ {order.price_cents}c {order.side.value} "
            f"({result.status.value}) [recalc from {order.units}u]"
        )
        return True

    def _discover(
        self,
        day: date,
        now: datetime,
        exposure: EventExposureLedger,
        cap_cents: int,
        report: RunReport,
    ) -> list[MarketCandidate]:
        try:
            candidates = list(self.feed.candidates(day, now))
        except Exception as exc:
            LOGGER.warning("candidate_fetch_failed day=%s error=%s", day, exc)
            report.error(f"Failed to fetch candidate markets: {exc}")
            return []
        try:
            blacklisted = self.storage.blacklisted_tickers()
        except Exception as exc:
            LOGGER.warning("blacklist_fetch_failed error=%s", exc)
            report.error(f"Failed to load blacklist: {exc}")
            return []

        eligible: list[MarketCandidate] = []
        seen_events: set[str] = set()
        for candidate in candidates:
            if candidate.ticker in blacklisted:
                continue
            if candidate.event_ticker in seen_events:
                continue
            if exposure.is_represented(candidate.ticker, candidate.event_ticker):
                continue
            if cap_cents - exposure.exposure(candidate.event_ticker) <= 0:
                continue
            seen_events.add(candidate.event_ticker)
            eligible.append(candidate)
        report.discovered = len(eligible)
        LOGGER.info("discover day=%s candidates=%s eligible=%s", day, len(candidates), len(eligible))
        return eligible

    def _deploy(
        self,
        batch: OrderBatch,
        eligible: list[MarketCandidate],
        exposure: EventExposureLedger,
        cap_cents: int,
        capital: RunCapital,
        report: RunReport,
    ) -> None:
        plan = self.allocator.plan(
            eligible,
            available_cents=capital.available_cents,
            per_event_cap_cents=cap_cents,
            existing_exposure=exposure.by_event,
        )
        report.skipped.extend(plan.skipped)
        LOGGER.info(
            "deploy_plan markets=%s allocations=%s total=%sc even_share=%sc cap=%sc",
            len(eligible),
            len(plan.allocations),
            plan.total_cents,
            plan.even_share_cents,
            cap_cents,
        )
        for allocation in plan.allocations:
            candidate = allocation.target
            if not isinstance(candidate, MarketCandidate):
                continue
            self._submit_new(batch, candidate, allocation, exposure, cap_cents, capital, report)

    def _submit_new(
        self,
        batch: OrderBatch,
        candidate: MarketCandidate,
        allocation: Allocation,
        exposure: EventExposureLedger,
        cap_cents: int,
        capital: RunCapital,
        report: RunReport,
    ) -> None:
        units = allocation.units
        cost = allocation.cost_cents
        order = self._new_order(batch, candidate, units)
        decision = self.gate.can_place(
            event_ticker=candidate.event_ticker,
            cost_cents=cost,
            existing_exposure_cents=exposure.exposure(candidate.event_ticker),
            per_event_cap_cents=cap_cents,
        )
        if not decision.allowed:
            order.placement_status = PlacementStatus.QUEUE
            order.cancel_reason = decision.reason
            try:
                self.storage.insert_order(order)
            except Exception as exc:
                LOGGER.warning("queue_write_failed ticker=%s error=%s", order.ticker, exc)
                report.error(f"Failed to queue {order.ticker}: {exc}")
                return
            report.queued.append(f"{order.ticker}: {decision.reason}")
            LOGGER.warning("order_queued ticker=%s reason=%s", order.ticker, decision.reason)
            return

        result = self._place(
            candidate.ticker,
            order,
            units,
            candidate.price_cents,
            client_order_id=f"monitor_{candidate.ticker}_{self._millis()}",
            report=report,
        )
        if result is None:
            return

        order.exchange_order_id = result.order_id
        order.placement_status = PlacementStatus.PLACED
        order.placed_at = self.now_fn()
        for key, value in self._execution_fields(result, units, candidate.price_cents).items():
            setattr(order, key, value)
        try:
            self.storage.insert_order(order)
        except Exception as exc:
            self._ledger_write_failed(order.ticker, result.order_id, exc, report)
        capital.spend(cost)
        exposure.commit(candidate.event_ticker, cost)
        report.placed.append(
            f"{order.ticker}: {units}u @ {candidate.price_cents}c {candidate.side.value} ({result.status.value})"
        )

    @staticmethod
    def _new_order(batch: OrderBatch, candidate: MarketCandidate, units: int) -> Order:
        return Order(
            id=new_id(),
            batch_id=batch.id,
            ticker=candidate.ticker,
            event_ticker=candidate.event_ticker,
            title=candidate.title,
            side=candidate.side,
            price_cents=candidate.price_cents,
            units=units,
            cost_cents=candidate.price_cents * units,
            potential_payout_cents=PAYOUT_PER_UNIT_CENTS * units,
            open_interest=candidate.open_interest,
            market_close_time=candidate.close_time,
        )

    def _place(
        self,
        ticker: str,
        order: Order,
        units: int,
        price_cents: int,
        *,
        client_order_id: str,
        report: RunReport,
    ) -> PlaceResult | None:
        try:
            result = self.exchange.place_order(
                ticker=ticker,
                side=order.side,
                count=units,
                limit_price_cents=price_cents,
                client_order_id=client_order_id,
            )
        except Exception as exc:
            LOGGER.warning("place_failed ticker=%s units=%s price=%s error=%s", ticker, units, price_cents, exc)
            report.error(f"Failed to place {ticker}: {exc}")
            return None
        finally:
            if self.config.call_delay_seconds > 0:
                self.sleep(self.config.call_delay_seconds)
        LOGGER.info(
            "order_placed ticker=%s side=%s units=%s price=%s status=%s exchange_order_id=%s",
            ticker,
            order.side.value,
            units,
            price_cents,
            result.status.value,
            result.order_id,
        )
        return result

    @staticmethod
    def _execution_fields(result: PlaceResult, units: int, price_cents: int) -> dict[str, object]:
        if not result.is_executed:
            return {}
        filled = result.filled_count if result.filled_count > 0 else units
        return {
            "placement_status": PlacementStatus.CONFIRMED,
            "executed_price_cents": price_cents,
            "executed_cost_cents": price_cents * filled,
        }

    @staticmethod
    def _ledger_write_failed(ticker: str, exchange_order_id: str, exc: Exception, report: RunReport) -> None:
        LOGGER.error(
            "ledger_write_failed ticker=%s exchange_order_id=%s error=%s manual reconciliation required",
            ticker,
            exchange_order_id,
            exc,
        )
        report.error(f"Placed {ticker} ({exchange_order_id}) but ledger write failed: {exc}")

    def _millis(self) -> int:
        return int(self.now_fn().timestamp() * 1000)
