from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable

from kalshi_deployer.exchange import BaseExchange
from kalshi_deployer.models import ResultStatus, SettlementStatus
from kalshi_deployer.storage import Storage

LOGGER = logging.getLogger("kalshi_deployer")

PAYOUT_PER_UNIT_CENTS = 100


@dataclass
class SettlementSummary:
    checked: int = 0
    won: list[str] = field(default_factory=list)
    lost: list[str] = field(default_factory=list)
    open: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "checked": self.checked,
            "won": list(self.won),
            "lost": list(self.lost),
            "open": self.open,
            "errors": list(self.errors),
        }


class SettlementTracker:
    """Flips result and settlement status of confirmed orders whose market has settled."""

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

    def run(self) -> SettlementSummary:
        summary = SettlementSummary()
        for order in self.storage.orders_awaiting_result():
            summary.checked += 1
            try:
                result = self.exchange.get_market_result(order.ticker)
            except Exception as exc:
                LOGGER.warning("market_result_failed ticker=%s error=%s", order.ticker, exc)
                summary.errors.append(f"{order.ticker}: {exc}")
                continue
            finally:
                if self.call_delay_seconds > 0:
                    self.sleep(self.call_delay_seconds)

            outcome = (result.result or "").strip().lower()
            if not result.settled or outcome not in ("yes", "no"):
                summary.open += 1
                continue

            filled = order.filled_count or order.units
            won = outcome == order.side.value.lower()
            try:
                if won:
                    self.storage.update_order(
                        order.id,
                        result_status=ResultStatus.WON,
                        settlement_status=SettlementStatus.SUCCESS,
                        actual_payout_cents=PAYOUT_PER_UNIT_CENTS * filled,
                    )
                else:
                    self.storage.update_order(
                        order.id,
                        result_status=ResultStatus.LOST,
                        settlement_status=SettlementStatus.CLOSED,
                        actual_payout_cents=0,
                    )
            except Exception as exc:
                LOGGER.error("settlement_write_failed ticker=%s error=%s", order.ticker, exc)
                summary.errors.append(f"{order.ticker}: {exc}")
                continue

            (summary.won if won else summary.lost).append(order.ticker)
            LOGGER.info("order_settled ticker=%s outcome=%s won=%s units=%s", order.ticker, outcome, won, filled)
        return summary
