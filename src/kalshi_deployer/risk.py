from __future__ import annotations

from dataclasses import dataclass
import math

from kalshi_deployer.config import DeployerConfig


@dataclass
class RiskDecision:
    allowed: bool
    reason: str = ""


def per_event_cap(total_portfolio_cents: int, max_event_fraction: float) -> int:
    if total_portfolio_cents <= 0 or max_event_fraction <= 0:
        return 0
    return int(math.floor(total_portfolio_cents * max_event_fraction))


class SafetyGate:
    """Last check before an order reaches the exchange. Violations are never clamped."""

    def __init__(self, config: DeployerConfig) -> None:
        self.config = config

    def can_place(
        self,
        *,
        event_ticker: str,
        cost_cents: int,
        existing_exposure_cents: int,
        per_event_cap_cents: int,
    ) -> RiskDecision:
        if cost_cents <= 0:
            return RiskDecision(False, "non-positive order cost")
        if cost_cents > self.config.max_order_cents:
            return RiskDecision(
                False,
                f"order cost {cost_cents}c exceeds per-order ceiling {self.config.max_order_cents}c",
            )
        projected = existing_exposure_cents + cost_cents
        if projected > per_event_cap_cents:
            return RiskDecision(
                False,
                f"event {event_ticker} exposure {projected}c would exceed cap {per_event_cap_cents}c",
            )
        return RiskDecision(True, "")
