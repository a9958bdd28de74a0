from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence

from kalshi_deployer.pricing import units_for_budget


class AllocationTarget(Protocol):
    ticker: str
    event_ticker: str
    price_cents: int
    open_interest: int


@dataclass
class Allocation:
    target: AllocationTarget
    units: int
    price_cents: int
    target_cents: int

    @property
    def cost_cents(self) -> int:
        return self.units * self.price_cents


@dataclass
class AllocationPlan:
    allocations: list[Allocation] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    even_share_cents: int = 0
    per_event_cap_cents: int = 0

    @property
    def total_cents(self) -> int:
        return sum(a.cost_cents for a in self.allocations)


class CapitalAllocator:
    """
    Spreads available capital evenly over targets, never past an event's cap.

    target_per_market = min(available // n, cap - existing[event])
    units = min(target_per_market, remaining) // price

    Capital a capped market leaves on the table is not redistributed in the
    same pass, so the first few events cannot starve the rest.
    """

    def plan(
        self,
        targets: Sequence[AllocationTarget],
        *,
        available_cents: int,
        per_event_cap_cents: int,
        existing_exposure: Mapping[str, int],
    ) -> AllocationPlan:
        plan = AllocationPlan(per_event_cap_cents=per_event_cap_cents)
        if not targets:
            plan.skipped.append("no eligible targets")
            return plan
        if available_cents <= 0:
            plan.skipped.append(f"no available capital ({available_cents}c)")
            return plan

        ordered = sorted(targets, key=lambda t: -int(t.open_interest or 0))
        plan.even_share_cents = available_cents // len(ordered)
        remaining = available_cents
        session_exposure = dict(existing_exposure)

        for target in ordered:
            existing = session_exposure.get(target.event_ticker, 0)
            headroom = per_event_cap_cents - existing
            if headroom <= 0:
                plan.skipped.append(
                    f"{target.ticker}: event at cap ({existing}c/{per_event_cap_cents}c)"
                )
                continue
            target_cents = min(plan.even_share_cents, headroom)
            units = units_for_budget(min(target_cents, remaining), target.price_cents)
            if units <= 0:
                plan.skipped.append(
                    f"{target.ticker}: {min(target_cents, remaining)}c buys no unit at {target.price_cents}c"
                )
                continue
            allocation = Allocation(
                target=target,
                units=units,
                price_cents=target.price_cents,
                target_cents=target_cents,
            )
            remaining -= allocation.cost_cents
            session_exposure[target.event_ticker] = existing + allocation.cost_cents
            plan.allocations.append(allocation)
        return plan
