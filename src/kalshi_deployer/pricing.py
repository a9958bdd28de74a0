from __future__ import annotations

from kalshi_deployer.models import Side

MIN_PRICE_CENTS = 1
MAX_PRICE_CENTS = 99


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def improved_price(current_cents: int, step_cents: int) -> int:
    return int(min(current_cents + max(0, step_cents), MAX_PRICE_CENTS))


def units_for_budget(budget_cents: int, price_cents: int) -> int:
    if price_cents <= 0 or budget_cents <= 0:
        return 0
    return budget_cents // price_cents


def favorite_side(yes_probability: float) -> tuple[Side, float]:
    """
    Binary markets price NO as the complement of YES:
      favorite = YES if p_yes >= 0.5 else NO, odds = max(p_yes, 1 - p_yes)
    """
    p_yes = clamp(yes_probability, 0.0, 1.0)
    p_no = 1.0 - p_yes
    if p_yes >= p_no:
        return Side.YES, p_yes
    return Side.NO, p_no


def odds_to_cents(odds: float) -> int:
    return int(clamp(round(odds * 100), MIN_PRICE_CENTS, MAX_PRICE_CENTS))
