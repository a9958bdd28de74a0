from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass
class RunCapital:
    """Available balance threaded through one run; reclaims and spends are visible to later phases."""

    available_cents: int
    reclaimed_cents: int = 0
    spent_cents: int = 0

    def reclaim(self, cents: int) -> int:
        amount = max(0, int(cents))
        self.available_cents += amount
        self.reclaimed_cents += amount
        return amount

    def spend(self, cents: int) -> int:
        amount = max(0, int(cents))
        self.available_cents -= amount
        self.spent_cents += amount
        return amount


@dataclass
class RunReport:
    timestamp: str
    success: bool = True
    trading_day: date | None = None
    improved: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    confirmed: list[str] = field(default_factory=list)
    placed: list[str] = field(default_factory=list)
    prepared: list[str] = field(default_factory=list)
    queued: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    discovered: int = 0
    available_cents: int = 0
    deployed_cents: int = 0
    remaining_cents: int = 0
    errors: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "timestamp": self.timestamp,
            "trading_day": self.trading_day.isoformat() if self.trading_day else None,
            "actions": {
                "improved": len(self.improved),
                "cancelled": len(self.cancelled),
                "confirmed": len(self.confirmed),
                "placed": len(self.placed),
                "prepared": len(self.prepared),
                "queued": len(self.queued),
                "discovered": self.discovered,
            },
            "capital": {
                "available": self.available_cents,
                "deployed": self.deployed_cents,
                "remaining": self.remaining_cents,
            },
            "details": {
                "improved": list(self.improved),
                "cancelled": list(self.cancelled),
                "confirmed": list(self.confirmed),
                "placed": list(self.placed),
                "prepared": list(self.prepared),
                "queued": list(self.queued),
                "skipped": list(self.skipped),
            },
            "errors": list(self.errors),
        }
