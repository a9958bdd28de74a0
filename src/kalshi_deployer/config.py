from __future__ import annotations

from dataclasses import dataclass
import os


SPORTS_SERIES = (
    # Football
    "KXNFLGAME",
    "KXNCAAFBGAME",
    "KXNCAAFCSGAME",
    "KXNCAAFGAME",
    # Basketball
    "KXNBAGAME",
    "KXNCAAMBGAME",
    "KXNCAAWBGAME",
    "KXEUROLEAGUEGAME",
    "KXNBLGAME",
    # Hockey
    "KXNHLGAME",
    # Baseball
    "KXMLBGAME",
    # Cricket
    "KXCRICKETTESTMATCH",
    "KXCRICKETT20IMATCH",
    # MMA
    "KXUFCFIGHT",
    # Tennis
    "KXTENNISMATCH",
    "KXATPTOUR",
    "KXWTATOUR",
    # Golf
    "KXPGATOUR",
    "KXLPGATOUR",
    "KXGOLFTOURNAMENT",
    # Chess
    "KXCHESSMATCH",
    # Motorsport
    "KXF1RACE",
    "KXNASCARRACE",
    "KXINDYCARRACE",
    # Esports
    "KXDOTA2GAME",
)


@dataclass(frozen=True)
class DeployerConfig:
    mode: str
    kalshi_api_url: str
    database_path: str
    api_timeout_seconds: float
    exchange_client: str
    paper_bankroll_cents: int

    max_event_fraction: float
    max_order_cents: int
    unit_size_cents: int

    resting_improve_after_minutes: float
    resting_cancel_after_minutes: float
    price_improvement_cents: int
    call_delay_seconds: float

    exchange_timezone: str
    trading_day_rollover_hour: int
    execution_gate_hour: int

    min_odds: float
    max_odds: float
    min_open_interest: int
    sports_series: tuple[str, ...]
    market_max_close_hours: int
    market_pages: int

    log_level: str

    @property
    def live_mode(self) -> bool:
        return self.mode.lower() == "live"

    @property
    def paper_mode(self) -> bool:
        return not self.live_mode


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config() -> DeployerConfig:
    # Runtime profile: one market per event, 3% event cap, reprice hourly, give up after 4h.
    return DeployerConfig(
        mode=os.getenv("BOT_MODE", "paper").strip().lower(),
        kalshi_api_url=os.getenv("KALSHI_API_URL", "https://api.elections.kalshi.com/trade-api/v2"),
        database_path=os.getenv("BOT_DB_PATH", "data/deployer.db"),
        api_timeout_seconds=10.0,
        exchange_client=os.getenv("EXCHANGE_CLIENT", "").strip(),
        paper_bankroll_cents=max(0, _env_int("PAPER_BANKROLL_CENTS", 10_000)),
        max_event_fraction=_env_float("MAX_EVENT_FRACTION", 0.03),
        max_order_cents=max(1, _env_int("MAX_ORDER_CENTS", 50_000)),
        unit_size_cents=100,
        resting_improve_after_minutes=60.0,
        resting_cancel_after_minutes=240.0,
        price_improvement_cents=1,
        call_delay_seconds=max(0.0, _env_float("CALL_DELAY_SECONDS", 0.3)),
        exchange_timezone="America/New_York",
        trading_day_rollover_hour=4,
        execution_gate_hour=6,
        min_odds=0.90,
        max_odds=0.995,
        min_open_interest=50,
        sports_series=SPORTS_SERIES,
        market_max_close_hours=30 * 24,
        market_pages=2,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
