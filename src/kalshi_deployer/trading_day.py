from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import re
from zoneinfo import ZoneInfo

_MONTHS = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}
_EVENT_DATE_RE = re.compile(r"-(\d{2})([A-Z]{3})(\d{2})")

# Expiration lands well after the game: tz offset + game length + settlement buffer.
_EXPIRATION_LAG = timedelta(hours=15)


def local_time(now: datetime, tz_name: str) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def trading_day(now: datetime, tz_name: str, rollover_hour: int) -> date:
    """Calendar date in the exchange timezone; before the rollover hour still belongs to yesterday."""
    local = local_time(now, tz_name)
    if local.hour < rollover_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def execution_gate_open(now: datetime, tz_name: str, gate_hour: int) -> bool:
    return local_time(now, tz_name).hour >= gate_hour


def extract_game_date(event_ticker: str, expected_expiration: datetime | None = None) -> date | None:
    match = _EVENT_DATE_RE.search(event_ticker.upper())
    if match:
        year_raw, month_raw, day_raw = match.groups()
        month = _MONTHS.get(month_raw)
        if month is not None:
            try:
                return date(2000 + int(year_raw), month, int(day_raw))
            except ValueError:
                return None
    if expected_expiration is not None:
        shifted = expected_expiration.astimezone(timezone.utc) - _EXPIRATION_LAG
        return shifted.date()
    return None
