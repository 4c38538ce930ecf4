from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from crashwatch.utils.types import MARKET_TZ

# --- clock helpers ---

def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(tz=timezone.utc)

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

# --- market-local civil calendar ---

def market_tz(market: str) -> ZoneInfo:
    try:
        return ZoneInfo(MARKET_TZ[market])
    except KeyError:
        raise ValueError(f"unknown market: {market!r}") from None

def market_now(market: str, now: Optional[datetime] = None) -> datetime:
    """Aware datetime in the market's timezone. `now` must be aware if given."""
    now = now or utc_now()
    if now.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return now.astimezone(market_tz(market))

def market_today(market: str, now: Optional[datetime] = None) -> date:
    """
    Civil date in the market's own timezone.

    Around UTC midnight INDIA and USA disagree on what "today" is; the
    cooldown gate compares these dates, never UTC ones.
    """
    return market_now(market, now).date()

def days_before(d: date, days: int) -> date:
    return d - timedelta(days=days)

def epoch_to_market_date(ts: float | int, market: str) -> date:
    """Epoch seconds -> civil date in the market's timezone."""
    return utc_dt(ts).astimezone(market_tz(market)).date()

def date_to_epoch(d: date, market: str) -> int:
    """Market-local midnight of `d` as epoch seconds."""
    return int(datetime.combine(d, datetime.min.time(), tzinfo=market_tz(market)).timestamp())
