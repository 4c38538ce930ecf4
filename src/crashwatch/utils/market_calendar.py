from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta
from typing import Literal, Optional

from crashwatch.utils.time import market_now

# Regular trading hours per market, in the market's own timezone
@dataclass(frozen=True, slots=True)
class MarketHours:
    open: dtime
    close: dtime


MARKET_HOURS: dict[str, MarketHours] = {
    "INDIA": MarketHours(open=dtime(9, 15), close=dtime(15, 30)),
    "USA": MarketHours(open=dtime(9, 30), close=dtime(16, 0)),
}

Phase = Literal["closed", "regular", "after_close"]


def _is_trading_day(local: datetime, holidays: frozenset[str]) -> bool:
    return local.weekday() < 5 and local.date().isoformat() not in holidays


def is_market_open(
    market: str,
    now: Optional[datetime] = None,
    holidays: frozenset[str] = frozenset(),
) -> bool:
    """
    True if `market` is in regular hours at `now` (default: current time).
    Close is inclusive so the last print of the session is still checked.
    """
    local = market_now(market, now)
    if not _is_trading_day(local, holidays):
        return False
    hours = MARKET_HOURS[market]
    return hours.open <= local.time() <= hours.close


def session_phase(
    market: str,
    now: Optional[datetime] = None,
    holidays: frozenset[str] = frozenset(),
) -> Phase:
    """
    "regular" during hours, "after_close" on a trading day once the session
    is over, "closed" otherwise (weekends, holidays, before the open).
    """
    local = market_now(market, now)
    if not _is_trading_day(local, holidays):
        return "closed"
    hours = MARKET_HOURS[market]
    t = local.time()
    if hours.open <= t <= hours.close:
        return "regular"
    if t > hours.close:
        return "after_close"
    return "closed"


def next_trading_day(d: date, holidays: frozenset[str] = frozenset()) -> date:
    """First weekday after `d` that is not in `holidays`."""
    nxt = d + timedelta(days=1)
    while nxt.weekday() >= 5 or nxt.isoformat() in holidays:
        nxt += timedelta(days=1)
    return nxt
