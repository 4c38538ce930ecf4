from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, TypedDict

# ---- market / timeframe primitives ----

Market = Literal["INDIA", "USA"]
Timeframe = Literal["day", "week", "month", "year"]

MARKETS: tuple[Market, ...] = ("INDIA", "USA")

# scan order matters: detection keeps the first trigger on threshold ties
TIMEFRAMES: tuple[Timeframe, ...] = ("day", "week", "month", "year")

MARKET_TZ: dict[str, str] = {
    "INDIA": "Asia/Kolkata",
    "USA": "America/New_York",
}


@dataclass(frozen=True, slots=True)
class TimeframeSpec:
    """How far back a timeframe looks, and how loosely a snapshot may match."""
    name: Timeframe
    offset_days: int
    tolerance_days: int


TIMEFRAME_SPECS: tuple[TimeframeSpec, ...] = (
    TimeframeSpec("day", 1, 3),
    TimeframeSpec("week", 7, 5),
    TimeframeSpec("month", 30, 7),
    TimeframeSpec("year", 365, 14),
)


@dataclass(slots=True)
class HistoricalPrices:
    day: Optional[float] = None
    week: Optional[float] = None
    month: Optional[float] = None
    year: Optional[float] = None

    def get(self, timeframe: Timeframe) -> Optional[float]:
        return getattr(self, timeframe)

    def present(self) -> dict[str, float]:
        return {tf: v for tf in TIMEFRAMES if (v := self.get(tf)) is not None}


# ---- alerting domain ----

@dataclass(slots=True)
class AlertTrigger:
    symbol: str
    market: Market
    current_price: float
    historical_price: float
    drop_percentage: float
    threshold: float
    timeframe: Timeframe
    reason: Optional[str] = None     # set once the tracker approves


@dataclass(slots=True)
class RecoveryAlert:
    symbol: str
    market: Market
    current_price: float
    last_alert_price: float
    recovery_percentage: float


@dataclass(slots=True)
class TrackingRecord:
    last_alert_price: float
    last_alert_date: str             # YYYY-MM-DD, market-local civil date
    highest_threshold: float
    timeframe: Timeframe


@dataclass(frozen=True, slots=True)
class AlertDecision:
    should_alert: bool
    reason: str


@dataclass(frozen=True, slots=True)
class RecoveryDecision:
    should_alert: bool
    recovery_percent: float
    last_alert_price: float


class SnapshotStats(TypedDict):
    total_snapshots: int
    unique_symbols: int
    oldest_date: Optional[str]
    newest_date: Optional[str]
