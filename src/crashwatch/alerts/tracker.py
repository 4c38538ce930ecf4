# src/crashwatch/alerts/tracker.py
from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Optional, Protocol

import structlog

from crashwatch.alerts.rules import CrashRule, recovery_percentage
from crashwatch.utils.time import market_today
from crashwatch.utils.types import AlertDecision, RecoveryDecision, TrackingRecord

log = structlog.get_logger("tracker")


class TrackingStore(Protocol):
    async def get(self, symbol: str, market: str) -> Optional[TrackingRecord]: ...
    async def put(self, symbol: str, market: str, record: TrackingRecord) -> None: ...
    async def delete(self, symbol: str, market: str) -> None: ...


class ThresholdTracker:
    """
    Per (symbol, market) alert state: Calm (no record) or Alerted.

    Same-day re-alerts need either a further drop below the last alert
    price or a higher threshold than any already fired. Store errors are
    not swallowed here; the batch detectors catch them per symbol.
    """

    def __init__(
        self,
        store: TrackingStore,
        rule: Optional[CrashRule] = None,
        *,
        today: Callable[[str], date] = market_today,
    ):
        self.store = store
        self.rule = rule or CrashRule()
        self._today = today
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def lock(self, symbol: str, market: str) -> asyncio.Lock:
        """Single-process guard for check-then-set on one (symbol, market)."""
        key = (symbol, market)
        lk = self._locks.get(key)
        if lk is None:
            lk = self._locks[key] = asyncio.Lock()
        return lk

    def today_iso(self, market: str) -> str:
        return self._today(market).isoformat()

    async def get_alert_tracking(self, symbol: str, market: str) -> Optional[TrackingRecord]:
        return await self.store.get(symbol, market)

    async def should_send_alert(
        self,
        symbol: str,
        market: str,
        current_price: float,
        candidate_threshold: float,
    ) -> AlertDecision:
        rec = await self.store.get(symbol, market)
        if rec is None:
            return AlertDecision(True, "first_alert")

        # ISO dates compare correctly as strings
        if self.today_iso(market) > rec.last_alert_date:
            return AlertDecision(True, "new_day")

        if rec.last_alert_price > 0:
            further = (rec.last_alert_price - current_price) / rec.last_alert_price * 100.0
            if further >= self.rule.further_drop_percent:
                return AlertDecision(True, "further_drop")

        if candidate_threshold > rec.highest_threshold:
            return AlertDecision(True, "higher_threshold")

        log.debug("alert_suppressed", symbol=symbol, market=market,
                  last_alert_price=rec.last_alert_price, current_price=current_price,
                  threshold=candidate_threshold, highest=rec.highest_threshold)
        return AlertDecision(False, "cooldown_active")

    async def set_alert_tracking(self, symbol: str, market: str, record: TrackingRecord) -> None:
        await self.store.put(symbol, market, record)

    async def should_send_recovery_alert(
        self,
        symbol: str,
        market: str,
        current_price: float,
    ) -> RecoveryDecision:
        rec = await self.store.get(symbol, market)
        if rec is None:
            return RecoveryDecision(False, 0.0, 0.0)
        pct = recovery_percentage(current_price, rec.last_alert_price)
        return RecoveryDecision(
            should_alert=pct >= self.rule.recovery_bounce_percent,
            recovery_percent=pct,
            last_alert_price=rec.last_alert_price,
        )

    async def clear_alert_tracking(self, symbol: str, market: str) -> None:
        await self.store.delete(symbol, market)
