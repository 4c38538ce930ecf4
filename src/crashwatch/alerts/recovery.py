# src/crashwatch/alerts/recovery.py
from __future__ import annotations

import asyncio
from typing import Mapping, Optional

import structlog

from crashwatch.alerts.tracker import ThresholdTracker
from crashwatch.utils.types import RecoveryAlert

log = structlog.get_logger("recovery")


class RecoveryDetector:
    """Rebound above the last alert price; firing returns the symbol to Calm."""

    def __init__(self, tracker: ThresholdTracker, *, batch_size: int = 20):
        self.tracker = tracker
        self.batch_size = max(1, int(batch_size))

    async def _check(self, symbol: str, price: float, market: str) -> Optional[RecoveryAlert]:
        if price is None or price <= 0:
            return None
        try:
            async with self.tracker.lock(symbol, market):
                decision = await self.tracker.should_send_recovery_alert(symbol, market, price)
                if not decision.should_alert:
                    return None
                await self.tracker.clear_alert_tracking(symbol, market)
        except Exception as e:
            log.warning("recovery_check_failed", symbol=symbol, market=market, err=repr(e))
            return None
        log.info("recovery_detected", symbol=symbol, market=market,
                 recovery_pct=round(decision.recovery_percent, 2))
        return RecoveryAlert(
            symbol=symbol,
            market=market,
            current_price=price,
            last_alert_price=decision.last_alert_price,
            recovery_percentage=decision.recovery_percent,
        )

    async def process_recovery_alerts(self, prices: Mapping[str, float], market: str) -> list[RecoveryAlert]:
        items = list(prices.items())
        out: list[RecoveryAlert] = []
        for i in range(0, len(items), self.batch_size):
            batch = items[i:i + self.batch_size]
            for r in await asyncio.gather(*(self._check(s, p, market) for s, p in batch)):
                if r is not None:
                    out.append(r)
        return out
