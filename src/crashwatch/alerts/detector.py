# src/crashwatch/alerts/detector.py
from __future__ import annotations

import asyncio
from typing import Mapping, Optional

import structlog

from crashwatch.alerts.rules import CrashRule, crossed_thresholds, drop_percentage
from crashwatch.alerts.tracker import ThresholdTracker
from crashwatch.prices.resolver import HistoricalPriceResolver
from crashwatch.utils.types import TIMEFRAMES, AlertTrigger, TrackingRecord

log = structlog.get_logger("detector")

DEFAULT_BATCH_SIZE = 20


def reduce_highest(triggers: list[AlertTrigger]) -> Optional[AlertTrigger]:
    """Strictly highest threshold wins; on a tie the earlier trigger stays."""
    best: Optional[AlertTrigger] = None
    for t in triggers:
        if best is None or t.threshold > best.threshold:
            best = t
    return best


class CrashDetector:
    """
    Multi-timeframe drop detection with tracker-gated approval.

    detect() reports every (timeframe, threshold) crossed for one symbol.
    process_alerts() is the batch entry point: one approved trigger at most
    per symbol, and it never raises for a single bad symbol.
    """

    def __init__(
        self,
        resolver: HistoricalPriceResolver,
        tracker: ThresholdTracker,
        rule: Optional[CrashRule] = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.resolver = resolver
        self.tracker = tracker
        self.rule = rule or tracker.rule
        self.batch_size = max(1, int(batch_size))

    async def detect(self, symbol: str, current_price: float, market: str) -> list[AlertTrigger]:
        hist = await self.resolver.resolve(symbol, market)
        out: list[AlertTrigger] = []
        # day -> week -> month -> year; reduce_highest depends on this order
        for tf in TIMEFRAMES:
            ref = hist.get(tf)
            if ref is None or ref <= 0:
                continue
            drop = drop_percentage(current_price, ref)
            for thr in crossed_thresholds(drop, self.rule.thresholds):
                out.append(AlertTrigger(
                    symbol=symbol,
                    market=market,
                    current_price=current_price,
                    historical_price=ref,
                    drop_percentage=drop,
                    threshold=thr,
                    timeframe=tf,
                ))
        return out

    async def _detect_safe(self, symbol: str, price: float, market: str) -> list[AlertTrigger]:
        if price is None or price <= 0:
            log.debug("skip_bad_price", symbol=symbol, market=market, price=price)
            return []
        try:
            return await self.detect(symbol, price, market)
        except Exception as e:
            log.warning("detect_failed", symbol=symbol, market=market, err=repr(e))
            return []

    async def _approve(self, trigger: AlertTrigger) -> Optional[AlertTrigger]:
        sym, market = trigger.symbol, trigger.market
        try:
            async with self.tracker.lock(sym, market):
                decision = await self.tracker.should_send_alert(
                    sym, market, trigger.current_price, trigger.threshold
                )
                if not decision.should_alert:
                    return None
                trigger.reason = decision.reason
                await self.tracker.set_alert_tracking(sym, market, TrackingRecord(
                    last_alert_price=trigger.current_price,
                    last_alert_date=self.tracker.today_iso(market),
                    highest_threshold=trigger.threshold,
                    timeframe=trigger.timeframe,
                ))
        except Exception as e:
            log.warning("tracker_failed", symbol=sym, market=market, err=repr(e))
            return None
        log.info("alert_approved", symbol=sym, market=market, threshold=trigger.threshold,
                 timeframe=trigger.timeframe, drop=round(trigger.drop_percentage, 2),
                 reason=trigger.reason)
        return trigger

    async def process_alerts(self, prices: Mapping[str, float], market: str) -> list[AlertTrigger]:
        items = list(prices.items())
        best: list[AlertTrigger] = []
        for i in range(0, len(items), self.batch_size):
            batch = items[i:i + self.batch_size]
            found = await asyncio.gather(*(self._detect_safe(s, p, market) for s, p in batch))
            for triggers in found:
                t = reduce_highest(triggers)
                if t is not None:
                    best.append(t)

        approved: list[AlertTrigger] = []
        for i in range(0, len(best), self.batch_size):
            batch = best[i:i + self.batch_size]
            for t in await asyncio.gather(*(self._approve(t) for t in batch)):
                if t is not None:
                    approved.append(t)

        log.info("alerts_processed", market=market, symbols=len(items),
                 candidates=len(best), approved=len(approved))
        return approved
