from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

import structlog
from redis.asyncio import Redis

from crashwatch.alerts.detector import CrashDetector
from crashwatch.alerts.recovery import RecoveryDetector
from crashwatch.notify.router import NotificationRouter, PendingNotification
from crashwatch.prices.resolver import HistoricalPriceResolver
from crashwatch.utils.market_calendar import next_trading_day
from crashwatch.utils.time import days_before, market_today
from crashwatch.utils.types import AlertTrigger
from storage.alerts import AlertRepository
from storage.redis_prices import read_current_prices
from storage.snapshots import DailySnapshotStore

log = structlog.get_logger("pipeline")


@dataclass(slots=True)
class CycleReport:
    market: str
    symbols: int = 0
    alerts: int = 0
    notified: int = 0
    recoveries: int = 0


@dataclass(slots=True)
class CloseReport:
    market: str
    snapshots: int = 0
    cache_entries: int = 0
    purged: int = 0


class MonitorPipeline:
    """
    One monitoring pass per market: prices -> crash detection -> alert rows
    and user links -> dispatch, then the independent recovery path.
    """

    def __init__(
        self,
        *,
        redis: Redis,
        detector: CrashDetector,
        recovery: RecoveryDetector,
        router: NotificationRouter,
        alerts: AlertRepository,
        snapshots: DailySnapshotStore,
        resolver: HistoricalPriceResolver,
        today: Callable[[str], date] = market_today,
    ):
        self.redis = redis
        self.detector = detector
        self.recovery = recovery
        self.router = router
        self.alerts = alerts
        self.snapshots = snapshots
        self.resolver = resolver
        self._today = today

    async def _persist(self, trigger: AlertTrigger) -> Optional[PendingNotification]:
        try:
            alert_id = await self.alerts.store_alert(trigger)
            users = await self.alerts.watchers(trigger.symbol, trigger.market)
            await self.alerts.link_users(alert_id, users)
        except Exception as e:
            log.error("alert_persist_failed", symbol=trigger.symbol, market=trigger.market, err=repr(e))
            return None
        return PendingNotification(trigger=trigger, alert_id=alert_id, user_ids=users)

    async def run_cycle(self, market: str) -> CycleReport:
        report = CycleReport(market=market)
        prices = await read_current_prices(self.redis, market)
        report.symbols = len(prices)
        if not prices:
            log.info("cycle_no_prices", market=market)
            return report

        triggers = await self.detector.process_alerts(prices, market)
        report.alerts = len(triggers)
        pending = []
        for t in triggers:
            p = await self._persist(t)
            if p is not None:
                pending.append(p)
        if pending:
            sent = await self.router.send_alerts(pending)
            report.notified = sum(1 for ok in sent if ok)

        recoveries = await self.recovery.process_recovery_alerts(prices, market)
        report.recoveries = len(recoveries)
        if recoveries:
            await self.router.send_recoveries(recoveries)

        log.info("cycle_done", market=market, symbols=report.symbols, alerts=report.alerts,
                 notified=report.notified, recoveries=report.recoveries)
        return report

    async def close_of_day(self, market: str) -> CloseReport:
        """Snapshot today's closes, refresh the history cache, apply retention."""
        report = CloseReport(market=market)
        today = self._today(market)
        prices = await read_current_prices(self.redis, market)
        if prices:
            report.snapshots = await self.snapshots.upsert_many(prices, today)
            # baselines for the next session count back from that session's date
            report.cache_entries = await self.resolver.warm(prices.keys(), market, for_date=next_trading_day(today))
        report.purged = await self.snapshots.purge_older_than(
            days_before(today, self.snapshots.retention_days)
        )
        log.info("close_of_day_done", market=market, snapshots=report.snapshots,
                 cache_entries=report.cache_entries, purged=report.purged)
        return report
