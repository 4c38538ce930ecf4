# src/crashwatch/main.py
import asyncio
import logging

import structlog
from redis.asyncio import Redis

from crashwatch.alerts.detector import CrashDetector
from crashwatch.alerts.recovery import RecoveryDetector
from crashwatch.alerts.tracker import ThresholdTracker
from crashwatch.config import AppConfig, config_from_env
from crashwatch.notify.email import EmailChannel
from crashwatch.notify.router import NotificationRouter
from crashwatch.notify.telegram import TelegramChannel
from crashwatch.pipeline import MonitorPipeline
from crashwatch.prices.cache import HistoricalPriceCache
from crashwatch.prices.resolver import HistoricalPriceResolver
from crashwatch.prices.yahoo import YahooChartClient
from crashwatch.utils.market_calendar import session_phase
from crashwatch.utils.time import market_today

from storage.alerts import AlertRepository
from storage.db import init_db, make_engine, make_sessionmaker
from storage.redis_tracking import RedisTrackingStore
from storage.snapshots import DailySnapshotStore

log = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
    )


async def market_loop(pipeline: MonitorPipeline, market: str, interval_s: float, stop: asyncio.Event):
    """
    Run a cycle every `interval_s` while `market` is in regular hours and the
    end-of-day job once per market-local date after the close.
    """
    closed_for = None
    while not stop.is_set():
        phase = session_phase(market)
        try:
            if phase == "regular":
                await pipeline.run_cycle(market)
            elif phase == "after_close" and closed_for != market_today(market):
                await pipeline.close_of_day(market)
                closed_for = market_today(market)
        except Exception as e:
            # next tick retries; a bad cycle must not kill the loop
            log.error("market_loop_error", market=market, phase=phase, err=repr(e))
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            pass


async def main(cfg: AppConfig | None = None):
    cfg = cfg or config_from_env()
    configure_logging(cfg.log_level)

    redis_client = Redis.from_url(cfg.redis_url, decode_responses=True)
    engine = make_engine(cfg.database_url)
    await init_db(engine)
    sessions = make_sessionmaker(engine)

    snapshots = DailySnapshotStore(sessions, retention_days=cfg.snapshot_retention_days)
    alerts_repo = AlertRepository(sessions, critical_threshold=cfg.rule.critical_threshold)
    yahoo = YahooChartClient(cfg.yahoo)
    resolver = HistoricalPriceResolver(
        HistoricalPriceCache(redis_client, ttl_s=cfg.history_cache_ttl_s),
        snapshots,
        yahoo,
    )
    tracker = ThresholdTracker(RedisTrackingStore(redis_client, ttl_s=cfg.tracking_ttl_s), cfg.rule)

    telegram = TelegramChannel(cfg.telegram)
    if telegram.enabled:
        log.info("telegram_enabled")
    else:
        log.info("telegram_disabled_missing_env")
    email = EmailChannel(cfg.email)

    pipeline = MonitorPipeline(
        redis=redis_client,
        detector=CrashDetector(resolver, tracker, cfg.rule, batch_size=cfg.batch_size),
        recovery=RecoveryDetector(tracker, batch_size=cfg.batch_size),
        router=NotificationRouter(telegram, email, alerts_repo, cfg.routing, email_to=email.default_to),
        alerts=alerts_repo,
        snapshots=snapshots,
        resolver=resolver,
    )

    log.info("crashwatch_start", markets=list(cfg.markets), interval_s=cfg.check_interval_s)
    stop = asyncio.Event()
    try:
        await asyncio.gather(*(market_loop(pipeline, m, cfg.check_interval_s, stop) for m in cfg.markets))
    finally:
        stop.set()
        # graceful shutdown to avoid unclosed sessions
        await telegram.close()
        await yahoo.close()
        await redis_client.aclose()
        await engine.dispose()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
