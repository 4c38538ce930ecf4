from datetime import date, datetime, timezone

import pytest

from crashwatch.alerts.detector import CrashDetector
from crashwatch.alerts.recovery import RecoveryDetector
from crashwatch.alerts.rules import CrashRule
from crashwatch.alerts.tracker import ThresholdTracker
from crashwatch.notify.router import NotificationRouter
from crashwatch.pipeline import MonitorPipeline
from crashwatch.prices.cache import HistoricalPriceCache
from crashwatch.prices.resolver import HistoricalPriceResolver
from storage.alerts import AlertRepository
from storage.db import WatchlistRow, init_db, make_engine, make_sessionmaker
from storage.redis_prices import history_key, write_current_prices
from storage.redis_tracking import RedisTrackingStore
from storage.snapshots import DailySnapshotStore
from tests.helpers.fake_redis import FakeRedis
from tests.helpers.fakes import FakeChannel, FixedDay

TODAY = date(2025, 3, 14)

async def _build(tmp_path):
    r = FakeRedis()
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'p.db'}")
    await init_db(engine)
    sessions = make_sessionmaker(engine)
    async with sessions() as s:
        s.add_all([WatchlistRow(user_id=1, symbol="TCS", market="INDIA"),
                   WatchlistRow(user_id=2, symbol="TCS", market="INDIA")])
        await s.commit()

    clock = FixedDay(TODAY)
    snapshots = DailySnapshotStore(sessions)
    repo = AlertRepository(sessions)
    resolver = HistoricalPriceResolver(HistoricalPriceCache(r), snapshots, None, today=clock)
    tracker = ThresholdTracker(RedisTrackingStore(r), CrashRule(), today=clock)
    push, email = FakeChannel(), FakeChannel()
    router = NotificationRouter(push, email, repo, email_to="ops@test",
                                clock=lambda: datetime(2025, 3, 14, 6, tzinfo=timezone.utc))
    pipeline = MonitorPipeline(
        redis=r,
        detector=CrashDetector(resolver, tracker),
        recovery=RecoveryDetector(tracker),
        router=router,
        alerts=repo,
        snapshots=snapshots,
        resolver=resolver,
        today=clock,
    )
    return pipeline, r, snapshots, repo, push, email, engine

@pytest.mark.asyncio
async def test_cycle_detects_persists_dispatches_and_marks(tmp_path):
    pipeline, r, snapshots, repo, push, email, engine = await _build(tmp_path)
    await snapshots.upsert("TCS", date(2025, 3, 13), 4000.0)
    await snapshots.upsert("INFY", date(2025, 3, 13), 1500.0)
    await write_current_prices(r, "INDIA", {"TCS": 3300.0, "INFY": 1490.0})

    report = await pipeline.run_cycle("INDIA")

    # TCS is down 17.5% on the day, INFY < 1%
    assert (report.symbols, report.alerts, report.notified, report.recoveries) == (2, 1, 1, 0)
    assert len(push.sent) == 1 and push.sent[0][1] == {"disable_notification": False}
    assert len(email.sent) == 1
    assert await repo.pending_users(1) == []

    # same prices again: cooldown holds, nothing new goes out
    report = await pipeline.run_cycle("INDIA")
    assert report.alerts == 0 and len(push.sent) == 1
    await engine.dispose()

@pytest.mark.asyncio
async def test_cycle_recovery_after_bounce(tmp_path):
    pipeline, r, snapshots, _, push, email, engine = await _build(tmp_path)
    await snapshots.upsert("TCS", date(2025, 3, 13), 4000.0)
    await write_current_prices(r, "INDIA", {"TCS": 3300.0})
    await pipeline.run_cycle("INDIA")

    await write_current_prices(r, "INDIA", {"TCS": 3500.0})
    report = await pipeline.run_cycle("INDIA")
    assert report.recoveries == 1
    assert "Recovery" in push.sent[-1][0][0]
    await engine.dispose()

@pytest.mark.asyncio
async def test_cycle_without_prices_is_empty(tmp_path):
    pipeline, _, _, _, push, _, engine = await _build(tmp_path)
    report = await pipeline.run_cycle("USA")
    assert report.symbols == 0 and push.sent == []
    await engine.dispose()

@pytest.mark.asyncio
async def test_close_of_day_snapshots_warms_and_purges(tmp_path):
    pipeline, r, snapshots, _, _, _, engine = await _build(tmp_path)
    await snapshots.upsert("OLD", date(2000, 1, 1), 1.0)
    await snapshots.upsert("TCS", date(2025, 3, 13), 4000.0)
    await write_current_prices(r, "INDIA", {"TCS": 3900.0})

    report = await pipeline.close_of_day("INDIA")

    assert report.snapshots == 1
    assert await snapshots.get("TCS", TODAY) == 3900.0
    assert report.purged == 1
    # warmed for Monday 2025-03-17: its day baseline is today's close, not Thursday's
    assert r.kv[history_key("INDIA", "TCS", "day", date(2025, 3, 16))] == "3900.0"
    assert history_key("INDIA", "TCS", "day", date(2025, 3, 13)) not in r.kv
    hp = await pipeline.resolver.resolve("TCS", "INDIA", as_of=date(2025, 3, 17))
    assert hp.day == 3900.0
    assert report.cache_entries >= 1
    await engine.dispose()
