from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from storage.db import init_db, make_engine, make_sessionmaker, upsert_insert
from storage.snapshots import DailySnapshotStore

async def _store(tmp_path, retention_days=400):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'db' / 'snap.db'}")
    await init_db(engine)
    return DailySnapshotStore(make_sessionmaker(engine), retention_days=retention_days), engine

@pytest.mark.asyncio
async def test_upsert_is_idempotent_per_symbol_and_date(tmp_path):
    store, engine = await _store(tmp_path)
    d = date(2025, 3, 14)
    await store.upsert("TCS", d, 3500.0)
    await store.upsert("TCS", d, 3510.0)
    assert await store.get("TCS", d) == 3510.0
    assert (await store.stats())["total_snapshots"] == 1
    await engine.dispose()

@pytest.mark.asyncio
async def test_upsert_many_skips_non_positive(tmp_path):
    store, engine = await _store(tmp_path)
    n = await store.upsert_many({"A": 1.0, "B": 0.0, "C": 3.0}, date(2025, 3, 14))
    assert n == 2
    assert await store.get("B", date(2025, 3, 14)) is None
    await engine.dispose()

@pytest.mark.asyncio
async def test_nearest_prefers_closer_then_earlier(tmp_path):
    store, engine = await _store(tmp_path)
    await store.upsert("X", date(2025, 3, 8), 8.0)
    await store.upsert("X", date(2025, 3, 12), 12.0)
    # Mar 10 is 2 days from both: earlier wins
    assert await store.nearest("X", date(2025, 3, 10), 3) == 8.0
    # Mar 11 is strictly closer to Mar 12
    assert await store.nearest("X", date(2025, 3, 11), 3) == 12.0
    # nothing within ±1 of Mar 10
    assert await store.nearest("X", date(2025, 3, 10), 1) is None
    # other symbols don't leak in
    assert await store.nearest("Y", date(2025, 3, 10), 5) is None
    await engine.dispose()

@pytest.mark.asyncio
async def test_range_is_inclusive_and_ascending(tmp_path):
    store, engine = await _store(tmp_path)
    for day, px in ((3, 3.0), (1, 1.0), (2, 2.0), (5, 5.0)):
        await store.upsert("X", date(2025, 3, day), px)
    rows = await store.range("X", date(2025, 3, 1), date(2025, 3, 3))
    assert rows == [(date(2025, 3, 1), 1.0), (date(2025, 3, 2), 2.0), (date(2025, 3, 3), 3.0)]
    await engine.dispose()

@pytest.mark.asyncio
async def test_purge_deletes_strictly_older_and_counts(tmp_path):
    store, engine = await _store(tmp_path)
    cutoff = date(2025, 1, 1)
    await store.upsert_many({"A": 1.0, "B": 2.0}, cutoff - timedelta(days=1))
    await store.upsert("A", cutoff, 3.0)
    assert await store.purge_older_than(cutoff) == 2
    assert await store.purge_older_than(cutoff) == 0
    assert await store.get("A", cutoff) == 3.0
    await engine.dispose()

@pytest.mark.asyncio
async def test_purge_default_uses_retention(tmp_path):
    store, engine = await _store(tmp_path, retention_days=10)
    await store.upsert("OLD", date(2000, 1, 1), 1.0)
    assert await store.purge_older_than() == 1
    await engine.dispose()

@pytest.mark.asyncio
async def test_stats(tmp_path):
    store, engine = await _store(tmp_path)
    assert await store.stats() == {
        "total_snapshots": 0, "unique_symbols": 0, "oldest_date": None, "newest_date": None,
    }
    await store.upsert_many({"A": 1.0, "B": 2.0}, date(2025, 3, 13))
    await store.upsert("A", date(2025, 3, 14), 1.5)
    s = await store.stats()
    assert s["total_snapshots"] == 3
    assert s["unique_symbols"] == 2
    assert (s["oldest_date"], s["newest_date"]) == ("2025-03-13", "2025-03-14")
    await engine.dispose()

def test_upsert_rejects_unsupported_dialect():
    bind = SimpleNamespace(dialect=SimpleNamespace(name="mysql"))
    session = SimpleNamespace(get_bind=lambda: bind)
    with pytest.raises(ValueError, match="mysql"):
        upsert_insert(session)
