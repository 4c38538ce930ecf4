import json
from datetime import date

import pytest

from crashwatch.utils.types import TrackingRecord
from storage.redis_prices import current_prices_key, history_key, read_current_prices, write_current_prices
from storage.redis_tracking import RedisTrackingStore, tracking_key
from tests.helpers.fake_redis import FakeRedis

def test_key_layout():
    assert history_key("INDIA", "TCS", "week", date(2025, 3, 7)) == "history:INDIA:TCS:week:2025-03-07"
    assert current_prices_key("USA") == "prices:current:USA"
    assert tracking_key("USA", "AAPL") == "alert:tracking:USA:AAPL"

@pytest.mark.asyncio
async def test_tracking_roundtrip_with_ttl():
    r = FakeRedis()
    store = RedisTrackingStore(r, ttl_s=3600)
    rec = TrackingRecord(last_alert_price=95.5, last_alert_date="2025-03-14",
                         highest_threshold=10.0, timeframe="week")
    await store.put("TCS", "INDIA", rec)

    key = tracking_key("INDIA", "TCS")
    assert r.ttls[key] == 3600
    assert json.loads(r.kv[key])["market"] == "INDIA"
    assert await store.get("TCS", "INDIA") == rec

    await store.delete("TCS", "INDIA")
    assert await store.get("TCS", "INDIA") is None

@pytest.mark.asyncio
async def test_current_prices_skip_garbage():
    r = FakeRedis()
    n = await write_current_prices(r, "INDIA", {"TCS": 3500.0, "BAD": float("nan")})
    assert n == 1
    r.hashes[current_prices_key("INDIA")]["ZERO"] = "0"
    r.hashes[current_prices_key("INDIA")]["JUNK"] = "abc"
    assert await read_current_prices(r, "INDIA") == {"TCS": 3500.0}
