# src/storage/redis_tracking.py
from __future__ import annotations

import json
from dataclasses import asdict
from typing import Optional

from redis.asyncio import Redis

from crashwatch.utils.types import TrackingRecord

TRACKING_PREFIX = "alert:tracking"
DEFAULT_TTL_S = 7 * 24 * 60 * 60


def tracking_key(market: str, symbol: str) -> str:
    # alert:tracking:{MARKET}:{SYM}
    return f"{TRACKING_PREFIX}:{market}:{symbol}"


class RedisTrackingStore:
    """
    One JSON record per (symbol, market). The TTL lets a forgotten crash
    lapse back to "no alert state" instead of gating alerts forever.
    Errors propagate; callers decide how to degrade.
    """

    def __init__(self, redis: Redis, ttl_s: int = DEFAULT_TTL_S):
        self.redis = redis
        self.ttl_s = ttl_s

    async def get(self, symbol: str, market: str) -> Optional[TrackingRecord]:
        raw = await self.redis.get(tracking_key(market, symbol))
        if not raw:
            return None
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        return TrackingRecord(
            last_alert_price=float(data["last_alert_price"]),
            last_alert_date=str(data["last_alert_date"]),
            highest_threshold=float(data["highest_threshold"]),
            timeframe=data["timeframe"],
        )

    async def put(self, symbol: str, market: str, record: TrackingRecord) -> None:
        payload = json.dumps({**asdict(record), "market": market})
        await self.redis.set(tracking_key(market, symbol), payload, ex=self.ttl_s)

    async def delete(self, symbol: str, market: str) -> None:
        await self.redis.delete(tracking_key(market, symbol))
