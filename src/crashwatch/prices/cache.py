# src/crashwatch/prices/cache.py
from __future__ import annotations

import math
from datetime import date
from typing import Iterable, Optional

from redis.asyncio import Redis

from storage.redis_prices import history_key

# long enough to carry a close-of-day warm-up across a weekend
DEFAULT_TTL_S = 4 * 24 * 60 * 60


class HistoricalPriceCache:
    """Redis-backed closes per (market, symbol, timeframe, target date), written with a TTL."""

    def __init__(self, redis: Redis, ttl_s: int = DEFAULT_TTL_S):
        self.redis = redis
        self.ttl_s = ttl_s

    async def get(self, symbol: str, market: str, timeframe: str, target: date) -> Optional[float]:
        raw = await self.redis.get(history_key(market, symbol, timeframe, target))
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        try:
            v = float(raw)
        except ValueError:
            return None
        return v if math.isfinite(v) and v > 0 else None

    async def set(self, symbol: str, market: str, timeframe: str, target: date, price: float) -> None:
        await self.redis.set(history_key(market, symbol, timeframe, target), repr(float(price)), ex=self.ttl_s)

    async def invalidate(self, symbol: str, market: str, targets: Iterable[tuple[str, date]]) -> None:
        keys = [history_key(market, symbol, tf, target) for tf, target in targets]
        if keys:
            await self.redis.delete(*keys)
