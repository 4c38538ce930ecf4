# src/crashwatch/prices/resolver.py
from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Iterable, Optional, Protocol

import structlog

from crashwatch.prices.cache import HistoricalPriceCache
from crashwatch.utils.time import days_before, market_today
from crashwatch.utils.types import TIMEFRAME_SPECS, HistoricalPrices, TimeframeSpec

log = structlog.get_logger("resolver")


class SnapshotSource(Protocol):
    async def nearest(self, symbol: str, target: date, tolerance_days: int) -> Optional[float]: ...


class ExternalSource(Protocol):
    async def fetch_close(self, symbol: str, market: str, target: date) -> Optional[float]: ...


class HistoricalPriceResolver:
    """
    Closing price 1 day / 1 week / 1 month / 1 year ago for one symbol.

    Each timeframe walks cache -> snapshot store -> external API on its own;
    the first tier with data wins. A tier that raises is logged and treated
    as a miss, so a timeframe is at worst absent.
    """

    def __init__(
        self,
        cache: Optional[HistoricalPriceCache],
        snapshots: Optional[SnapshotSource],
        external: Optional[ExternalSource] = None,
        *,
        today: Callable[[str], date] = market_today,
    ):
        self.cache = cache
        self.snapshots = snapshots
        self.external = external
        self._today = today

    async def resolve(
        self,
        symbol: str,
        market: str,
        *,
        use_cache: bool = True,
        as_of: Optional[date] = None,
    ) -> HistoricalPrices:
        """Offsets count back from `as_of` (default: market-local today)."""
        today = as_of or self._today(market)
        values = await asyncio.gather(
            *(self._resolve_one(symbol, market, spec, today, use_cache) for spec in TIMEFRAME_SPECS)
        )
        return HistoricalPrices(**{spec.name: v for spec, v in zip(TIMEFRAME_SPECS, values)})

    async def _resolve_one(
        self,
        symbol: str,
        market: str,
        spec: TimeframeSpec,
        today: date,
        use_cache: bool,
    ) -> Optional[float]:
        target = days_before(today, spec.offset_days)

        if use_cache and self.cache is not None:
            px = await self._tier("cache", symbol, market, spec,
                                  self.cache.get(symbol, market, spec.name, target))
            if px is not None:
                return px

        if self.snapshots is not None:
            px = await self._tier("snapshot", symbol, market, spec,
                                  self.snapshots.nearest(symbol, target, spec.tolerance_days))
            if px is not None:
                return px

        if self.external is not None:
            px = await self._tier("external", symbol, market, spec,
                                  self.external.fetch_close(symbol, market, target))
            if px is not None:
                return px

        log.debug("history_miss", symbol=symbol, market=market, timeframe=spec.name,
                  target=target.isoformat())
        return None

    @staticmethod
    async def _tier(name: str, symbol: str, market: str, spec: TimeframeSpec, coro) -> Optional[float]:
        try:
            px = await coro
        except Exception as e:
            log.warning("history_tier_failed", tier=name, symbol=symbol, market=market,
                        timeframe=spec.name, err=repr(e))
            return None
        if px is None or px <= 0:
            return None
        return float(px)

    async def warm(self, symbols: Iterable[str], market: str, for_date: Optional[date] = None) -> int:
        """
        Resolve each symbol as of `for_date` (default: today) without reading
        the cache and write what was found back under that day's targets.
        Returns the number of cache entries written.
        """
        if self.cache is None:
            return 0
        day = for_date or self._today(market)
        offsets = {spec.name: spec.offset_days for spec in TIMEFRAME_SPECS}
        written = 0
        for sym in symbols:
            hp = await self.resolve(sym, market, use_cache=False, as_of=day)
            for tf, px in hp.present().items():
                try:
                    await self.cache.set(sym, market, tf, days_before(day, offsets[tf]), px)
                    written += 1
                except Exception as e:
                    log.warning("cache_write_failed", symbol=sym, market=market, timeframe=tf, err=repr(e))
        log.info("cache_warmed", market=market, for_date=day.isoformat(), entries=written)
        return written

    async def invalidate(self, symbol: str, market: str, as_of: Optional[date] = None) -> None:
        if self.cache is None:
            return
        day = as_of or self._today(market)
        await self.cache.invalidate(
            symbol, market, [(spec.name, days_before(day, spec.offset_days)) for spec in TIMEFRAME_SPECS]
        )
