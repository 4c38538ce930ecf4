# src/crashwatch/prices/yahoo.py
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

import aiohttp
import structlog

from crashwatch.config import YahooConfig
from crashwatch.utils.time import date_to_epoch, epoch_to_market_date

log = structlog.get_logger("yahoo")

# Yahoo listing suffix per market
SYMBOL_SUFFIX = {"INDIA": ".NS", "USA": ""}


def yahoo_symbol(symbol: str, market: str) -> str:
    return f"{symbol}{SYMBOL_SUFFIX.get(market, '')}"


def closest_close(points: list[tuple[date, float]], target: date) -> Optional[float]:
    """Close nearest to `target`; equal distance resolves to the earlier day."""
    if not points:
        return None
    d, px = min(points, key=lambda p: (abs((p[0] - target).days), p[0]))
    return px


def parse_chart(payload: dict, market: str) -> list[tuple[date, float]]:
    """
    chart.result[0].timestamp / indicators.quote[0].close -> [(market date, close)].
    Null closes (halted days) are skipped.
    """
    results = ((payload or {}).get("chart") or {}).get("result") or []
    if not results:
        return []
    res = results[0] or {}
    stamps = res.get("timestamp") or []
    quotes = (res.get("indicators") or {}).get("quote") or [{}]
    closes = (quotes[0] or {}).get("close") or []
    out: list[tuple[date, float]] = []
    for ts, close in zip(stamps, closes):
        if close is None or close <= 0:
            continue
        out.append((epoch_to_market_date(ts, market), float(close)))
    return out


class YahooChartClient:
    """
    Last-resort source of one historical close. One request per call over a
    ±window_days range; index symbols are never sent (unsupported upstream).
    """

    def __init__(self, cfg: Optional[YahooConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg or YahooConfig()
        self._session = session
        self._owns_session = session is None

    def is_index(self, symbol: str) -> bool:
        return symbol.upper().startswith(self.cfg.index_prefixes)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def fetch_close(self, symbol: str, market: str, target: date) -> Optional[float]:
        if self.is_index(symbol):
            return None
        window = timedelta(days=self.cfg.window_days)
        params = {
            "period1": date_to_epoch(target - window, market),
            "period2": date_to_epoch(target + window + timedelta(days=1), market),
            "interval": "1d",
        }
        url = f"{self.cfg.base_url}/{yahoo_symbol(symbol, market)}"
        session = await self._get_session()
        async with session.get(
            url,
            params=params,
            headers={"User-Agent": self.cfg.user_agent},
            timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_s),
        ) as resp:
            if resp.status != 200:
                log.warning("yahoo_bad_status", symbol=symbol, market=market, status=resp.status)
                return None
            payload = await resp.json(content_type=None)
        px = closest_close(parse_chart(payload, market), target)
        if px is None:
            log.debug("yahoo_no_points", symbol=symbol, market=market, target=target.isoformat())
        return px
