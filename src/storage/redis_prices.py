# src/storage/redis_prices.py
from __future__ import annotations
import math
from datetime import date
from typing import Dict, Mapping, Optional
from redis.asyncio import Redis

HISTORY_PREFIX = "history"
CURRENT_PREFIX = "prices:current"

def history_key(market: str, symbol: str, timeframe: str, target: date) -> str:
    # history:{MARKET}:{SYM}:{TF}:{YYYY-MM-DD}; the target date keeps a value
    # warmed for one session from being read on another
    return f"{HISTORY_PREFIX}:{market}:{symbol}:{timeframe}:{target.isoformat()}"

def current_prices_key(market: str) -> str:
    # prices:current:{MARKET} -> hash {symbol: price}
    return f"{CURRENT_PREFIX}:{market}"

def _finite(x) -> bool:
    return isinstance(x, (int, float)) and math.isfinite(x)

def _to_float(raw) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    try:
        v = float(raw)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None

async def read_current_prices(r: Redis, market: str) -> Dict[str, float]:
    """
    Read the live price map another process keeps in a Redis hash.
    Malformed or non-positive entries are dropped.
    """
    raw = await r.hgetall(current_prices_key(market))
    out: Dict[str, float] = {}
    for sym, val in (raw or {}).items():
        if isinstance(sym, (bytes, bytearray)):
            sym = sym.decode("utf-8")
        px = _to_float(val)
        if px is not None and px > 0:
            out[str(sym)] = px
    return out

async def write_current_prices(r: Redis, market: str, prices: Mapping[str, float]) -> int:
    """
    Replace entries in the live price map. Skips NaN/Inf/None.
    Returns the number of symbols written.
    """
    clean = {s: str(float(p)) for s, p in prices.items() if _finite(p)}
    if not clean:
        return 0
    await r.hset(current_prices_key(market), mapping=clean)
    return len(clean)
