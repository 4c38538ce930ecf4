# src/storage/snapshots.py
from __future__ import annotations

from datetime import date, timedelta
from typing import Mapping, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crashwatch.utils.time import utc_now
from crashwatch.utils.types import SnapshotStats
from storage.db import DailySnapshotRow, upsert_insert

log = structlog.get_logger("snapshots")

DEFAULT_RETENTION_DAYS = 400


class DailySnapshotStore:
    """
    Durable closing prices keyed by (symbol, date).

    Dates are civil dates; callers pass the market-local date they mean.
    Errors propagate to the caller (the resolver treats them as a miss).
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self.sessionmaker = sessionmaker
        self.retention_days = retention_days

    async def upsert(self, symbol: str, snapshot_date: date, close_price: float) -> None:
        await self.upsert_many({symbol: close_price}, snapshot_date)

    async def upsert_many(self, prices: Mapping[str, float], snapshot_date: date) -> int:
        rows = [
            {"symbol": sym, "snapshot_date": snapshot_date, "close_price": float(px)}
            for sym, px in prices.items()
            if px is not None and px > 0
        ]
        if not rows:
            return 0
        async with self.sessionmaker() as session:
            insert = upsert_insert(session)
            stmt = insert(DailySnapshotRow)
            stmt = stmt.on_conflict_do_update(
                index_elements=[DailySnapshotRow.symbol, DailySnapshotRow.snapshot_date],
                set_={"close_price": stmt.excluded.close_price},
            )
            await session.execute(stmt, rows)
            await session.commit()
        log.debug("snapshots_upserted", count=len(rows), date=snapshot_date.isoformat())
        return len(rows)

    async def get(self, symbol: str, snapshot_date: date) -> Optional[float]:
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(DailySnapshotRow.close_price).where(
                    DailySnapshotRow.symbol == symbol,
                    DailySnapshotRow.snapshot_date == snapshot_date,
                )
            )
            return res.scalar_one_or_none()

    async def nearest(self, symbol: str, target: date, tolerance_days: int) -> Optional[float]:
        """
        Close on the date closest to `target` within ±tolerance_days.
        Equal distance on both sides resolves to the earlier date.
        """
        lo = target - timedelta(days=tolerance_days)
        hi = target + timedelta(days=tolerance_days)
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(DailySnapshotRow.snapshot_date, DailySnapshotRow.close_price)
                .where(
                    DailySnapshotRow.symbol == symbol,
                    DailySnapshotRow.snapshot_date >= lo,
                    DailySnapshotRow.snapshot_date <= hi,
                )
                .order_by(DailySnapshotRow.snapshot_date)
            )
            rows = res.all()
        if not rows:
            return None
        best = min(rows, key=lambda r: (abs((r[0] - target).days), r[0]))
        return float(best[1])

    async def range(self, symbol: str, start: date, end: date) -> list[tuple[date, float]]:
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(DailySnapshotRow.snapshot_date, DailySnapshotRow.close_price)
                .where(
                    DailySnapshotRow.symbol == symbol,
                    DailySnapshotRow.snapshot_date >= start,
                    DailySnapshotRow.snapshot_date <= end,
                )
                .order_by(DailySnapshotRow.snapshot_date)
            )
            return [(d, float(p)) for d, p in res.all()]

    async def purge_older_than(self, cutoff: Optional[date] = None) -> int:
        """Delete rows dated strictly before `cutoff`; returns how many went."""
        if cutoff is None:
            cutoff = utc_now().date() - timedelta(days=self.retention_days)
        async with self.sessionmaker() as session:
            count = await session.scalar(
                select(func.count()).select_from(DailySnapshotRow)
                .where(DailySnapshotRow.snapshot_date < cutoff)
            )
            if count:
                await session.execute(
                    delete(DailySnapshotRow).where(DailySnapshotRow.snapshot_date < cutoff)
                )
                await session.commit()
        log.info("snapshots_purged", count=int(count or 0), cutoff=cutoff.isoformat())
        return int(count or 0)

    async def stats(self) -> SnapshotStats:
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(
                    func.count(DailySnapshotRow.id),
                    func.count(func.distinct(DailySnapshotRow.symbol)),
                    func.min(DailySnapshotRow.snapshot_date),
                    func.max(DailySnapshotRow.snapshot_date),
                )
            )
            total, symbols, oldest, newest = res.one()
        return SnapshotStats(
            total_snapshots=int(total or 0),
            unique_symbols=int(symbols or 0),
            oldest_date=oldest.isoformat() if oldest else None,
            newest_date=newest.isoformat() if newest else None,
        )
