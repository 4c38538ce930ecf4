# src/storage/alerts.py
from __future__ import annotations

from typing import Iterable

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crashwatch.alerts.rules import is_critical
from crashwatch.utils.types import AlertTrigger
from storage.db import AlertRow, UserAlertRow, WatchlistRow, upsert_insert

log = structlog.get_logger("alerts_repo")


class AlertRepository:
    """Symbol-level alert rows and the users each one must reach."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], critical_threshold: float = 20.0):
        self.sessionmaker = sessionmaker
        self.critical_threshold = critical_threshold

    async def store_alert(self, trigger: AlertTrigger) -> int:
        row = AlertRow(
            symbol=trigger.symbol,
            market=trigger.market,
            drop_percentage=trigger.drop_percentage,
            threshold=trigger.threshold,
            timeframe=trigger.timeframe,
            price=trigger.current_price,
            historical_price=trigger.historical_price,
            critical=is_critical(trigger.threshold, self.critical_threshold),
            reason=trigger.reason,
        )
        async with self.sessionmaker() as session:
            session.add(row)
            await session.commit()
            return row.id

    async def watchers(self, symbol: str, market: str) -> list[int]:
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(WatchlistRow.user_id)
                .where(
                    WatchlistRow.symbol == symbol,
                    WatchlistRow.market == market,
                    WatchlistRow.active.is_(True),
                )
                .distinct()
                .order_by(WatchlistRow.user_id)
            )
            return [int(u) for u in res.scalars().all()]

    async def link_users(self, alert_id: int, user_ids: Iterable[int]) -> int:
        rows = [{"alert_id": alert_id, "user_id": int(u), "notified": False} for u in set(user_ids)]
        if not rows:
            return 0
        async with self.sessionmaker() as session:
            insert = upsert_insert(session)
            stmt = insert(UserAlertRow).on_conflict_do_nothing(
                index_elements=[UserAlertRow.alert_id, UserAlertRow.user_id]
            )
            await session.execute(stmt, rows)
            await session.commit()
        return len(rows)

    async def mark_notified(self, alert_id: int, user_ids: Iterable[int]) -> int:
        """Flag exactly these (alert, user) links; nothing else is touched."""
        ids = sorted({int(u) for u in user_ids})
        if not ids:
            return 0
        async with self.sessionmaker() as session:
            res = await session.execute(
                update(UserAlertRow)
                .where(UserAlertRow.alert_id == alert_id, UserAlertRow.user_id.in_(ids))
                .values(notified=True)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return int(res.rowcount or 0)

    async def pending_users(self, alert_id: int) -> list[int]:
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(UserAlertRow.user_id)
                .where(UserAlertRow.alert_id == alert_id, UserAlertRow.notified.is_(False))
                .order_by(UserAlertRow.user_id)
            )
            return [int(u) for u in res.scalars().all()]
