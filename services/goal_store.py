"""
services/goal_store.py
────────────────────────────────────────────────────────────────────────
One `daily_goals` row per (user_id, date).

`upsert` is the only write path: a single INSERT … ON CONFLICT DO UPDATE
keyed on the (user_id, date) unique constraint, so concurrent writers
are merged by the database instead of racing in Python.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.errors import StorageFailure
from core.nutrition_calc import (
    TARGET_FIELDS,
    NutritionalCalculator,
    NutritionTargets,
    UserProfile,
)
from services.db import DailyGoal, native_insert, session_factory, utc_today, utcnow

_LOG = logging.getLogger(__name__)

ProfileLookup = Callable[[str], Awaitable[UserProfile | None]]


def targets_of(row: DailyGoal) -> NutritionTargets:
    return NutritionTargets(**{f: int(getattr(row, f)) for f in TARGET_FIELDS})


class GoalStore:
    def __init__(
        self,
        eng: AsyncEngine,
        calc: NutritionalCalculator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._insert = native_insert(eng)
        self._sessions = session_factory(eng)
        self._calc = calc or NutritionalCalculator()
        self._clock = clock

    # ───────────────────────── reads ───────────────────────────
    async def get(self, user_id: str, day: date) -> DailyGoal | None:
        try:
            async with self._sessions() as db:
                return (
                    await db.execute(
                        select(DailyGoal).where(
                            DailyGoal.user_id == user_id, DailyGoal.date == day
                        )
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"read failed for user {user_id}: {exc}") from exc

    async def exists_for_date(self, day: date) -> set[str]:
        try:
            async with self._sessions() as db:
                ids = (
                    await db.execute(
                        select(DailyGoal.user_id).where(DailyGoal.date == day)
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"existence check failed for {day}: {exc}") from exc
        return set(ids)

    async def history(self, user_id: str, days: int = 30) -> list[DailyGoal]:
        since = utc_today() - timedelta(days=days)
        try:
            async with self._sessions() as db:
                rows = (
                    await db.execute(
                        select(DailyGoal)
                        .where(DailyGoal.user_id == user_id, DailyGoal.date >= since)
                        .order_by(DailyGoal.date.desc())
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"history read failed for user {user_id}: {exc}") from exc
        return list(rows)

    # ───────────────────────── write ───────────────────────────
    async def upsert(
        self, user_id: str, day: date, targets: NutritionTargets
    ) -> DailyGoal:
        now = self._clock()
        values = targets.as_dict()
        stmt = self._insert(DailyGoal).values(
            user_id=user_id, date=day, created_at=now, updated_at=now, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "date"],
            set_={
                **{f: getattr(stmt.excluded, f) for f in TARGET_FIELDS},
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(DailyGoal)

        try:
            async with self._sessions() as db:
                row = (
                    await db.execute(
                        stmt, execution_options={"populate_existing": True}
                    )
                ).scalar_one()
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"upsert failed for user {user_id}: {exc}") from exc

        _LOG.debug("upserted goal user=%s date=%s kcal=%s", user_id, day, row.calories)
        return row

    async def get_or_create(
        self,
        user_id: str,
        profile_lookup: ProfileLookup,
        day: date | None = None,
    ) -> DailyGoal:
        day = day or utc_today()
        row = await self.get(user_id, day)
        if row is not None:
            return row

        _LOG.info("no goal for user %s on %s, creating one", user_id, day)
        profile = await profile_lookup(user_id)
        return await self.upsert(user_id, day, self._calc.daily_goal(profile))
