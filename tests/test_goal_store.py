# tests/test_goal_store.py
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import MALE_LOSS, TODAY, add_user
from core.errors import StorageFailure
from core.nutrition_calc import DEFAULT_TARGETS, NutritionTargets
from services.db import DailyGoal, session_factory, utc_today
from services.goal_store import GoalStore, targets_of
from services.population import DatabasePopulation

LEAN = NutritionTargets(1800, 100, 200, 60, 25, 2300, 45, 2100)


async def _count(eng) -> int:
    async with session_factory(eng)() as db:
        return (await db.execute(select(func.count()).select_from(DailyGoal))).scalar_one()


async def test_upsert_inserts_then_overwrites(eng, clock):
    await add_user(eng, "u1")
    store = GoalStore(eng, clock=clock)

    first = await store.upsert("u1", TODAY, DEFAULT_TARGETS)
    second = await store.upsert("u1", TODAY, LEAN)

    assert first.id == second.id
    assert targets_of(second) == LEAN
    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    assert await _count(eng) == 1


async def test_upsert_same_values_is_idempotent(eng, clock):
    await add_user(eng, "u1")
    store = GoalStore(eng, clock=clock)

    a = await store.upsert("u1", TODAY, LEAN)
    b = await store.upsert("u1", TODAY, LEAN)

    assert targets_of(a) == targets_of(b) == LEAN
    assert b.updated_at > a.updated_at
    assert await _count(eng) == 1


async def test_concurrent_upserts_leave_one_row(eng):
    await add_user(eng, "u1")
    store = GoalStore(eng)

    await asyncio.gather(*(store.upsert("u1", TODAY, LEAN) for _ in range(8)))

    assert await _count(eng) == 1
    assert targets_of(await store.get("u1", TODAY)) == LEAN


async def test_rows_are_per_day(eng):
    await add_user(eng, "u1")
    store = GoalStore(eng)
    await store.upsert("u1", TODAY, LEAN)
    await store.upsert("u1", TODAY - timedelta(days=1), LEAN)

    assert await _count(eng) == 2
    assert await store.exists_for_date(TODAY) == {"u1"}
    assert await store.get("u1", TODAY + timedelta(days=1)) is None


async def test_get_or_create_uses_profile_once(eng):
    await add_user(eng, "u1", questionnaire=MALE_LOSS)
    store = GoalStore(eng)
    population = DatabasePopulation(eng)
    calls = []

    async def lookup(user_id):
        calls.append(user_id)
        return await population.latest_profile(user_id)

    row = await store.get_or_create("u1", lookup, TODAY)
    again = await store.get_or_create("u1", lookup, TODAY)

    assert calls == ["u1"]
    assert row.id == again.id
    assert row.calories == 2046
    assert row.water_ml == 2450


async def test_get_or_create_without_questionnaire_uses_defaults(eng):
    await add_user(eng, "u2")
    store = GoalStore(eng)
    row = await store.get_or_create("u2", DatabasePopulation(eng).latest_profile, TODAY)
    assert targets_of(row) == DEFAULT_TARGETS


async def test_history_newest_first_within_window(eng):
    await add_user(eng, "u1")
    store = GoalStore(eng)
    today = utc_today()
    for back in (0, 3, 10, 45):
        await store.upsert("u1", today - timedelta(days=back), LEAN)

    rows = await store.history("u1", days=30)

    assert [r.date for r in rows] == [today, today - timedelta(days=3), today - timedelta(days=10)]


async def test_storage_errors_are_wrapped(eng):
    store = GoalStore(eng)
    await eng.dispose()
    async with eng.begin() as conn:
        await conn.run_sync(DailyGoal.__table__.drop)

    with pytest.raises(StorageFailure):
        await store.get("u1", TODAY)
    with pytest.raises(StorageFailure):
        await store.upsert("u1", TODAY, LEAN)
