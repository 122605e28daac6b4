# tests/conftest.py
from __future__ import annotations

import os
from datetime import date, datetime, timedelta

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from services.db import (  # noqa: E402
    User,
    UserQuestionnaire,
    create_all,
    create_engine_from_url,
    session_factory,
)

TODAY = date(2026, 10, 18)


class TickingClock:
    """Deterministic clock: every call moves one second forward."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 10, 18, 0, 30)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest_asyncio.fixture
async def eng(tmp_path):
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'goals.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


async def add_user(
    eng,
    user_id: str,
    *,
    subscription: str = "FREE",
    questionnaire: dict | None = None,
    created_at: datetime | None = None,
) -> None:
    async with session_factory(eng)() as db:
        db.add(
            User(
                user_id=user_id,
                email=f"{user_id}@example.com",
                subscription_type=subscription,
                is_questionnaire_completed=questionnaire is not None,
                created_at=created_at or datetime(2026, 1, 1),
            )
        )
        if questionnaire is not None:
            db.add(UserQuestionnaire(user_id=user_id, **questionnaire))
        await db.commit()


MALE_LOSS = {
    "age": 25,
    "gender": "Male",
    "weight_kg": 70,
    "height_cm": 170,
    "physical_activity_level": "MODERATE",
    "main_goal": "WEIGHT_LOSS",
    "dietary_style": None,
    "allergies": ["peanuts"],
}
