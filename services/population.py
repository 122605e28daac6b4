"""
services/population.py
────────────────────────────────────────────────────────────────────────
Read side of the user tables: who exists, and what their latest
questionnaire says.  Both the goals batch and the recommendations job
consume this through the `list_users` / `latest_profile` pair.
"""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.errors import StorageFailure
from core.nutrition_calc import UserProfile
from services.db import User, UserQuestionnaire, session_factory


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    email: str | None
    profile_completed: bool


def profile_from_row(q: UserQuestionnaire) -> UserProfile:
    return UserProfile(
        weight_kg=q.weight_kg,
        height_cm=q.height_cm,
        age=q.age,
        sex=q.gender,
        activity_level=q.physical_activity_level,
        main_goal=q.main_goal,
        dietary_style=q.dietary_style,
    )


class DatabasePopulation:
    def __init__(self, eng: AsyncEngine) -> None:
        self._sessions = session_factory(eng)

    async def list_users(self) -> list[UserRecord]:
        try:
            async with self._sessions() as db:
                rows = (
                    await db.execute(select(User).order_by(User.created_at, User.user_id))
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not list users: {exc}") from exc
        return [
            UserRecord(u.user_id, u.email, bool(u.is_questionnaire_completed))
            for u in rows
        ]

    async def latest_questionnaire(self, user_id: str) -> UserQuestionnaire | None:
        try:
            async with self._sessions() as db:
                return (
                    await db.execute(
                        select(UserQuestionnaire)
                        .where(UserQuestionnaire.user_id == user_id)
                        .order_by(UserQuestionnaire.date_completed.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read questionnaire for {user_id}: {exc}") from exc

    async def latest_profile(self, user_id: str) -> UserProfile | None:
        q = await self.latest_questionnaire(user_id)
        return profile_from_row(q) if q is not None else None

    async def get_user(self, user_id: str) -> User | None:
        try:
            async with self._sessions() as db:
                return await db.get(User, user_id)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read user {user_id}: {exc}") from exc
