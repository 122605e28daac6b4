"""
services/db.py
────────────────────────────────────────────────────────────────────────
* Async SQLAlchemy v2 setup
* Models for the tables the goals service reads and writes
* Engine + session factory shared by the services, the API and the CLI
"""
from __future__ import annotations

import datetime as dt
from datetime import date, datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from config import settings


# ───────── clock helpers (naive UTC, matches the DateTime columns) ────
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    return utcnow().date()


# ───────── connection helper ────────────────────────────────────────
_ENGINE: AsyncEngine | None = None


def create_engine_from_url(url: str, *, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(
            url, echo=echo, connect_args={"check_same_thread": False}
        )
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


async def engine() -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        if not settings.database_url:
            raise RuntimeError("Set DATABASE_URL env var")
        _ENGINE = create_engine_from_url(settings.database_url, echo=settings.database_echo)
    return _ENGINE


async def dispose_engine() -> None:
    global _ENGINE
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None


# ───────── declarative base ──────────────────────────────────────────
Base = declarative_base(cls=AsyncAttrs)


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String)
    subscription_type: Mapped[str] = mapped_column(String(16), default="FREE")
    is_questionnaire_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserQuestionnaire(Base):
    __tablename__ = "user_questionnaires"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), index=True)
    age: Mapped[int | None] = mapped_column(Integer)
    gender: Mapped[str | None] = mapped_column(String)
    weight_kg: Mapped[float | None] = mapped_column(Float)
    height_cm: Mapped[float | None] = mapped_column(Float)
    physical_activity_level: Mapped[str | None] = mapped_column(String)
    main_goal: Mapped[str | None] = mapped_column(String)
    dietary_style: Mapped[str | None] = mapped_column(String)
    allergies: Mapped[list | None] = mapped_column(JSON)
    date_completed: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class DailyGoal(Base):
    __tablename__ = "daily_goals"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_goals_user_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"))
    date: Mapped[dt.date] = mapped_column(Date)
    calories: Mapped[int] = mapped_column(Integer)
    protein_g: Mapped[int] = mapped_column(Integer)
    carbs_g: Mapped[int] = mapped_column(Integer)
    fats_g: Mapped[int] = mapped_column(Integer)
    fiber_g: Mapped[int] = mapped_column(Integer)
    sodium_mg: Mapped[int] = mapped_column(Integer)
    sugar_g: Mapped[int] = mapped_column(Integer)
    water_ml: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class AIRecommendation(Base):
    __tablename__ = "ai_recommendations"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_ai_recommendations_user_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"))
    date: Mapped[dt.date] = mapped_column(Date)
    recommendations: Mapped[dict] = mapped_column(JSON)
    priority_level: Mapped[str] = mapped_column(String(8))
    confidence_score: Mapped[float] = mapped_column(Float)
    based_on: Mapped[dict | None] = mapped_column(JSON)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserSession(Base):
    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"))
    token: Mapped[str] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)


class Meal(Base):
    __tablename__ = "meals"

    meal_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), index=True)
    meal_name: Mapped[str | None] = mapped_column(String)
    calories: Mapped[float | None] = mapped_column(Float)
    protein_g: Mapped[float | None] = mapped_column(Float)
    carbs_g: Mapped[float | None] = mapped_column(Float)
    fats_g: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    message_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), index=True)
    role: Mapped[str] = mapped_column(String(16))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ───────── schema / session helpers ─────────────────────────────────

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def native_insert(eng: AsyncEngine):
    """INSERT construct with ON CONFLICT support for the engine's dialect."""
    try:
        return _INSERTS[eng.dialect.name]
    except KeyError:
        raise RuntimeError(f"no native upsert for dialect {eng.dialect.name!r}") from None


async def create_all(eng: AsyncEngine) -> None:
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def session_factory(eng: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(eng, expire_on_commit=False)
