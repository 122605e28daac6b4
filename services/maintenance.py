"""
services/maintenance.py
────────────────────────────────────────────────────────────────────────
Database health, retention cleanup and planner maintenance.

Size is an estimate (1 KB per row across the busiest tables); it exists
to drive the healthy / warning / critical thresholds, not for billing.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from services.db import (
    AIRecommendation,
    ChatMessage,
    DailyGoal,
    Meal,
    User,
    UserSession,
    utcnow,
)

_LOG = logging.getLogger(__name__)

MB_PER_ROW = 0.001
MAX_SIZE_MB = 100.0
CHAT_MESSAGES_KEPT = 100

# thresholds
CLEANUP_EXPIRED_SESSIONS = 100
CLEANUP_STALE_RECOMMENDATIONS = 1000
CLEANUP_SIZE_MB = 50.0
CRITICAL_SIZE_MB = 80.0
CRITICAL_EXPIRED_SESSIONS = 500
WARNING_SIZE_MB = 50.0
WARNING_EXPIRED_SESSIONS = 200

SIZED_TABLES = (User, Meal, UserSession, AIRecommendation, ChatMessage)


@dataclass
class HealthReport:
    status: str  # healthy | warning | critical
    size_mb: float
    max_size_mb: float
    expired_sessions: int
    stale_recommendations: int
    needs_cleanup: bool
    checked_at: datetime
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["checked_at"] = self.checked_at.isoformat()
        return out


@dataclass
class CleanupResult:
    deleted_records: int = 0
    freed_space_mb: float = 0.0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return asdict(self)


def classify(size_mb: float, expired_sessions: int, stale_recommendations: int) -> tuple[str, bool]:
    """Return (status, needs_cleanup) for the given measurements."""
    needs_cleanup = (
        expired_sessions > CLEANUP_EXPIRED_SESSIONS
        or stale_recommendations > CLEANUP_STALE_RECOMMENDATIONS
        or size_mb > CLEANUP_SIZE_MB
    )
    if size_mb > CRITICAL_SIZE_MB or expired_sessions > CRITICAL_EXPIRED_SESSIONS:
        status = "critical"
    elif size_mb > WARNING_SIZE_MB or expired_sessions > WARNING_EXPIRED_SESSIONS:
        status = "warning"
    else:
        status = "healthy"
    return status, needs_cleanup


class MaintenanceMonitor:
    def __init__(
        self,
        eng: AsyncEngine,
        *,
        cleanup_timeout_seconds: float = 60.0,
        goal_retention_days: int = 90,
        recommendation_retention_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = eng
        self._timeout = cleanup_timeout_seconds
        self._goal_days = goal_retention_days
        self._rec_days = recommendation_retention_days
        self._clock = clock

    # ───────────────────────── health ──────────────────────────
    async def check_health(self) -> HealthReport:
        now = self._clock()
        try:
            async with self._engine.connect() as conn:
                total = 0
                for model in SIZED_TABLES:
                    total += await self._count(conn, select(func.count()).select_from(model))
                expired = await self._count(
                    conn,
                    select(func.count()).select_from(UserSession).where(UserSession.expires_at < now),
                )
                stale = await self._count(
                    conn,
                    select(func.count())
                    .select_from(AIRecommendation)
                    .where(AIRecommendation.created_at < now - timedelta(days=self._rec_days)),
                )
        except SQLAlchemyError as exc:
            _LOG.error("database health check failed: %s", exc)
            return HealthReport(
                status="critical",
                size_mb=0.0,
                max_size_mb=MAX_SIZE_MB,
                expired_sessions=0,
                stale_recommendations=0,
                needs_cleanup=True,
                checked_at=now,
                error=str(exc),
            )

        size_mb = round(total * MB_PER_ROW, 3)
        status, needs_cleanup = classify(size_mb, expired, stale)
        report = HealthReport(status, size_mb, MAX_SIZE_MB, expired, stale, needs_cleanup, now)
        _LOG.info(
            "database health: %s size=%.3fMB expired_sessions=%d stale_recs=%d",
            status, size_mb, expired, stale,
        )
        return report

    @staticmethod
    async def _count(conn: AsyncConnection, stmt) -> int:
        return int((await conn.execute(stmt)).scalar_one())

    # ───────────────────────── cleanup ─────────────────────────
    async def cleanup(self) -> CleanupResult:
        """One transaction; rolled back as a whole on error or timeout."""
        _LOG.info("starting database cleanup")
        try:
            deleted = await asyncio.wait_for(self._cleanup_tx(), timeout=self._timeout)
        except asyncio.TimeoutError:
            msg = f"cleanup timed out after {self._timeout:g}s"
            _LOG.error(msg)
            return CleanupResult(errors=[msg])
        except SQLAlchemyError as exc:
            _LOG.error("database cleanup failed: %s", exc)
            return CleanupResult(errors=[str(exc)])

        result = CleanupResult(deleted, round(deleted * MB_PER_ROW, 3))
        _LOG.info("database cleanup removed %d records", deleted)
        return result

    async def _cleanup_tx(self) -> int:
        now = self._clock()
        deleted = 0
        async with self._engine.begin() as conn:
            if conn.dialect.name == "postgresql":
                await conn.execute(
                    text(f"SET LOCAL statement_timeout = {int(self._timeout * 1000)}")
                )

            res = await conn.execute(delete(UserSession).where(UserSession.expires_at < now))
            _LOG.info("deleted %d expired sessions", res.rowcount)
            deleted += res.rowcount

            res = await conn.execute(
                delete(AIRecommendation).where(
                    AIRecommendation.created_at < now - timedelta(days=self._rec_days)
                )
            )
            _LOG.info("deleted %d old recommendations", res.rowcount)
            deleted += res.rowcount

            deleted += await self._trim_chat_history(conn)

            res = await conn.execute(
                delete(DailyGoal).where(DailyGoal.created_at < now - timedelta(days=self._goal_days))
            )
            _LOG.info("deleted %d old daily goals", res.rowcount)
            deleted += res.rowcount
        return deleted

    async def _trim_chat_history(self, conn: AsyncConnection) -> int:
        users = (await conn.execute(select(ChatMessage.user_id).distinct())).scalars().all()
        removed = 0
        for user_id in users:
            old_ids = (
                await conn.execute(
                    select(ChatMessage.message_id)
                    .where(ChatMessage.user_id == user_id)
                    .order_by(ChatMessage.created_at.desc(), ChatMessage.message_id.desc())
                    .offset(CHAT_MESSAGES_KEPT)
                )
            ).scalars().all()
            if old_ids:
                res = await conn.execute(
                    delete(ChatMessage).where(ChatMessage.message_id.in_(old_ids))
                )
                removed += res.rowcount
        if removed:
            _LOG.info("deleted %d chat messages beyond the newest %d per user", removed, CHAT_MESSAGES_KEPT)
        return removed

    # ───────────────────────── optimize ────────────────────────
    async def optimize(self) -> dict[str, bool]:
        async with self._engine.begin() as conn:
            await conn.execute(text("ANALYZE"))

        vacuumed = True
        try:
            async with self._engine.connect() as conn:
                auto = await conn.execution_options(isolation_level="AUTOCOMMIT")
                await auto.execute(text("VACUUM"))
        except SQLAlchemyError as exc:
            vacuumed = False
            _LOG.info("vacuum not available: %s", exc)

        _LOG.info("database optimization completed (vacuum=%s)", vacuumed)
        return {"analyzed": True, "vacuumed": vacuumed}

    # ───────────────────────── recovery ────────────────────────
    async def emergency_recovery(self) -> bool:
        _LOG.warning("starting emergency database recovery")
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            cleaned = await self.cleanup()
            _LOG.info("emergency cleanup removed %d records", cleaned.deleted_records)
            await self.optimize()

            async with self._engine.connect() as conn:
                counts = {
                    model.__tablename__: await self._count(conn, select(func.count()).select_from(model))
                    for model in (User, Meal, DailyGoal)
                }
        except Exception as exc:  # noqa: BLE001 - reported to the caller as False
            _LOG.exception("emergency recovery failed: %s", exc)
            return False

        _LOG.info("emergency recovery completed, critical table counts: %s", counts)
        return True
