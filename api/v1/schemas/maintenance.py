from __future__ import annotations

from pydantic import BaseModel


class HealthOut(BaseModel):
    status: str
    size_mb: float
    max_size_mb: float
    expired_sessions: int
    stale_recommendations: int
    needs_cleanup: bool
    checked_at: str
    error: str | None = None


class CleanupOut(BaseModel):
    deleted_records: int
    freed_space_mb: float
    errors: list[str]
