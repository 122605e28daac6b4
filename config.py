"""
Centralised settings loader.

Every knob is an env-var (or a line in `.env`); the cached `settings`
singleton is what the app, the scheduler and the CLI scripts read.
"""

from __future__ import annotations
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


# ------------------------------------------------------------------ #
#  Master settings model
# ------------------------------------------------------------------ #
class _Settings(BaseSettings):
    # ─── runtime / DB / API keys ────────────────────────────────────
    env_name: str = Field("local", alias="ENV_NAME")
    database_url: str | None = Field(None, alias="DATABASE_URL")
    database_echo: bool = Field(False, alias="DATABASE_ECHO")
    jwt_secret: str = Field("changeme", alias="JWT_SECRET")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # ─── Gemini (optional text generation) ─────────────────────────
    gemini_api_key: str | None = Field(None, alias="GEMINI_API_KEY")

    # ─── daily goals batch ──────────────────────────────────────────
    goals_batch_size: int = Field(5, alias="GOALS_BATCH_SIZE", ge=1)
    goals_batch_pause_seconds: float = Field(2.0, alias="GOALS_BATCH_PAUSE_SECONDS", ge=0)
    goals_verify_writes: bool = Field(True, alias="GOALS_VERIFY_WRITES")

    # ─── scheduler ──────────────────────────────────────────────────
    scheduler_enabled: bool = Field(True, alias="SCHEDULER_ENABLED")
    job_min_spacing_minutes: float = Field(30, alias="JOB_MIN_SPACING_MINUTES", ge=0)
    serialize_all_jobs: bool = Field(False, alias="SERIALIZE_ALL_JOBS")
    startup_delay_seconds: float = Field(5, alias="STARTUP_DELAY_SECONDS", ge=0)

    # ─── maintenance / retention ───────────────────────────────────
    cleanup_timeout_seconds: float = Field(60, alias="CLEANUP_TIMEOUT_SECONDS", gt=0)
    goal_retention_days: int = Field(90, alias="GOAL_RETENTION_DAYS", ge=1)
    recommendation_retention_days: int = Field(30, alias="RECOMMENDATION_RETENTION_DAYS", ge=1)

    # ─── recommendations job ───────────────────────────────────────
    recommendation_batch_limit: int = Field(50, alias="RECOMMENDATION_BATCH_LIMIT", ge=1)
    recommendation_batch_size: int = Field(5, alias="RECOMMENDATION_BATCH_SIZE", ge=1)

    # allow other teammates’ env-vars without crashing; tests build
    # instances by field name
    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
    }


Settings = _Settings


# ------------------------------------------------------------------ #
#  Cached singleton accessor
# ------------------------------------------------------------------ #
@lru_cache
def _cached() -> _Settings:  # pragma: no cover
    return _Settings()  # type: ignore[call-arg]


settings: _Settings = _cached()
