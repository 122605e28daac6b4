from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ApiResponse(BaseModel):
    """Envelope shared by every v1 endpoint."""

    success: bool
    data: Any = None
    message: str | None = None
    error: str | None = None
    details: Any = None
    timestamp: str = Field(default_factory=_now_iso)


def ok(data: Any = None, message: str | None = None) -> ApiResponse:
    return ApiResponse(success=True, data=data, message=message)


def failure(error: str, details: Any = None) -> ApiResponse:
    return ApiResponse(success=False, error=error, details=details)
