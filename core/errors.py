"""
core/errors.py
────────────────────────────────────────────────────────────────────────
Failure taxonomy shared by the goal store, the batch orchestrator, the
scheduler and the HTTP surface.  `category` is what API responses carry
in their `error` field.
"""
from __future__ import annotations


class GoalsError(Exception):
    category = "GoalsError"


class ProfileMissing(GoalsError):
    """The caller has no user record to derive a profile from."""

    category = "ProfileMissing"


class StorageFailure(GoalsError):
    category = "StorageFailure"


class VerificationMismatch(GoalsError):
    """A read-back after a write did not return what was written."""

    category = "VerificationMismatch"


class JobOverlap(GoalsError):
    category = "JobOverlap"


class HealthCritical(GoalsError):
    category = "HealthCritical"


def category_of(exc: BaseException) -> str:
    return getattr(exc, "category", "InternalError")
