"""
core/batch.py
────────────────────────────────────────────────────────────────────────
Population-wide daily goal materialization.

    population.list_users()  →  snapshot exists_for_date(day)
        →  batches of N concurrent users, paused between batches
        →  per user: profile → calculator → store.upsert → read-back
        →  BatchRunResult (created / updated / skipped / error details)

Outcome classification uses the single pre-run snapshot, never row
timestamps.  A failing user becomes an error detail; it never aborts
the rest of the run.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence, TypeVar

from core.errors import VerificationMismatch
from core.nutrition_calc import NutritionalCalculator, NutritionTargets, UserProfile
from services.db import utc_today

_LOG = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# ──────────────────────────────────────────────────────────────────────
#  Collaborator contracts
# ──────────────────────────────────────────────────────────────────────
class UserLike(Protocol):
    user_id: str


class PopulationProvider(Protocol):
    async def list_users(self) -> Sequence[UserLike]: ...


class ProfileProvider(Protocol):
    async def latest_profile(self, user_id: str) -> UserProfile | None: ...


class GoalWriter(Protocol):
    async def exists_for_date(self, day: date) -> set[str]: ...

    async def upsert(self, user_id: str, day: date, targets: NutritionTargets) -> Any: ...

    async def get(self, user_id: str, day: date) -> Any: ...


# ──────────────────────────────────────────────────────────────────────
#  Result records
# ──────────────────────────────────────────────────────────────────────
class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class GoalOutcome:
    user_id: str
    outcome: Outcome
    message: str


@dataclass
class BatchRunResult:
    day: date
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    details: list[GoalOutcome] = field(default_factory=list)

    def record(self, item: GoalOutcome) -> None:
        self.details.append(item)
        if item.outcome is Outcome.CREATED:
            self.created += 1
        elif item.outcome is Outcome.UPDATED:
            self.updated += 1
        elif item.outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors.append(f"User {item.user_id}: {item.message}")

    @property
    def examined(self) -> int:
        return len(self.details)

    @property
    def status(self) -> str:
        """skipped = nothing needed doing, failed = errors present."""
        if self.errors:
            return "failed"
        if self.created == 0 and self.updated == 0:
            return "skipped"
        return "succeeded"

    def summary(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "status": self.status,
        }


# ──────────────────────────────────────────────────────────────────────
#  Paced worker groups
# ──────────────────────────────────────────────────────────────────────
async def run_in_batches(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    pause_seconds: float = 0.0,
) -> list[R]:
    """
    Run `worker` over `items`, `batch_size` at a time, sleeping
    `pause_seconds` between groups.  Results keep input order; the
    worker is expected to handle its own exceptions.
    """
    pending = list(items)
    results: list[R] = []
    for start in range(0, len(pending), batch_size):
        group = pending[start:start + batch_size]
        results.extend(await asyncio.gather(*(worker(item) for item in group)))
        if pause_seconds and start + batch_size < len(pending):
            await asyncio.sleep(pause_seconds)
    return results


# ──────────────────────────────────────────────────────────────────────
#  Orchestrator
# ──────────────────────────────────────────────────────────────────────
class BatchOrchestrator:
    def __init__(
        self,
        store: GoalWriter,
        calc: NutritionalCalculator | None = None,
        *,
        batch_size: int = 5,
        pause_seconds: float = 2.0,
        verify_writes: bool = True,
        today: Callable[[], date] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self._calc = calc or NutritionalCalculator()
        self._batch_size = batch_size
        self._pause = pause_seconds
        self._verify = verify_writes
        self._today = today or utc_today

    async def run(
        self,
        population: PopulationProvider,
        profiles: ProfileProvider,
        day: date | None = None,
    ) -> BatchRunResult:
        day = day or self._today()
        users = await population.list_users()
        result = BatchRunResult(day=day)
        _LOG.info("daily goals run for %s: %d users", day, len(users))
        if not users:
            return result

        existing = await self._store.exists_for_date(day)

        unique = list(dict.fromkeys(u.user_id for u in users))

        async def _one(user_id: str) -> GoalOutcome:
            return await self._materialize(user_id, day, existing, profiles)

        processed = iter(
            await run_in_batches(unique, _one, self._batch_size, self._pause)
        )

        emitted: set[str] = set()
        for u in users:
            if u.user_id in emitted:
                result.record(
                    GoalOutcome(u.user_id, Outcome.SKIPPED, "Duplicate user in population")
                )
                continue
            emitted.add(u.user_id)
            result.record(next(processed))

        _LOG.info(
            "daily goals run for %s done: created=%d updated=%d skipped=%d errors=%d",
            day, result.created, result.updated, result.skipped, len(result.errors),
        )
        return result

    async def run_for_user(
        self,
        user_id: str,
        profiles: ProfileProvider,
        day: date | None = None,
    ) -> Any:
        """Materialize a single user now; errors propagate to the caller."""
        day = day or self._today()
        profile = await profiles.latest_profile(user_id)
        targets = self._calc.daily_goal(profile)
        row = await self._store.upsert(user_id, day, targets)
        if self._verify:
            await self._read_back(user_id, day, targets)
        return row

    # ───────────────────────── per user ───────────────────────
    async def _materialize(
        self,
        user_id: str,
        day: date,
        existing: set[str],
        profiles: ProfileProvider,
    ) -> GoalOutcome:
        try:
            profile = await profiles.latest_profile(user_id)
            targets = self._calc.daily_goal(profile)
            row = await self._store.upsert(user_id, day, targets)
            if self._verify:
                await self._read_back(user_id, day, targets)
        except Exception as exc:  # noqa: BLE001 - one user never sinks the batch
            _LOG.warning("daily goal failed for user %s: %s", user_id, exc)
            return GoalOutcome(user_id, Outcome.ERROR, str(exc) or type(exc).__name__)

        note = "" if profile is not None else " (defaults, no questionnaire)"
        if user_id in existing:
            return GoalOutcome(user_id, Outcome.UPDATED, f"Goal refreshed, {targets.calories} kcal{note}")
        row_id = getattr(row, "id", None)
        return GoalOutcome(user_id, Outcome.CREATED, f"Goal created with ID {row_id}{note}")

    async def _read_back(self, user_id: str, day: date, targets: NutritionTargets) -> None:
        stored = await self._store.get(user_id, day)
        if stored is None:
            raise VerificationMismatch(f"goal for {user_id} on {day} missing after write")
        diff = {
            name: (want, getattr(stored, name, None))
            for name, want in targets.as_dict().items()
            if getattr(stored, name, None) != want
        }
        if diff:
            raise VerificationMismatch(f"goal for {user_id} on {day} differs after write: {diff}")
