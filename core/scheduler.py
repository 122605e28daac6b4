"""
core/scheduler.py
────────────────────────────────────────────────────────────────────────
Timed background jobs on APScheduler's AsyncIOScheduler.

Every tick, manual trigger and startup pass goes through `run_job`, which
owns the run guard:

  • single-flight   – per job kind, or across all kinds when
                      `serialize_all` is set
  • minimum spacing – a kind will not start again within `min_spacing`
                      of its last completion (manual triggers opt out)

A refused start is a *skipped* run, logged at INFO.  A job that raises is
a *failed* run; the error is logged and remembered, later ticks still fire.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.date import DateTrigger

from services.db import utcnow

_LOG = logging.getLogger(__name__)

STARTUP_JOB_ID = "startup-pass"


@dataclass(frozen=True)
class JobDefinition:
    kind: str
    func: Callable[[], Awaitable[Any]]
    trigger: BaseTrigger | None = None
    on_startup: bool = False


@dataclass
class JobRun:
    kind: str
    status: str  # completed | failed | skipped
    started_at: datetime
    finished_at: datetime | None = None
    result: Any = None
    error: str | None = None
    reason: str | None = None
    exception: BaseException | None = field(default=None, repr=False)


@dataclass
class JobRunState:
    running: set[str] = field(default_factory=set)
    last_started: dict[str, datetime] = field(default_factory=dict)
    last_completed: dict[str, datetime] = field(default_factory=dict)
    last_error: dict[str, str] = field(default_factory=dict)
    last_status: dict[str, str] = field(default_factory=dict)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class JobScheduler:
    def __init__(
        self,
        jobs: Iterable[JobDefinition],
        *,
        min_spacing: timedelta = timedelta(minutes=30),
        serialize_all: bool = False,
        startup_delay_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._jobs = {j.kind: j for j in jobs}
        self._spacing = min_spacing
        self._serialize_all = serialize_all
        self._startup_delay = startup_delay_seconds
        self._clock = clock
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._lock = asyncio.Lock()
        self._state = JobRunState()

    # ───────────────────────── guard ───────────────────────────
    async def _acquire(self, kind: str, respect_spacing: bool) -> str | None:
        """Mark `kind` running and return None, or return why it may not start."""
        async with self._lock:
            if kind in self._state.running:
                return f"{kind} is already running"
            if self._serialize_all and self._state.running:
                busy = ", ".join(sorted(self._state.running))
                return f"another job is running ({busy})"
            if respect_spacing:
                last = self._state.last_completed.get(kind)
                if last is not None and self._clock() - last < self._spacing:
                    return f"{kind} completed at {last.isoformat()}, within minimum spacing"
            self._state.running.add(kind)
            self._state.last_started[kind] = self._clock()
            return None

    async def _release(self, kind: str, status: str, error: str | None) -> datetime:
        async with self._lock:
            finished = self._clock()
            self._state.running.discard(kind)
            self._state.last_completed[kind] = finished
            self._state.last_status[kind] = status
            if error is not None:
                self._state.last_error[kind] = error
            return finished

    def is_running(self, kind: str) -> bool:
        return kind in self._state.running

    # ───────────────────────── run ─────────────────────────────
    async def run_job(self, kind: str, respect_spacing: bool = True) -> JobRun:
        job = self._jobs.get(kind)
        if job is None:
            raise KeyError(f"unknown job kind: {kind}")

        started = self._clock()
        refusal = await self._acquire(kind, respect_spacing)
        if refusal is not None:
            _LOG.info("skipping %s: %s", kind, refusal)
            return JobRun(kind, "skipped", started, finished_at=started, reason=refusal)

        _LOG.info("job %s started", kind)
        run = JobRun(kind, "completed", started)
        try:
            run.result = await job.func()
        except Exception as exc:  # noqa: BLE001 - a failed run never stops later ticks
            _LOG.exception("job %s failed: %s", kind, exc)
            run.status = "failed"
            run.error = f"{type(exc).__name__}: {exc}"
            run.exception = exc
        finally:
            run.finished_at = await self._release(kind, run.status, run.error)

        if run.status == "completed":
            summary = getattr(run.result, "summary", None)
            _LOG.info("job %s completed: %s", kind, summary() if callable(summary) else run.result)
        return run

    async def run_startup_pass(self) -> list[JobRun]:
        runs = []
        for job in self._jobs.values():
            if job.on_startup:
                runs.append(await self.run_job(job.kind))
        _LOG.info("startup pass finished: %s", {r.kind: r.status for r in runs})
        return runs

    # ─────────────────────── lifecycle ─────────────────────────
    def start(self) -> None:
        for job in self._jobs.values():
            if job.trigger is None:
                continue
            self._scheduler.add_job(
                self.run_job,
                job.trigger,
                args=[job.kind],
                id=job.kind,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        if any(j.on_startup for j in self._jobs.values()):
            run_at = datetime.now(timezone.utc) + timedelta(seconds=self._startup_delay)
            self._scheduler.add_job(
                self.run_startup_pass,
                DateTrigger(run_date=run_at),
                id=STARTUP_JOB_ID,
                replace_existing=True,
            )
        self._scheduler.start()
        _LOG.info("scheduler started with jobs: %s", ", ".join(self._jobs))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            _LOG.info("scheduler stopped")

    def status(self) -> dict[str, Any]:
        jobs = {}
        for kind in self._jobs:
            scheduled = self._scheduler.get_job(kind)
            jobs[kind] = {
                "running": kind in self._state.running,
                "last_status": self._state.last_status.get(kind),
                "last_started": _iso(self._state.last_started.get(kind)),
                "last_completed": _iso(self._state.last_completed.get(kind)),
                "last_error": self._state.last_error.get(kind),
                "next_run_time": _iso(getattr(scheduled, "next_run_time", None)),
            }
        return {
            "scheduler_running": self._scheduler.running,
            "serialize_all": self._serialize_all,
            "min_spacing_minutes": self._spacing.total_seconds() / 60,
            "running": sorted(self._state.running),
            "jobs": jobs,
        }
