"""
services/container.py
────────────────────────────────────────────────────────────────────────
Builds the long-lived collaborators from one engine + settings object
and registers the four timed jobs, in startup-pass order:

    health-check             every 2 h        (startup pass)
    daily-goals              cron 00:30 UTC   (startup pass)
    ai-recommendations       cron 06:00 UTC   (startup pass if Gemini is set)
    database-optimization    every 6 h
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncEngine

from config import Settings
from core.batch import BatchOrchestrator, BatchRunResult
from core.errors import HealthCritical
from core.nutrition_calc import NutritionalCalculator
from core.recommendation import RecommendationRunResult, RecommendationService, TextGenerator
from core.scheduler import JobDefinition, JobScheduler
from services import gemini
from services.goal_store import GoalStore
from services.maintenance import MaintenanceMonitor
from services.population import DatabasePopulation

_LOG = logging.getLogger(__name__)

DAILY_GOALS = "daily-goals"
AI_RECOMMENDATIONS = "ai-recommendations"
DATABASE_OPTIMIZATION = "database-optimization"
HEALTH_CHECK = "health-check"


@dataclass
class Services:
    settings: Settings
    store: GoalStore
    population: DatabasePopulation
    orchestrator: BatchOrchestrator
    monitor: MaintenanceMonitor
    recommendations: RecommendationService
    scheduler: JobScheduler = field(init=False)

    def __post_init__(self) -> None:
        s = self.settings
        self.scheduler = JobScheduler(
            [
                JobDefinition(
                    HEALTH_CHECK,
                    self.health_check_job,
                    IntervalTrigger(hours=2),
                    on_startup=True,
                ),
                JobDefinition(
                    DAILY_GOALS,
                    self.daily_goals_job,
                    CronTrigger(hour=0, minute=30, timezone="UTC"),
                    on_startup=True,
                ),
                JobDefinition(
                    AI_RECOMMENDATIONS,
                    self.recommendations_job,
                    CronTrigger(hour=6, minute=0, timezone="UTC"),
                    on_startup=self.recommendations.generator_available,
                ),
                JobDefinition(
                    DATABASE_OPTIMIZATION,
                    self.optimization_job,
                    IntervalTrigger(hours=6),
                ),
            ],
            min_spacing=timedelta(minutes=s.job_min_spacing_minutes),
            serialize_all=s.serialize_all_jobs,
            startup_delay_seconds=s.startup_delay_seconds,
        )

    # ───────────────────────── job bodies ──────────────────────
    async def daily_goals_job(self) -> BatchRunResult:
        return await self.orchestrator.run(self.population, self.population)

    async def recommendations_job(self) -> RecommendationRunResult:
        return await self.recommendations.generate_for_all_users()

    async def optimization_job(self) -> dict[str, bool]:
        return await self.monitor.optimize()

    async def health_check_job(self) -> dict[str, Any]:
        """Critical → emergency recovery; otherwise clean up when asked to."""
        report = await self.monitor.check_health()
        out: dict[str, Any] = {"health": report.as_dict()}
        if report.status == "critical":
            _LOG.warning("database health is critical, running emergency recovery")
            if not await self.monitor.emergency_recovery():
                raise HealthCritical("database critical and emergency recovery failed")
            out["recovered"] = True
        elif report.needs_cleanup:
            out["cleanup"] = (await self.monitor.cleanup()).summary()
        return out


def build_services(
    eng: AsyncEngine,
    settings: Settings,
    generator: TextGenerator | None = None,
) -> Services:
    """`generator` defaults to Gemini when an API key is configured."""
    if generator is None and gemini.is_available():
        def generator(prompt: str, max_tokens: int) -> str:
            return gemini.generate(prompt, max_output_tokens=max_tokens)

    calc = NutritionalCalculator()
    store = GoalStore(eng, calc)
    population = DatabasePopulation(eng)
    return Services(
        settings=settings,
        store=store,
        population=population,
        orchestrator=BatchOrchestrator(
            store,
            calc,
            batch_size=settings.goals_batch_size,
            pause_seconds=settings.goals_batch_pause_seconds,
            verify_writes=settings.goals_verify_writes,
        ),
        monitor=MaintenanceMonitor(
            eng,
            cleanup_timeout_seconds=settings.cleanup_timeout_seconds,
            goal_retention_days=settings.goal_retention_days,
            recommendation_retention_days=settings.recommendation_retention_days,
        ),
        recommendations=RecommendationService(
            eng,
            population,
            generator,
            batch_limit=settings.recommendation_batch_limit,
            batch_size=settings.recommendation_batch_size,
            pause_seconds=settings.goals_batch_pause_seconds,
        ),
    )
