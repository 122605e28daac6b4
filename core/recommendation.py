"""
core/recommendation.py
────────────────────────────────────────────────────────────────────────
Daily nutrition recommendations for every user who finished the
questionnaire:

  • 7-day performance   → meals vs. daily goals
  • Gemini LLM (optional) → JSON tips, normalised
  • Rule-based fallback → used whenever the LLM is absent or fails

One row per (user, day) in `ai_recommendations`; a second writer for the
same day is a no-op (ON CONFLICT DO NOTHING) and counts as skipped.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable

from sqlalchemy import and_, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.batch import run_in_batches
from core.errors import StorageFailure
from core.nutrition_calc import MainGoal, UserProfile
from scripts.helpers import extract_clean_json
from services.db import (
    AIRecommendation,
    DailyGoal,
    Meal,
    User,
    native_insert,
    session_factory,
    utc_today,
    utcnow,
)
from services.population import DatabasePopulation, profile_from_row

_LOG = logging.getLogger(__name__)

TextGenerator = Callable[[str, int], str]

PRIORITIES = ("low", "medium", "high")
LIST_KEYS = (
    "nutrition_tips",
    "meal_suggestions",
    "goal_adjustments",
    "behavioral_insights",
    "key_focus_areas",
)
ACHIEVED_SHARE = 0.8  # a day counts as achieved at 80 % of the calorie goal
MAX_TOKENS = 1000


@dataclass
class RecentPerformance:
    total_calories: float = 0.0
    total_protein: float = 0.0
    goal_achievement_rate: float = 0.0
    meal_frequency: float = 0.0
    consistency_score: float = 0.0


@dataclass
class RecommendationRunResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": len(self.errors),
        }


# ──────────────────────────────────────────────────────────────────────
#  Pure helpers
# ──────────────────────────────────────────────────────────────────────
def summarize_performance(
    meals: list[Meal], goals: list[DailyGoal], window_days: int = 7
) -> RecentPerformance:
    by_day: dict[date, list[Meal]] = defaultdict(list)
    for m in meals:
        by_day[m.created_at.date()].append(m)

    achieved = 0
    for g in goals:
        eaten = sum(m.calories or 0 for m in by_day.get(g.date, []))
        if eaten >= g.calories * ACHIEVED_SHARE:
            achieved += 1

    consistency = 0.0
    if len(meals) >= 3 and by_day:
        consistency = sum(1 for day_meals in by_day.values() if len(day_meals) >= 2) / len(by_day)

    return RecentPerformance(
        total_calories=sum(m.calories or 0 for m in meals),
        total_protein=sum(m.protein_g or 0 for m in meals),
        goal_achievement_rate=achieved / len(goals) if goals else 0.0,
        meal_frequency=len(meals) / window_days,
        consistency_score=consistency,
    )


def build_prompt(profile: UserProfile | None, perf: RecentPerformance, allergies: list[str]) -> str:
    p = profile or UserProfile()
    return f"""Analyze this user's nutrition data and provide personalized daily recommendations.

USER PROFILE:
- Age: {p.age or 'Unknown'}
- Goal: {p.main_goal or 'GENERAL_HEALTH'}
- Activity Level: {p.activity_level or 'MODERATE'}
- Dietary Style: {p.dietary_style or 'Regular'}
- Allergies: {', '.join(allergies) or 'None'}
- Weight: {p.weight_kg or 'Unknown'}kg

RECENT PERFORMANCE (Last 7 days):
- Total Calories: {perf.total_calories:.0f}
- Total Protein: {perf.total_protein:.0f}g
- Goal Achievement Rate: {round(perf.goal_achievement_rate * 100)}%
- Meal Frequency: {perf.meal_frequency:.1f} meals/day
- Consistency Score: {round(perf.consistency_score * 100)}%

Provide recommendations in this JSON format:
{{
  "nutrition_tips": ["tip1", "tip2", "tip3"],
  "meal_suggestions": ["suggestion1", "suggestion2"],
  "goal_adjustments": ["adjustment1", "adjustment2"],
  "behavioral_insights": ["insight1", "insight2"],
  "priority_level": "low|medium|high",
  "confidence_score": 0.85,
  "key_focus_areas": ["area1", "area2"]
}}

Be specific, actionable, and encouraging. Consider the user's allergies and dietary restrictions."""


def normalize(parsed: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {
        k: [str(v) for v in parsed[k]] if isinstance(parsed.get(k), list) else []
        for k in LIST_KEYS
    }
    priority = parsed.get("priority_level")
    out["priority_level"] = priority if priority in PRIORITIES else "medium"
    score = parsed.get("confidence_score")
    out["confidence_score"] = (
        float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else 0.7
    )
    return out


def fallback_recommendations(profile: UserProfile | None, perf: RecentPerformance) -> dict[str, Any]:
    """Deterministic, rule-based tips used when the LLM is unavailable."""
    rec: dict[str, Any] = {k: [] for k in LIST_KEYS}
    rec["priority_level"] = "medium"
    rec["confidence_score"] = 0.7

    if perf.goal_achievement_rate < 0.5:
        rec["goal_adjustments"].append(
            "Consider adjusting daily calorie goals to be more achievable"
        )
        rec["priority_level"] = "high"

    if perf.meal_frequency < 2:
        rec["behavioral_insights"].append(
            "Try to maintain at least 3 meals per day for better nutrition distribution"
        )

    goal = str(profile.main_goal).upper() if profile and profile.main_goal else ""
    if goal == MainGoal.WEIGHT_LOSS.value:
        rec["meal_suggestions"].append("Focus on high-protein, low-calorie meals with plenty of vegetables")
        rec["nutrition_tips"].append("Aim for a moderate calorie deficit while maintaining protein intake")
    elif goal == MainGoal.WEIGHT_GAIN.value:
        rec["meal_suggestions"].append("Include calorie-dense, nutritious foods like nuts, avocados, and lean proteins")
        rec["nutrition_tips"].append("Add healthy snacks between meals to increase daily calorie intake")

    activity = str(profile.activity_level).upper() if profile and profile.activity_level else ""
    if activity == "HIGH":
        rec["nutrition_tips"].append("Increase protein intake to support muscle recovery and growth")
        rec["meal_suggestions"].append("Include post-workout meals with carbs and protein within 2 hours of exercise")
        rec["key_focus_areas"].append("recovery")

    if profile and "vegetarian" in (profile.dietary_style or "").lower():
        rec["nutrition_tips"].append("Ensure adequate B12, iron, and complete protein sources in your diet")

    if not rec["nutrition_tips"]:
        rec["nutrition_tips"] = [
            "Maintain a balanced diet with variety in food choices",
            "Stay consistent with meal timing for better metabolism",
            "Include colorful vegetables and fruits in your daily meals",
        ]
    if not rec["meal_suggestions"]:
        rec["meal_suggestions"] = [
            "Start your day with a protein-rich breakfast",
            "Include fiber-rich foods to help you feel satisfied longer",
        ]
    if not rec["key_focus_areas"]:
        rec["key_focus_areas"] = ["consistency"]
    return rec


# ──────────────────────────────────────────────────────────────────────
#  Service
# ──────────────────────────────────────────────────────────────────────
class RecommendationService:
    def __init__(
        self,
        eng: AsyncEngine,
        population: DatabasePopulation,
        generator: TextGenerator | None = None,
        *,
        batch_limit: int = 50,
        batch_size: int = 5,
        pause_seconds: float = 2.0,
    ) -> None:
        self._sessions = session_factory(eng)
        self._insert = native_insert(eng)
        self._population = population
        self._generate = generator
        self._limit = batch_limit
        self._batch_size = batch_size
        self._pause = pause_seconds

    @property
    def generator_available(self) -> bool:
        return self._generate is not None

    async def eligible_users(self, day: date) -> list[str]:
        already = exists().where(
            and_(AIRecommendation.user_id == User.user_id, AIRecommendation.date == day)
        )
        try:
            async with self._sessions() as db:
                ids = (
                    await db.execute(
                        select(User.user_id)
                        .where(User.is_questionnaire_completed.is_(True), ~already)
                        .order_by(User.created_at, User.user_id)
                        .limit(self._limit)
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not list recommendation candidates: {exc}") from exc
        return list(ids)

    async def generate_for_all_users(self, day: date | None = None) -> RecommendationRunResult:
        day = day or utc_today()
        result = RecommendationRunResult()
        user_ids = await self.eligible_users(day)
        _LOG.info("%d users need recommendations for %s", len(user_ids), day)

        async def _one(user_id: str) -> None:
            try:
                if await self.generate_for_user(user_id, day):
                    result.created += 1
                else:
                    result.skipped += 1
            except Exception as exc:  # noqa: BLE001
                _LOG.warning("recommendation failed for user %s: %s", user_id, exc)
                result.errors.append(f"User {user_id}: {exc}")

        await run_in_batches(user_ids, _one, self._batch_size, self._pause)
        _LOG.info("recommendations for %s: %s", day, result.summary())
        return result

    async def generate_for_user(self, user_id: str, day: date | None = None) -> bool:
        """Returns False when a recommendation for `day` already existed."""
        day = day or utc_today()
        q = await self._population.latest_questionnaire(user_id)
        profile = profile_from_row(q) if q is not None else None
        allergies = [str(a) for a in (q.allergies or [])] if q is not None else []
        perf = await self.recent_performance(user_id, day)

        payload = await self._ask_model(profile, perf, allergies)
        return await self._save(user_id, day, payload)

    async def recent_performance(self, user_id: str, day: date) -> RecentPerformance:
        since = day - timedelta(days=7)
        try:
            async with self._sessions() as db:
                meals = (
                    await db.execute(
                        select(Meal).where(
                            Meal.user_id == user_id,
                            Meal.created_at >= datetime.combine(since, time.min),
                        )
                    )
                ).scalars().all()
                goals = (
                    await db.execute(
                        select(DailyGoal).where(DailyGoal.user_id == user_id, DailyGoal.date >= since)
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not read performance for {user_id}: {exc}") from exc
        return summarize_performance(list(meals), list(goals))

    async def _ask_model(
        self, profile: UserProfile | None, perf: RecentPerformance, allergies: list[str]
    ) -> dict[str, Any]:
        if self._generate is None:
            return fallback_recommendations(profile, perf)
        prompt = build_prompt(profile, perf, allergies)
        try:
            raw = await asyncio.to_thread(self._generate, prompt, MAX_TOKENS)
            return normalize(extract_clean_json(raw))
        except ValueError as exc:
            _LOG.warning("unparseable model reply, using fallback: %s", exc)
        except Exception as exc:  # noqa: BLE001 - any LLM outage falls back
            _LOG.warning("text generation unavailable, using fallback: %s", exc)
        return fallback_recommendations(profile, perf)

    async def _save(self, user_id: str, day: date, payload: dict[str, Any]) -> bool:
        stmt = (
            self._insert(AIRecommendation)
            .values(
                user_id=user_id,
                date=day,
                recommendations={k: payload[k] for k in LIST_KEYS},
                priority_level=payload["priority_level"],
                confidence_score=payload["confidence_score"],
                based_on={
                    "recent_performance": "7_day_analysis",
                    "goal_achievement": "daily_tracking",
                },
                is_read=False,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "date"])
            .returning(AIRecommendation.id)
        )
        try:
            async with self._sessions() as db:
                new_id = (await db.execute(stmt)).scalar_one_or_none()
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not save recommendation for {user_id}: {exc}") from exc
        return new_id is not None
