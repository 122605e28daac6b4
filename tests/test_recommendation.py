# tests/test_recommendation.py
from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import MALE_LOSS, TODAY, add_user
from core.nutrition_calc import UserProfile
from core.recommendation import (
    RecentPerformance,
    RecommendationService,
    build_prompt,
    fallback_recommendations,
    normalize,
    summarize_performance,
)
from scripts.helpers import extract_clean_json
from services.db import AIRecommendation, DailyGoal, Meal, session_factory
from services.population import DatabasePopulation

MODEL_REPLY = """Sure! Here you go:
```json
{
  "nutrition_tips": ["Eat more greens"],
  "meal_suggestions": ["Oats with berries"],
  "goal_adjustments": [],
  "behavioral_insights": ["Log dinner"],
  "priority_level": "urgent",
  "confidence_score": 0.9,
  "key_focus_areas": ["fiber"]
}
```"""


def _service(eng, generator=None, **kw):
    kw.setdefault("pause_seconds", 0)
    return RecommendationService(eng, DatabasePopulation(eng), generator, **kw)


async def _recs(eng) -> list[AIRecommendation]:
    async with session_factory(eng)() as db:
        return list((await db.execute(select(AIRecommendation))).scalars().all())


# ───────────────────────── pure helpers ────────────────────
def test_extract_clean_json_fenced_and_bare():
    assert extract_clean_json(MODEL_REPLY)["confidence_score"] == 0.9
    assert extract_clean_json('noise {"a": 1} trailing') == {"a": 1}


def test_extract_clean_json_rejects_prose():
    with pytest.raises(ValueError):
        extract_clean_json("no json here")


def test_normalize_coerces_bad_fields():
    out = normalize(json.loads('{"nutrition_tips": "one", "priority_level": "urgent", "confidence_score": "high"}'))
    assert out["nutrition_tips"] == []
    assert out["priority_level"] == "medium"
    assert out["confidence_score"] == 0.7
    assert set(out) >= {"meal_suggestions", "key_focus_areas"}


def test_fallback_rules():
    weak = RecentPerformance(goal_achievement_rate=0.2, meal_frequency=1.0)
    profile = UserProfile(main_goal="WEIGHT_LOSS", activity_level="HIGH", dietary_style="Vegetarian")

    rec = fallback_recommendations(profile, weak)

    assert rec["priority_level"] == "high"
    assert any("calorie goals" in tip for tip in rec["goal_adjustments"])
    assert any("3 meals" in tip for tip in rec["behavioral_insights"])
    assert any("B12" in tip for tip in rec["nutrition_tips"])
    assert "recovery" in rec["key_focus_areas"]


def test_fallback_defaults_without_profile():
    rec = fallback_recommendations(None, RecentPerformance(goal_achievement_rate=1.0, meal_frequency=3))
    assert rec["priority_level"] == "medium"
    assert len(rec["nutrition_tips"]) == 3
    assert rec["key_focus_areas"] == ["consistency"]


def test_summarize_performance():
    day = TODAY - timedelta(days=1)
    at = datetime(day.year, day.month, day.day, 8)
    meals = [
        Meal(user_id="u1", calories=900, protein_g=40, created_at=at),
        Meal(user_id="u1", calories=900, protein_g=30, created_at=at + timedelta(hours=5)),
        Meal(user_id="u1", calories=300, protein_g=10, created_at=at - timedelta(days=1)),
    ]
    goals = [
        DailyGoal(user_id="u1", date=day, calories=2000),
        DailyGoal(user_id="u1", date=day - timedelta(days=1), calories=2000),
    ]

    perf = summarize_performance(meals, goals)

    assert perf.total_calories == 2100
    assert perf.total_protein == 80
    assert perf.goal_achievement_rate == 0.5
    assert perf.meal_frequency == 3 / 7
    assert perf.consistency_score == 0.5


def test_prompt_mentions_profile_and_allergies():
    prompt = build_prompt(
        UserProfile(age=30, main_goal="WEIGHT_GAIN", weight_kg=60),
        RecentPerformance(goal_achievement_rate=0.75),
        ["peanuts"],
    )
    assert "WEIGHT_GAIN" in prompt
    assert "peanuts" in prompt
    assert "75%" in prompt


# ───────────────────────── service ─────────────────────────
async def test_generates_with_model_once_per_day(eng):
    await add_user(eng, "u1", questionnaire=MALE_LOSS)
    await add_user(eng, "u2")  # no questionnaire: never eligible
    prompts = []

    def model(prompt, max_tokens):
        prompts.append(prompt)
        return MODEL_REPLY

    service = _service(eng, model)
    first = await service.generate_for_all_users(TODAY)
    second = await service.generate_for_all_users(TODAY)

    assert first.summary() == {"created": 1, "updated": 0, "skipped": 0, "errors": 0}
    assert second.created == 0
    assert len(prompts) == 1 and "peanuts" in prompts[0]

    [rec] = await _recs(eng)
    assert rec.user_id == "u1"
    assert rec.priority_level == "medium"
    assert rec.confidence_score == 0.9
    assert rec.recommendations["nutrition_tips"] == ["Eat more greens"]


async def test_model_failure_uses_fallback(eng):
    await add_user(eng, "u1", questionnaire=MALE_LOSS)

    def broken(prompt, max_tokens):
        raise ConnectionError("quota exhausted")

    result = await _service(eng, broken).generate_for_all_users(TODAY)

    assert result.created == 1
    [rec] = await _recs(eng)
    assert any("calorie deficit" in t for t in rec.recommendations["nutrition_tips"])


async def test_existing_recommendation_counts_as_skipped(eng):
    await add_user(eng, "u1", questionnaire=MALE_LOSS)
    service = _service(eng)

    assert await service.generate_for_user("u1", TODAY) is True
    assert await service.generate_for_user("u1", TODAY) is False
    assert len(await _recs(eng)) == 1


async def test_batch_limit_caps_eligible_users(eng):
    for i in range(4):
        await add_user(eng, f"u{i}", questionnaire=MALE_LOSS, created_at=datetime(2026, 1, 1 + i))

    result = await _service(eng, batch_limit=3, batch_size=2).generate_for_all_users(TODAY)

    assert result.created == 3
    assert sorted(r.user_id for r in await _recs(eng)) == ["u0", "u1", "u2"]
