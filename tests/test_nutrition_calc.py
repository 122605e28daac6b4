# tests/test_nutrition_calc.py
from __future__ import annotations

import math

import pytest

from core.nutrition_calc import (
    DEFAULT_TARGETS,
    ActivityLevel,
    MainGoal,
    NutritionalCalculator,
    UserProfile,
    round_half_up,
)

calc = NutritionalCalculator()

MALE_70KG = UserProfile(
    weight_kg=70,
    height_cm=170,
    age=25,
    sex="Male",
    activity_level="MODERATE",
    main_goal="WEIGHT_LOSS",
)


# ── BMR / TDEE ───────────────────────────────────────────────────────
def test_bmr_mifflin_male():
    expected = 10 * 70 + 6.25 * 170 - 5 * 25 + 5   # 1642.5
    assert math.isclose(calc.bmr(MALE_70KG), expected, rel_tol=1e-9)


@pytest.mark.parametrize("sex", ["female", "Female", "FEMALE", "woman", None, ""])
def test_bmr_non_male_markers_use_female_offset(sex):
    p = UserProfile(weight_kg=70, height_cm=170, age=25, sex=sex)
    assert math.isclose(calc.bmr(p), 1642.5 - 166, rel_tol=1e-9)


@pytest.mark.parametrize(
    "level, factor",
    [("NONE", 1.2), ("LIGHT", 1.375), ("MODERATE", 1.55), ("HIGH", 1.725), ("bogus", 1.55), (None, 1.55)],
)
def test_tdee_activity_multiplier(level, factor):
    p = UserProfile(weight_kg=70, height_cm=170, age=25, sex="male", activity_level=level)
    assert math.isclose(calc.tdee(p), 1642.5 * factor, rel_tol=1e-9)


@pytest.mark.parametrize("level", [None, "", "   "])
def test_missing_activity_level_is_moderate_not_none(level):
    p = UserProfile(weight_kg=70, height_cm=170, age=25, sex="male", activity_level=level, main_goal="WEIGHT_LOSS")
    assert calc.activity(p) is ActivityLevel.MODERATE
    assert calc.daily_goal(p).calories == 2046


# ── full chain ───────────────────────────────────────────────────────
def test_weight_loss_chain_from_tdee():
    t = calc.targets_for_tdee(2604.775, MALE_70KG)
    assert (t.calories, t.protein_g, t.carbs_g, t.fats_g) == (2105, 112, 237, 70)
    assert (t.water_ml, t.fiber_g, t.sugar_g, t.sodium_mg) == (2450, 26, 53, 2300)


def test_weight_loss_chain_from_profile():
    t = calc.daily_goal(MALE_70KG)
    assert t.as_dict() == {
        "calories": 2046,
        "protein_g": 112,
        "carbs_g": 230,
        "fats_g": 68,
        "fiber_g": 26,
        "sodium_mg": 2300,
        "sugar_g": 51,
        "water_ml": 2450,
    }


def test_absent_profile_gives_defaults():
    assert calc.daily_goal(None) == DEFAULT_TARGETS
    assert DEFAULT_TARGETS.calories == 2000
    assert DEFAULT_TARGETS.water_ml == 2500


def test_missing_numerics_fall_back_to_reference_body():
    blank = UserProfile(weight_kg=None, height_cm=0, age=-3, sex="male")
    ref = UserProfile(weight_kg=70, height_cm=170, age=25, sex="male")
    assert calc.daily_goal(blank) == calc.daily_goal(ref)


# ── floors ───────────────────────────────────────────────────────────
def test_small_body_hits_calorie_and_water_floors():
    p = UserProfile(
        weight_kg=40, height_cm=150, age=80, sex="female",
        activity_level=ActivityLevel.NONE, main_goal=MainGoal.WEIGHT_LOSS,
    )
    t = calc.daily_goal(p)
    assert t.calories == 1200
    assert t.water_ml == 2000
    assert t.fiber_g == 25
    assert t.protein_g == 64


def test_protein_floor():
    p = UserProfile(weight_kg=25, height_cm=120, age=12, sex="male")
    assert calc.daily_goal(p).protein_g == 50


@pytest.mark.parametrize("weight", [30, 55, 70, 95, 140])
@pytest.mark.parametrize("goal", list(MainGoal))
@pytest.mark.parametrize("activity", list(ActivityLevel))
def test_floors_hold_for_every_branch(weight, goal, activity):
    p = UserProfile(weight_kg=weight, height_cm=165, age=40, sex="female",
                    activity_level=activity, main_goal=goal)
    t = calc.daily_goal(p)
    assert t.calories >= 1200
    assert t.water_ml >= 2000
    assert t.fiber_g >= 25
    assert t.protein_g >= 50
    assert all(isinstance(v, int) and v > 0 for v in t.as_dict().values())


# ── macro splits ─────────────────────────────────────────────────────
def test_sports_split_and_high_activity_water():
    p = UserProfile(weight_kg=80, height_cm=180, age=30, sex="male",
                    activity_level="HIGH", main_goal="SPORTS_PERFORMANCE")
    t = calc.daily_goal(p)
    assert t.protein_g == 160
    assert t.carbs_g == round_half_up(t.calories * 0.55 / 4)
    assert t.fats_g == round_half_up(t.calories * 0.25 / 9)
    assert t.water_ml == 80 * 35 + 500


def test_keto_style_split():
    p = UserProfile(weight_kg=70, height_cm=170, age=25, sex="male",
                    main_goal="MAINTENANCE", dietary_style="Strict KETO")
    t = calc.daily_goal(p)
    assert t.protein_g == 112
    assert t.carbs_g == round_half_up(t.calories * 0.05 / 4)
    assert t.fats_g == round_half_up(t.calories * 0.75 / 9)


def test_sports_goal_wins_over_keto_style():
    p = UserProfile(weight_kg=70, sex="male", main_goal="SPORTS_PERFORMANCE", dietary_style="keto")
    t = calc.daily_goal(p)
    assert t.carbs_g == round_half_up(t.calories * 0.55 / 4)


def test_goal_offsets():
    base = dict(weight_kg=70, height_cm=170, age=25, sex="male")
    maintain = calc.daily_goal(UserProfile(**base, main_goal="MAINTENANCE")).calories
    gain = calc.daily_goal(UserProfile(**base, main_goal="weight_gain")).calories
    sports = calc.daily_goal(UserProfile(**base, main_goal="SPORTS_PERFORMANCE")).calories
    unknown = calc.daily_goal(UserProfile(**base, main_goal="GET_HUGE")).calories
    assert gain - maintain == 300
    assert sports - maintain == 200
    assert unknown == maintain


# ── rounding ─────────────────────────────────────────────────────────
@pytest.mark.parametrize("value, expected", [(0.5, 1), (2.5, 3), (2104.775, 2105), (236.8125, 237), (2.4999, 2)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
