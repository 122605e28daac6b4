"""
core/nutrition_calc.py
────────────────────────────────────────────────────────────────────────
Daily goal rules, one canonical rule set:

1. BMR  (Mifflin–St Jeor)
2. TDEE (activity multiplier)
3. Calories for four goal branches, floored at 1200 kcal
4. Macros (sports / keto / default split)
5. Water, fiber, sugar, sodium

Pure functions only: no I/O, no clock.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from enum import Enum

Logger = logging.getLogger(__name__)


class ActivityLevel(str, Enum):
    NONE = "NONE"
    LIGHT = "LIGHT"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class MainGoal(str, Enum):
    MAINTENANCE = "MAINTENANCE"
    WEIGHT_LOSS = "WEIGHT_LOSS"
    WEIGHT_GAIN = "WEIGHT_GAIN"
    SPORTS_PERFORMANCE = "SPORTS_PERFORMANCE"


# ──────────────────────────────────────────────────────────────────────
#  Input / output records
# ──────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class UserProfile:
    """Latest questionnaire snapshot; every field may be missing."""

    weight_kg: float | None = None
    height_cm: float | None = None
    age: int | None = None
    sex: str | None = None
    activity_level: ActivityLevel | str | None = None
    main_goal: MainGoal | str | None = None
    dietary_style: str | None = None

    @property
    def is_male(self) -> bool:
        marker = (self.sex or "").strip().lower()
        return "male" in marker and "female" not in marker


@dataclass(frozen=True)
class NutritionTargets:
    calories: int
    protein_g: int
    carbs_g: int
    fats_g: int
    fiber_g: int
    sodium_mg: int
    sugar_g: int
    water_ml: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


TARGET_FIELDS = tuple(NutritionTargets.__dataclass_fields__)

DEFAULT_TARGETS = NutritionTargets(
    calories=2000,
    protein_g=150,
    carbs_g=250,
    fats_g=67,
    fiber_g=25,
    sodium_mg=2300,
    sugar_g=50,
    water_ml=2500,
)

# fallbacks for missing anthropometrics
DEFAULT_WEIGHT_KG = 70.0
DEFAULT_HEIGHT_CM = 170.0
DEFAULT_AGE = 25

MIN_CALORIES = 1200
MIN_PROTEIN_G = 50
MIN_WATER_ML = 2000
MIN_FIBER_G = 25
SODIUM_MG = 2300


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (``round`` is banker's)."""
    return int(math.floor(value + 0.5))


def _positive(value: float | None, default: float) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _enum_or(enum_cls, value, default):
    if isinstance(value, enum_cls):
        return value
    if value is None or not str(value).strip():
        return default
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        return default


# ──────────────────────────────────────────────────────────────────────
#  Calculator
# ──────────────────────────────────────────────────────────────────────
class NutritionalCalculator:
    """Source-of-truth for daily goals."""

    _ACTIVITY = {
        ActivityLevel.NONE: 1.2,
        ActivityLevel.LIGHT: 1.375,
        ActivityLevel.MODERATE: 1.55,
        ActivityLevel.HIGH: 1.725,
    }

    _GOAL_OFFSET = {
        MainGoal.WEIGHT_LOSS: -500,
        MainGoal.WEIGHT_GAIN: 300,
        MainGoal.SPORTS_PERFORMANCE: 200,
        MainGoal.MAINTENANCE: 0,
    }

    # --------------- public entrypoint --------------------------------
    def daily_goal(self, profile: UserProfile | None) -> NutritionTargets:
        if profile is None:
            Logger.debug("no profile, using default targets")
            return DEFAULT_TARGETS
        return self.targets_for_tdee(self.tdee(profile), profile)

    # --------------- BMR / TDEE ---------------------------------------
    def bmr(self, p: UserProfile) -> float:
        weight = _positive(p.weight_kg, DEFAULT_WEIGHT_KG)
        height = _positive(p.height_cm, DEFAULT_HEIGHT_CM)
        age = _positive(p.age, DEFAULT_AGE)
        base = 10 * weight + 6.25 * height - 5 * age
        return base + (5 if p.is_male else -161)

    def activity(self, p: UserProfile) -> ActivityLevel:
        return _enum_or(ActivityLevel, p.activity_level, ActivityLevel.MODERATE)

    def goal(self, p: UserProfile) -> MainGoal:
        return _enum_or(MainGoal, p.main_goal, MainGoal.MAINTENANCE)

    def tdee(self, p: UserProfile) -> float:
        return self.bmr(p) * self._ACTIVITY[self.activity(p)]

    # --------------- everything downstream of TDEE --------------------
    def targets_for_tdee(self, tdee: float, p: UserProfile) -> NutritionTargets:
        weight = _positive(p.weight_kg, DEFAULT_WEIGHT_KG)
        goal = self.goal(p)
        activity = self.activity(p)

        calories = max(MIN_CALORIES, round_half_up(tdee + self._GOAL_OFFSET[goal]))
        protein_g, carbs_g, fats_g = self._macros(calories, weight, goal, p.dietary_style)

        water_ml = weight * 35 + (500 if activity is ActivityLevel.HIGH else 0)

        return NutritionTargets(
            calories=calories,
            protein_g=protein_g,
            carbs_g=carbs_g,
            fats_g=fats_g,
            fiber_g=max(MIN_FIBER_G, round_half_up(calories / 80)),
            sodium_mg=SODIUM_MG,
            sugar_g=round_half_up(calories * 0.10 / 4),
            water_ml=max(MIN_WATER_ML, round_half_up(water_ml)),
        )

    # --------------- Macros -------------------------------------------
    def _macros(
        self,
        kcal: int,
        weight: float,
        goal: MainGoal,
        dietary_style: str | None,
    ) -> tuple[int, int, int]:
        """Returns (protein_g, carbs_g, fats_g)."""
        if goal is MainGoal.SPORTS_PERFORMANCE:
            prot_per_kg, carbs_pc, fat_pc = 2.0, 0.55, 0.25
        elif "keto" in (dietary_style or "").lower():
            prot_per_kg, carbs_pc, fat_pc = 1.6, 0.05, 0.75
        else:
            prot_per_kg, carbs_pc, fat_pc = 1.6, 0.45, 0.30

        protein_g = max(MIN_PROTEIN_G, round_half_up(weight * prot_per_kg))
        carbs_g = round_half_up(kcal * carbs_pc / 4)
        fats_g = round_half_up(kcal * fat_pc / 9)
        return protein_g, carbs_g, fats_g
