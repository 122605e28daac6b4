from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict


class DailyGoalOut(BaseModel):
    id: int
    user_id: str
    date: dt.date
    calories: int
    protein_g: int
    carbs_g: int
    fats_g: int
    fiber_g: int
    sodium_mg: int
    sugar_g: int
    water_ml: int
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class GoalOutcomeOut(BaseModel):
    user_id: str
    outcome: str
    message: str


class BatchRunOut(BaseModel):
    date: dt.date
    status: str
    created: int
    updated: int
    skipped: int
    errors: list[str]
    details: list[GoalOutcomeOut]
