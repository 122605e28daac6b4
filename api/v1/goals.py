# api/v1/goals.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.v1.deps import get_services, known_user, require_admin
from api.v1.schemas import ApiResponse, BatchRunOut, DailyGoalOut, GoalOutcomeOut, ok
from core.batch import BatchRunResult
from core.errors import JobOverlap
from services.container import DAILY_GOALS, Services

router = APIRouter()


def _goal(row) -> dict:
    return DailyGoalOut.model_validate(row).model_dump(mode="json")


def _batch(result: BatchRunResult) -> dict:
    return BatchRunOut(
        date=result.day,
        status=result.status,
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        errors=result.errors,
        details=[
            GoalOutcomeOut(user_id=d.user_id, outcome=d.outcome.value, message=d.message)
            for d in result.details
        ],
    ).model_dump(mode="json")


# ───────────────────────── today ───────────────────────────
@router.get("", response_model=ApiResponse)
async def todays_goal(
    user_id: str = Depends(known_user),
    services: Services = Depends(get_services),
) -> ApiResponse:
    row = await services.store.get_or_create(user_id, services.population.latest_profile)
    return ok(_goal(row))


# ───────────────────────── regenerate one ───────────────────
@router.post("/generate", response_model=ApiResponse)
async def generate_mine(
    user_id: str = Depends(known_user),
    services: Services = Depends(get_services),
) -> ApiResponse:
    row = await services.orchestrator.run_for_user(user_id, services.population)
    return ok(_goal(row), "Daily goals generated successfully")


# ───────────────────────── regenerate all ───────────────────
@router.post("/generate-all", response_model=ApiResponse)
async def generate_all(
    _admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ApiResponse:
    run = await services.scheduler.run_job(DAILY_GOALS, respect_spacing=False)
    if run.status == "skipped":
        raise JobOverlap(run.reason or f"{DAILY_GOALS} is already running")
    if run.exception is not None:
        raise run.exception

    result: BatchRunResult = run.result
    return ok(
        _batch(result),
        f"Generated goals: {result.created} created, {result.updated} updated, "
        f"{result.skipped} skipped, {len(result.errors)} errors",
    )


# ───────────────────────── history ─────────────────────────
@router.get("/history", response_model=ApiResponse)
async def history(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(known_user),
    services: Services = Depends(get_services),
) -> ApiResponse:
    rows = await services.store.history(user_id, days)
    return ok([_goal(r) for r in rows], f"Retrieved {len(rows)} historical daily goals")
