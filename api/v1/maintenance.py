# api/v1/maintenance.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from api.v1.deps import get_services, require_admin
from api.v1.schemas import ApiResponse, CleanupOut, HealthOut, ok
from core.errors import HealthCritical
from services.auth import current_user_id
from services.container import Services

router = APIRouter()


@router.get("/health", response_model=ApiResponse)
async def database_health(
    _user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse:
    report = await services.monitor.check_health()
    data = HealthOut(**report.as_dict()).model_dump()
    return ok(data, f"Database status: {report.status}")


# ───────────────────────── admin only ───────────────────────
@router.post("/cleanup", response_model=ApiResponse)
async def cleanup(
    _admin: str = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ApiResponse:
    result = await services.monitor.cleanup()
    data = CleanupOut(**result.summary()).model_dump()
    return ok(data, f"Cleanup completed: {result.deleted_records} records deleted")


@router.post("/optimize", response_model=ApiResponse)
async def optimize(
    _admin: str = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ApiResponse:
    data = await services.monitor.optimize()
    return ok(data, "Database optimization completed successfully")


@router.post("/emergency-recovery", response_model=ApiResponse)
async def emergency_recovery(
    _admin: str = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ApiResponse:
    if not await services.monitor.emergency_recovery():
        raise HealthCritical("Emergency recovery failed")
    return ok({"recovered": True}, "Emergency recovery completed successfully")


@router.get("/cron-status", response_model=ApiResponse)
async def cron_status(
    _user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse:
    return ok(services.scheduler.status())
