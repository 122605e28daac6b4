# api/v1/deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from core.errors import ProfileMissing
from services.auth import current_user_id
from services.container import Services

ADMIN_SUBSCRIPTION = "GOLD"


def get_services(request: Request) -> Services:
    return request.app.state.services


async def require_admin(
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> str:
    user = await services.population.get_user(user_id)
    if user is None or user.subscription_type != ADMIN_SUBSCRIPTION:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Insufficient permissions for database maintenance")
    return user_id


async def known_user(
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> str:
    if await services.population.get_user(user_id) is None:
        raise ProfileMissing(f"no user record for {user_id}")
    return user_id
