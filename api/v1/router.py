# api/v1/router.py
from fastapi import APIRouter

from . import goals, maintenance

api_router = APIRouter()

api_router.include_router(goals.router, prefix="/daily-goals", tags=["Daily goals"])
api_router.include_router(maintenance.router, prefix="/database", tags=["Database"])
