"""Re-export individual schema modules for easy imports."""

from .common import ApiResponse, failure, ok
from .goals import BatchRunOut, DailyGoalOut, GoalOutcomeOut
from .maintenance import CleanupOut, HealthOut

__all__ = [
    "ApiResponse",
    "ok",
    "failure",
    "DailyGoalOut",
    "GoalOutcomeOut",
    "BatchRunOut",
    "HealthOut",
    "CleanupOut",
]
