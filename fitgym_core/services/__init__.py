# =============================================================================
# fitgym_core/services/__init__.py
# Service Layer for FitGym Core
# =============================================================================
"""
Service layer: the operations the app's screens call.

Usage Example:
-------------
    from fitgym_core.offline import get_data_service
    from fitgym_core.models import SetLog

    service = get_data_service()
    workout = service.workouts.start_workout(user_id)
    result = service.workouts.log_set(workout.id, "squat", SetLog(1, reps=5, weight=80))
    if result.is_personal_record:
        print("New PR!")

    service.attendance.check_in(user_id)
    service.nutrition.log_day(user_id, today, 2200, 150, 250, 70)
"""

from .base_service import BaseService, ServiceResult
from .workout_service import WorkoutService, SetResult
from .attendance_service import AttendanceService
from .nutrition_service import NutritionService
from .sync_service import SyncService

__all__ = [
    "BaseService",
    "ServiceResult",
    "WorkoutService",
    "SetResult",
    "AttendanceService",
    "NutritionService",
    "SyncService",
]
