# =============================================================================
# fitgym_core/engines/__init__.py
# Derived metrics: personal records and streaks
# =============================================================================

from .record_engine import RecordEngine
from .streak_engine import (
    ActivityKind,
    StreakEngine,
    WORKOUT_ACTIVITY,
    NUTRITION_ACTIVITY,
    ATTENDANCE_ACTIVITY,
    longest_run,
)

__all__ = [
    "RecordEngine",
    "StreakEngine",
    "ActivityKind",
    "WORKOUT_ACTIVITY",
    "NUTRITION_ACTIVITY",
    "ATTENDANCE_ACTIVITY",
    "longest_run",
]
