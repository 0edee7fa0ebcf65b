# =============================================================================
# fitgym_core/models/__init__.py
# Domain types for the offline-first data core
# =============================================================================

from .sync import (
    SyncStatus,
    SyncOperation,
    QueueStatus,
    SyncQueueEntry,
    DrainReport,
)

from .workout import (
    RecordType,
    SetLog,
    ExerciseEntry,
    PersonalRecord,
    WorkoutLog,
)

from .activity import (
    CheckInMethod,
    AttendanceRecord,
    NutritionLog,
    StreakState,
)

__all__ = [
    # Sync
    "SyncStatus",
    "SyncOperation",
    "QueueStatus",
    "SyncQueueEntry",
    "DrainReport",
    # Workouts
    "RecordType",
    "SetLog",
    "ExerciseEntry",
    "PersonalRecord",
    "WorkoutLog",
    # Activity
    "CheckInMethod",
    "AttendanceRecord",
    "NutritionLog",
    "StreakState",
]
