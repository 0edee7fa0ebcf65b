# =============================================================================
# fitgym_core/models/workout.py
# Workout session types: WorkoutLog, ExerciseEntry, SetLog, PersonalRecord
# =============================================================================
"""
Typed nested document for a workout session.

A WorkoutLog owns its exercises and their sets; they are stored as one JSON
column on the parent row and always read and written together with it.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fitgym_core.errors import ValidationError
from fitgym_core.models.sync import SyncStatus
from fitgym_core.utils.serialization import parse_day, parse_timestamp


class RecordType(str, Enum):
    """Performance metric tracked for personal records."""
    WEIGHT = "weight"
    REPS = "reps"
    DURATION = "duration"
    DISTANCE = "distance"


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class SetLog:
    """One set of an exercise."""
    set_number: int
    reps: int = 0
    weight: Optional[float] = None
    duration: Optional[float] = None   # seconds
    distance: Optional[float] = None   # meters
    completed: bool = True
    rpe: Optional[float] = None

    def metric(self, record_type: RecordType) -> Optional[float]:
        """Value of a metric on this set, None when not recorded."""
        value = getattr(self, RecordType(record_type).value)
        if value is None:
            return None
        return float(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setNumber": self.set_number,
            "reps": self.reps,
            "weight": self.weight,
            "duration": self.duration,
            "distance": self.distance,
            "completed": self.completed,
            "rpe": self.rpe,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SetLog:
        return cls(
            set_number=int(data.get("setNumber", data.get("set_number"))),
            reps=int(data.get("reps") or 0),
            weight=_optional_float(data.get("weight")),
            duration=_optional_float(data.get("duration")),
            distance=_optional_float(data.get("distance")),
            completed=bool(data.get("completed", True)),
            rpe=_optional_float(data.get("rpe")),
        )


@dataclass
class ExerciseEntry:
    """An exercise performed within a session and its ordered sets."""
    exercise_id: str
    exercise_name: str = ""
    sets: List[SetLog] = field(default_factory=list)
    notes: Optional[str] = None

    @property
    def next_set_number(self) -> int:
        return self.sets[-1].set_number + 1 if self.sets else 1

    def append_set(self, set_log: SetLog) -> SetLog:
        """Append a set, keeping set numbers strictly increasing."""
        if self.sets and set_log.set_number <= self.sets[-1].set_number:
            raise ValidationError(
                "Set numbers must increase within an exercise",
                field="set_number",
                expected=f"> {self.sets[-1].set_number}",
                actual=set_log.set_number,
            )
        self.sets.append(set_log)
        return set_log

    def find_set(self, set_number: int) -> Optional[SetLog]:
        for set_log in self.sets:
            if set_log.set_number == set_number:
                return set_log
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exerciseId": self.exercise_id,
            "exerciseName": self.exercise_name,
            "sets": [s.to_dict() for s in self.sets],
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ExerciseEntry:
        return cls(
            exercise_id=str(data.get("exerciseId", data.get("exercise_id"))),
            exercise_name=data.get("exerciseName", data.get("exercise_name")) or "",
            sets=[SetLog.from_dict(s) for s in data.get("sets") or []],
            notes=data.get("notes"),
        )


@dataclass
class PersonalRecord:
    """A new best value for one (user, exercise, metric)."""
    exercise_id: str
    exercise_name: str
    type: RecordType
    value: float
    date: datetime
    previous_value: Optional[float] = None
    user_id: Optional[str] = None
    workout_log_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def improvement(self) -> Optional[float]:
        if self.previous_value is None:
            return None
        return self.value - self.previous_value

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "exercise_id": self.exercise_id,
            "exercise_name": self.exercise_name,
            "type": RecordType(self.type).value,
            "value": self.value,
            "previous_value": self.previous_value,
            "date": self.date.isoformat(),
            "workout_log_id": self.workout_log_id,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> PersonalRecord:
        return cls(
            id=row["id"],
            user_id=row.get("user_id"),
            exercise_id=row["exercise_id"],
            exercise_name=row.get("exercise_name") or "",
            type=RecordType(row["type"]),
            value=float(row["value"]),
            previous_value=_optional_float(row.get("previous_value")),
            date=parse_timestamp(row["date"]),
            workout_log_id=row.get("workout_log_id"),
        )


@dataclass
class WorkoutLog:
    """A workout session. completed_at None means the session is in progress."""
    user_id: str
    date: date
    started_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    plan_id: Optional[str] = None
    name: str = "Quick Workout"
    exercises: List[ExerciseEntry] = field(default_factory=list)
    personal_records: List[PersonalRecord] = field(default_factory=list)
    duration: int = 0   # minutes
    notes: Optional[str] = None
    mood: Optional[int] = None
    energy: Optional[int] = None
    used_rest_timer: bool = False
    completed_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING

    def __post_init__(self):
        for name in ("mood", "energy"):
            rating = getattr(self, name)
            if rating is not None and not 1 <= int(rating) <= 5:
                raise ValidationError(
                    f"{name} rating must be between 1 and 5",
                    field=name,
                    expected="1-5",
                    actual=rating,
                )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def find_exercise(self, exercise_id: str) -> Optional[ExerciseEntry]:
        for entry in self.exercises:
            if entry.exercise_id == exercise_id:
                return entry
        return None

    def completed_sets(self) -> List[SetLog]:
        return [s for entry in self.exercises for s in entry.sets if s.completed]

    def total_volume(self) -> float:
        """Sum of weight x reps over completed sets."""
        return sum(
            (s.weight or 0.0) * s.reps for s in self.completed_sets()
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "date": self.date.isoformat(),
            "started_at": self.started_at.isoformat(),
            "name": self.name,
            "exercises": [e.to_dict() for e in self.exercises],
            "personal_records": [pr.to_row() for pr in self.personal_records],
            "duration": self.duration,
            "notes": self.notes,
            "mood": self.mood,
            "energy": self.energy,
            "used_rest_timer": self.used_rest_timer,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> WorkoutLog:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            plan_id=row.get("plan_id"),
            date=parse_day(row["date"]),
            started_at=parse_timestamp(row.get("started_at") or row["date"]),
            name=row.get("name") or "Workout",
            exercises=[ExerciseEntry.from_dict(e) for e in row.get("exercises") or []],
            personal_records=[
                PersonalRecord.from_row(pr) for pr in row.get("personal_records") or []
            ],
            duration=int(row.get("duration") or 0),
            notes=row.get("notes"),
            mood=row.get("mood"),
            energy=row.get("energy"),
            used_rest_timer=bool(row.get("used_rest_timer")),
            completed_at=parse_timestamp(row.get("completed_at")),
            sync_status=SyncStatus(row.get("sync_status") or SyncStatus.PENDING.value),
        )
