# =============================================================================
# fitgym_core/services/workout_service.py
# Workout Session Service
# =============================================================================
"""
WorkoutService - workout sessions, sets and personal records.

Every write goes to the LocalStore first (and so to the sync queue); the UI
never waits on the network. Personal records are evaluated synchronously
when a completed set is logged, inside the same local transaction.
"""

from __future__ import annotations
import dataclasses
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from fitgym_core.engines import RecordEngine, StreakEngine, WORKOUT_ACTIVITY
from fitgym_core.errors import RecordNotFoundError, ValidationError
from fitgym_core.models import ExerciseEntry, PersonalRecord, SetLog, StreakState, WorkoutLog
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.services.base_service import BaseService
from fitgym_core.utils.clock import Clock


@dataclass
class SetResult:
    """Outcome of logging or completing a set."""
    set_log: SetLog
    workout: WorkoutLog
    personal_records: List[PersonalRecord] = field(default_factory=list)

    @property
    def is_personal_record(self) -> bool:
        return bool(self.personal_records)


class WorkoutService(BaseService):
    """
    Service for workout sessions.

    Usage:
        service = WorkoutService(store, record_engine, streak_engine)
        workout = service.start_workout(user_id)
        result = service.log_set(workout.id, "squat", SetLog(1, reps=5, weight=80))
        service.complete_workout(workout.id, mood=4)
    """

    TABLE = "workout_logs"

    def __init__(
        self,
        store: LocalStore,
        record_engine: RecordEngine,
        streak_engine: StreakEngine,
        clock: Optional[Clock] = None,
    ):
        super().__init__()
        self._store = store
        self._records = record_engine
        self._streaks = streak_engine
        self._clock = clock or store.clock

    def _load(self, log_id: str) -> WorkoutLog:
        row = self._store.get(self.TABLE, log_id)
        if row is None:
            raise RecordNotFoundError(
                "Workout not found",
                table=self.TABLE,
                record_id=log_id,
            )
        return WorkoutLog.from_row(row)

    def _load_active(self, log_id: str) -> WorkoutLog:
        workout = self._load(log_id)
        if workout.is_completed:
            raise ValidationError(
                "Workout is already completed",
                field="completed_at",
                actual=workout.completed_at.isoformat(),
            )
        return workout

    def _record_lock(self, log_id: str, exercise_id: str):
        """Record lock of the session's (user, exercise), taken before any transaction."""
        return self._records.lock_for(self._load(log_id).user_id, exercise_id)

    def _save(self, workout: WorkoutLog) -> WorkoutLog:
        return WorkoutLog.from_row(self._store.put(self.TABLE, workout.to_row()))

    def start_workout(
        self,
        user_id: str,
        plan_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> WorkoutLog:
        """Create an in-progress session for today."""
        with self.log_operation("Starting workout"):
            now = self._clock.now()
            workout = WorkoutLog(
                user_id=user_id,
                date=self._clock.local_day(now),
                started_at=now,
                plan_id=plan_id,
                name=name or "Quick Workout",
            )
            return self._save(workout)

    def add_exercise(self, log_id: str, exercise_id: str, exercise_name: str = "") -> WorkoutLog:
        """Add an exercise to a session (no-op if it is already there)."""
        with self._store.transaction():
            workout = self._load_active(log_id)
            if workout.find_exercise(exercise_id) is not None:
                return workout
            workout.exercises.append(ExerciseEntry(exercise_id, exercise_name or exercise_id))
            return self._save(workout)

    def log_set(
        self,
        log_id: str,
        exercise_id: str,
        set_log: SetLog,
        exercise_name: Optional[str] = None,
    ) -> SetResult:
        """
        Append a set to an exercise and evaluate personal records.

        The set, any records it sets and their queue entries are written as
        one unit. The exercise is added to the session if missing.
        """
        with self._record_lock(log_id, exercise_id), self._store.transaction():
            workout = self._load_active(log_id)
            entry = workout.find_exercise(exercise_id)
            if entry is None:
                entry = ExerciseEntry(exercise_id, exercise_name or exercise_id)
                workout.exercises.append(entry)
            entry.append_set(set_log)

            # Checked before the set is stored, so history excludes it
            records = self._records.check_set(
                workout.user_id,
                exercise_id,
                entry.exercise_name,
                set_log,
                workout_log_id=workout.id,
            )
            workout.personal_records.extend(records)
            saved = self._save(workout)

        if records:
            self.logger.info(f"Set {set_log.set_number} of {exercise_id} set {len(records)} PR(s)")
        return SetResult(set_log=set_log, workout=saved, personal_records=records)

    def complete_set(self, log_id: str, exercise_id: str, set_number: int) -> SetResult:
        """Mark a previously logged set completed and evaluate personal records."""
        with self._record_lock(log_id, exercise_id), self._store.transaction():
            workout = self._load_active(log_id)
            entry = workout.find_exercise(exercise_id)
            set_log = entry.find_set(set_number) if entry else None
            if set_log is None:
                raise RecordNotFoundError(
                    f"Set {set_number} of {exercise_id} not found",
                    table=self.TABLE,
                    record_id=log_id,
                )
            if set_log.completed:
                return SetResult(set_log=set_log, workout=workout)

            set_log.completed = True
            records = self._records.check_set(
                workout.user_id,
                exercise_id,
                entry.exercise_name,
                set_log,
                workout_log_id=workout.id,
            )
            workout.personal_records.extend(records)
            saved = self._save(workout)

        return SetResult(set_log=set_log, workout=saved, personal_records=records)

    def complete_workout(
        self,
        log_id: str,
        duration: Optional[int] = None,
        notes: Optional[str] = None,
        mood: Optional[int] = None,
        energy: Optional[int] = None,
        used_rest_timer: Optional[bool] = None,
    ) -> WorkoutLog:
        """
        Finish a session.

        Args:
            duration: Minutes; defaults to the time since the session started
        """
        with self.log_operation("Completing workout"):
            with self._store.transaction():
                workout = self._load_active(log_id)
                now = self._clock.now()
                if duration is None:
                    elapsed = now - workout.started_at
                    duration = max(0, int(elapsed / timedelta(minutes=1)))

                changes = {"completed_at": now, "duration": duration}
                if notes is not None:
                    changes["notes"] = notes
                if mood is not None:
                    changes["mood"] = mood
                if energy is not None:
                    changes["energy"] = energy
                if used_rest_timer is not None:
                    changes["used_rest_timer"] = used_rest_timer

                # replace() re-runs rating validation
                return self._save(dataclasses.replace(workout, **changes))

    def get_workout(self, log_id: str) -> Optional[WorkoutLog]:
        row = self._store.get(self.TABLE, log_id)
        return WorkoutLog.from_row(row) if row else None

    def get_active_workout(self, user_id: str) -> Optional[WorkoutLog]:
        """The most recent in-progress session, if any."""
        rows = self._store.query(
            self.TABLE,
            where="user_id = ? AND completed_at IS NULL",
            params=[user_id],
            order_by="started_at DESC",
            limit=1,
        )
        return WorkoutLog.from_row(rows[0]) if rows else None

    def get_workout_history(self, user_id: str, days: Optional[int] = None) -> List[WorkoutLog]:
        """Sessions of a user, newest first, optionally limited to the last `days` days."""
        where = "user_id = ?"
        params = [user_id]
        if days is not None:
            since = self._clock.today() - timedelta(days=days)
            where += " AND date >= ?"
            params.append(since.isoformat())

        rows = self._store.query(self.TABLE, where=where, params=params, order_by="started_at DESC")
        return [WorkoutLog.from_row(r) for r in rows]

    def get_personal_records(
        self,
        user_id: str,
        exercise_id: Optional[str] = None,
    ) -> List[PersonalRecord]:
        return self._records.get_personal_records(user_id, exercise_id)

    def get_workout_streak(self, user_id: str) -> StreakState:
        return self._streaks.compute_streak(user_id, WORKOUT_ACTIVITY)

    def delete_workout(self, log_id: str) -> bool:
        """Delete a session. Its personal records are kept as history."""
        return self._store.delete(self.TABLE, log_id)
