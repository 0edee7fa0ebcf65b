# =============================================================================
# fitgym_core/engines/record_engine.py
# Personal Record Detection
# =============================================================================
"""
RecordEngine - detects and persists personal records (PRs).

A value is a PR when it is strictly greater than every prior completed set and
every prior PR of the same (user, exercise, metric). Metrics are independent.
Records are written through the LocalStore, so they are queued for sync like
any other row.
"""

from __future__ import annotations
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

from fitgym_core.errors import error_boundary
from fitgym_core.models import ExerciseEntry, PersonalRecord, RecordType, SetLog
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class RecordEngine:
    """
    Personal record detection over the local workout history.

    Usage:
        engine = RecordEngine(store)
        records = engine.check_set(user_id, "squat", "Back Squat", set_log, log_id)
    """

    def __init__(
        self,
        store: LocalStore,
        clock: Optional[Clock] = None,
        award_first_entry: bool = False,
    ):
        """
        Args:
            store: Local store holding workout_logs and personal_records
            clock: Time source for record dates
            award_first_entry: Whether the first value ever logged counts as a PR
        """
        self._store = store
        self._clock = clock or store.clock or SystemClock()
        self.award_first_entry = award_first_entry
        self._locks: Dict[Tuple[str, str], threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, user_id: str, exercise_id: str) -> threading.RLock:
        """
        Re-entrant lock serializing record checks of one (user, exercise).

        Take it before opening a store transaction, never inside one.
        """
        key = (user_id, exercise_id)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    def _history_values(
        self,
        user_id: str,
        exercise_id: str,
        record_type: RecordType,
    ) -> List[float]:
        """Prior values of a metric from completed sets and stored PRs."""
        values: List[float] = []

        for row in self._store.query("workout_logs", where="user_id = ?", params=[user_id]):
            for raw in row.get("exercises") or []:
                try:
                    entry = ExerciseEntry.from_dict(raw)
                except (TypeError, ValueError, KeyError, AttributeError) as e:
                    logger.debug(f"Skipping malformed exercise in workout {row.get('id')}: {e}")
                    continue
                if entry.exercise_id != exercise_id:
                    continue
                for set_log in entry.sets:
                    value = set_log.metric(record_type) if set_log.completed else None
                    if value is not None:
                        values.append(value)

        for row in self._store.query(
            "personal_records",
            where="user_id = ? AND exercise_id = ? AND type = ?",
            params=[user_id, exercise_id, RecordType(record_type).value],
        ):
            try:
                values.append(float(row["value"]))
            except (TypeError, ValueError):
                logger.debug(f"Skipping malformed personal record {row.get('id')}")

        return values

    @error_boundary(default_return=None)
    def check_and_record(
        self,
        user_id: str,
        exercise_id: str,
        type: RecordType,
        value: float,
        date: Optional[datetime] = None,
        exercise_name: str = "",
        workout_log_id: Optional[str] = None,
    ) -> Optional[PersonalRecord]:
        """
        Persist and return a PersonalRecord if `value` beats the history.

        Must be called before the set carrying `value` is written, so the
        scan only sees prior sets. Failures are logged and yield None.
        """
        record_type = RecordType(type)
        if value is None or float(value) <= 0:
            return None
        value = float(value)

        with self.lock_for(user_id, exercise_id):
            with self._store.transaction():
                history = self._history_values(user_id, exercise_id, record_type)
                previous = max(history) if history else None

                if previous is None and not self.award_first_entry:
                    return None
                if previous is not None and value <= previous:
                    return None

                record = PersonalRecord(
                    exercise_id=exercise_id,
                    exercise_name=exercise_name,
                    type=record_type,
                    value=value,
                    date=date or self._clock.now(),
                    previous_value=previous,
                    user_id=user_id,
                    workout_log_id=workout_log_id,
                )
                self._store.put("personal_records", record.to_row())

        logger.info(
            f"New {record_type.value} PR for {user_id} on {exercise_id}: "
            f"{value:g} (previous {previous if previous is not None else '-'})"
        )
        return record

    def check_set(
        self,
        user_id: str,
        exercise_id: str,
        exercise_name: str,
        set_log: SetLog,
        workout_log_id: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> List[PersonalRecord]:
        """Evaluate every metric recorded on a completed set."""
        if not set_log.completed:
            return []

        records = []
        with self.lock_for(user_id, exercise_id):
            for record_type in RecordType:
                value = set_log.metric(record_type)
                if value is None:
                    continue
                record = self.check_and_record(
                    user_id,
                    exercise_id,
                    record_type,
                    value,
                    date=date,
                    exercise_name=exercise_name,
                    workout_log_id=workout_log_id,
                )
                if record is not None:
                    records.append(record)
        return records

    def get_personal_records(
        self,
        user_id: str,
        exercise_id: Optional[str] = None,
    ) -> List[PersonalRecord]:
        """Stored PRs of a user, newest first."""
        where = "user_id = ?"
        params = [user_id]
        if exercise_id:
            where += " AND exercise_id = ?"
            params.append(exercise_id)

        records = []
        for row in self._store.query("personal_records", where=where, params=params, order_by="date DESC"):
            try:
                records.append(PersonalRecord.from_row(row))
            except (TypeError, ValueError, KeyError) as e:
                logger.debug(f"Skipping malformed personal record {row.get('id')}: {e}")
        return records

    def best_values(self, user_id: str, exercise_id: str) -> Dict[RecordType, float]:
        """Current best per metric for an exercise (metrics with no data omitted)."""
        best = {}
        for record_type in RecordType:
            history = self._history_values(user_id, exercise_id, record_type)
            if history:
                best[record_type] = max(history)
        return best
