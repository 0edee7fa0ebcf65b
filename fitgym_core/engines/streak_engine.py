# =============================================================================
# fitgym_core/engines/streak_engine.py
# Consecutive-Day Activity Streaks
# =============================================================================
"""
StreakEngine - current and longest runs of consecutive active days.

Streaks are derived from stored history on every call and never persisted.
Days are calendar days in the user's timezone (from the injected Clock).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Set
import logging

import pandas as pd

from fitgym_core.errors import error_boundary
from fitgym_core.models import StreakState
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.utils.clock import Clock
from fitgym_core.utils.serialization import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityKind:
    """
    Which rows count as activity.

    Attributes:
        table: Local table to scan (must have a user_id column)
        timestamp_column: Column giving the activity's day or time
        predicate: Row filter; rows failing it are not activity
        name: Label used in logs
    """
    table: str
    timestamp_column: str
    predicate: Optional[Callable[[Dict], bool]] = None
    name: str = ""


WORKOUT_ACTIVITY = ActivityKind(
    table="workout_logs",
    timestamp_column="completed_at",
    predicate=lambda row: row.get("completed_at") is not None,
    name="workout",
)

NUTRITION_ACTIVITY = ActivityKind(
    table="nutrition_logs",
    timestamp_column="date",
    predicate=lambda row: (row.get("total_calories") or 0) > 0 or bool(row.get("notes")),
    name="nutrition",
)

# Only visits with a check-out count
ATTENDANCE_ACTIVITY = ActivityKind(
    table="attendance",
    timestamp_column="date",
    predicate=lambda row: row.get("check_out_time") is not None,
    name="attendance",
)


def longest_run(days: Set[date]) -> int:
    """Length of the longest run of consecutive days."""
    if not days:
        return 0
    ordinals = pd.Series(sorted(d.toordinal() for d in days))
    # A new run starts wherever the gap to the previous day is not exactly one
    run_id = (ordinals.diff() != 1).cumsum()
    return int(ordinals.groupby(run_id).size().max())


class StreakEngine:
    """
    Streak computation over the local store.

    Usage:
        engine = StreakEngine(store, clock)
        state = engine.compute_streak(user_id, WORKOUT_ACTIVITY)
    """

    def __init__(self, store: LocalStore, clock: Optional[Clock] = None):
        self._store = store
        self._clock = clock or store.clock

    def _to_local_day(self, value) -> Optional[date]:
        """Local calendar day of a stored date or timestamp."""
        if value is None or value == "":
            return None
        if isinstance(value, str) and len(value) == 10:
            # Plain YYYY-MM-DD is already a local day
            return date.fromisoformat(value)
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        return self._clock.local_day(parse_timestamp(value))

    def activity_days(self, user_id: str, activity: ActivityKind) -> Set[date]:
        """Distinct local days with at least one qualifying row."""
        days: Set[date] = set()
        rows = self._store.query(
            activity.table,
            where="user_id = ?",
            params=[user_id],
            predicate=activity.predicate,
        )
        for row in rows:
            try:
                day = self._to_local_day(row.get(activity.timestamp_column))
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping {activity.table} row {row.get('id')}: {e}")
                continue
            if day is not None:
                days.add(day)
        return days

    @error_boundary(default_return=StreakState)
    def compute_streak(self, user_id: str, activity: ActivityKind) -> StreakState:
        """
        Current and longest streak for an activity.

        The current streak counts back from today, or from yesterday when
        nothing is logged today yet, and stops at the first missing day.
        """
        today = self._clock.today()
        days = {d for d in self.activity_days(user_id, activity) if d <= today}
        if not days:
            return StreakState()

        current = 0
        cursor = today if today in days else today - timedelta(days=1)
        while cursor in days:
            current += 1
            cursor -= timedelta(days=1)

        return StreakState(
            current_streak=current,
            last_activity_date=max(days),
            longest_streak=longest_run(days),
        )
