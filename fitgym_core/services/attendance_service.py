# =============================================================================
# fitgym_core/services/attendance_service.py
# Gym Attendance (check-in / check-out) Service
# =============================================================================

from __future__ import annotations
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from fitgym_core.engines import ATTENDANCE_ACTIVITY, StreakEngine
from fitgym_core.errors import RecordNotFoundError, ValidationError
from fitgym_core.models import AttendanceRecord, CheckInMethod, StreakState
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.services.base_service import BaseService
from fitgym_core.utils.clock import Clock


class AttendanceService(BaseService):
    """
    Service for gym visits.

    A visit counts toward stats and streaks once it has a check-out.
    """

    TABLE = "attendance"

    def __init__(
        self,
        store: LocalStore,
        streak_engine: StreakEngine,
        clock: Optional[Clock] = None,
    ):
        super().__init__()
        self._store = store
        self._streaks = streak_engine
        self._clock = clock or store.clock

    def get_active_check_in(self, user_id: str) -> Optional[AttendanceRecord]:
        """Today's open visit, if the user is checked in."""
        rows = self._store.query(
            self.TABLE,
            where="user_id = ? AND date = ? AND check_out_time IS NULL",
            params=[user_id, self._clock.today().isoformat()],
            order_by="check_in_time DESC",
            limit=1,
        )
        return AttendanceRecord.from_row(rows[0]) if rows else None

    def check_in(
        self,
        user_id: str,
        method: CheckInMethod = CheckInMethod.MANUAL,
        location_verified: bool = False,
    ) -> AttendanceRecord:
        """Open a visit for today."""
        with self._store.transaction():
            if self.get_active_check_in(user_id) is not None:
                raise ValidationError(
                    "Already checked in",
                    field="check_out_time",
                    expected="previous visit checked out",
                )
            now = self._clock.now()
            record = AttendanceRecord(
                user_id=user_id,
                date=self._clock.local_day(now),
                check_in_time=now,
                method=CheckInMethod(method),
                location_verified=location_verified,
            )
            row = self._store.put(self.TABLE, record.to_row())

        self.logger.info(f"User {user_id} checked in ({record.method.value})")
        return AttendanceRecord.from_row(row)

    def check_out(self, attendance_id: str) -> AttendanceRecord:
        """Close a visit."""
        with self._store.transaction():
            row = self._store.get(self.TABLE, attendance_id)
            if row is None:
                raise RecordNotFoundError(
                    "Attendance record not found",
                    table=self.TABLE,
                    record_id=attendance_id,
                )
            if row.get("check_out_time"):
                raise ValidationError(
                    "Already checked out",
                    field="check_out_time",
                    actual=row["check_out_time"],
                )
            row = self._store.update(
                self.TABLE,
                attendance_id,
                {"check_out_time": self._clock.now()},
            )

        return AttendanceRecord.from_row(row)

    def get_attendance_history(self, user_id: str, days: int = 30) -> List[AttendanceRecord]:
        since = self._clock.today() - timedelta(days=days)
        rows = self._store.query(
            self.TABLE,
            where="user_id = ? AND date >= ?",
            params=[user_id, since.isoformat()],
            order_by="check_in_time DESC",
        )
        return [AttendanceRecord.from_row(r) for r in rows]

    def get_attendance_streak(self, user_id: str) -> StreakState:
        return self._streaks.compute_streak(user_id, ATTENDANCE_ACTIVITY)

    def get_weekly_stats(self, user_id: str) -> Dict[str, Any]:
        """
        Visit statistics for the attendance screen.

        Returns:
            Dict with this_week and this_month (distinct visit days), total_hours
            (this week) and streak. Weeks start on Sunday.
        """
        today = self._clock.today()
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        week_end = week_start + timedelta(days=6)
        month_start = today.replace(day=1)

        df = self._store.to_dataframe(
            self.TABLE,
            where="user_id = ? AND check_out_time IS NOT NULL",
            params=[user_id],
        )
        streak = self.get_attendance_streak(user_id).current_streak

        if df.empty:
            return {"this_week": 0, "this_month": 0, "total_hours": 0.0, "streak": streak}

        df["day"] = pd.to_datetime(df["date"]).dt.date
        df["hours"] = (
            pd.to_datetime(df["check_out_time"], utc=True)
            - pd.to_datetime(df["check_in_time"], utc=True)
        ).dt.total_seconds() / 3600.0

        week = df[(df["day"] >= week_start) & (df["day"] <= week_end)]
        month = df[df["day"] >= month_start]

        return {
            "this_week": int(week["day"].nunique()),
            "this_month": int(month["day"].nunique()),
            "total_hours": round(float(week["hours"].sum()), 2),
            "streak": streak,
        }
