# =============================================================================
# fitgym_core/models/activity.py
# Attendance, nutrition and streak types
# =============================================================================

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from fitgym_core.models.sync import SyncStatus
from fitgym_core.utils.serialization import parse_day, parse_timestamp


class CheckInMethod(str, Enum):
    """How a gym check-in was captured."""
    MANUAL = "manual"
    NFC = "nfc"
    QR = "qr"


@dataclass
class AttendanceRecord:
    """A gym visit. Only visits with a check-out count toward streaks."""
    user_id: str
    date: date
    check_in_time: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    check_out_time: Optional[datetime] = None
    method: CheckInMethod = CheckInMethod.MANUAL
    location_verified: bool = False
    sync_status: SyncStatus = SyncStatus.PENDING

    @property
    def hours(self) -> float:
        if self.check_out_time is None:
            return 0.0
        return (self.check_out_time - self.check_in_time).total_seconds() / 3600.0

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "check_in_time": self.check_in_time.isoformat(),
            "check_out_time": self.check_out_time.isoformat() if self.check_out_time else None,
            "method": CheckInMethod(self.method).value,
            "location_verified": self.location_verified,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> AttendanceRecord:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            date=parse_day(row["date"]),
            check_in_time=parse_timestamp(row["check_in_time"]),
            check_out_time=parse_timestamp(row.get("check_out_time")),
            method=CheckInMethod(row.get("method") or CheckInMethod.MANUAL.value),
            location_verified=bool(row.get("location_verified")),
            sync_status=SyncStatus(row.get("sync_status") or SyncStatus.PENDING.value),
        )


@dataclass
class NutritionLog:
    """Daily nutrition totals for one user."""
    user_id: str
    date: date
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    total_calories: float = 0.0
    total_protein: float = 0.0
    total_carbs: float = 0.0
    total_fat: float = 0.0
    water: Optional[float] = None   # liters
    notes: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.PENDING

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "total_calories": self.total_calories,
            "total_protein": self.total_protein,
            "total_carbs": self.total_carbs,
            "total_fat": self.total_fat,
            "water": self.water,
            "notes": self.notes,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> NutritionLog:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            date=parse_day(row["date"]),
            total_calories=float(row.get("total_calories") or 0),
            total_protein=float(row.get("total_protein") or 0),
            total_carbs=float(row.get("total_carbs") or 0),
            total_fat=float(row.get("total_fat") or 0),
            water=row.get("water"),
            notes=row.get("notes"),
            sync_status=SyncStatus(row.get("sync_status") or SyncStatus.PENDING.value),
        )


@dataclass(frozen=True)
class StreakState:
    """Derived streak values; recomputed from history, never authoritative."""
    current_streak: int = 0
    last_activity_date: Optional[date] = None
    longest_streak: int = 0
