# =============================================================================
# fitgym_core/services/nutrition_service.py
# Daily Nutrition Log Service
# =============================================================================

from __future__ import annotations
from datetime import date
from typing import Optional

from fitgym_core.engines import NUTRITION_ACTIVITY, StreakEngine
from fitgym_core.errors import ValidationError
from fitgym_core.models import NutritionLog, StreakState
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.services.base_service import BaseService


class NutritionService(BaseService):
    """Service for daily nutrition totals (one row per user and day)."""

    TABLE = "nutrition_logs"

    def __init__(self, store: LocalStore, streak_engine: StreakEngine):
        super().__init__()
        self._store = store
        self._streaks = streak_engine

    def get_nutrition_log(self, user_id: str, day: date) -> Optional[NutritionLog]:
        rows = self._store.query(
            self.TABLE,
            where="user_id = ? AND date = ?",
            params=[user_id, day.isoformat()],
            limit=1,
        )
        return NutritionLog.from_row(rows[0]) if rows else None

    def log_day(
        self,
        user_id: str,
        day: date,
        calories: float,
        protein: float,
        carbs: float,
        fat: float,
        water: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> NutritionLog:
        """Create or replace the totals for a day."""
        for name, value in (("calories", calories), ("protein", protein),
                            ("carbs", carbs), ("fat", fat), ("water", water)):
            if value is not None and value < 0:
                raise ValidationError(
                    f"{name} cannot be negative",
                    field=name,
                    expected=">= 0",
                    actual=value,
                )

        with self._store.transaction():
            existing = self.get_nutrition_log(user_id, day)
            log = NutritionLog(
                user_id=user_id,
                date=day,
                total_calories=calories,
                total_protein=protein,
                total_carbs=carbs,
                total_fat=fat,
                water=water,
                notes=notes,
            )
            if existing is not None:
                log.id = existing.id
            row = self._store.put(self.TABLE, log.to_row())

        return NutritionLog.from_row(row)

    def get_nutrition_streak(self, user_id: str) -> StreakState:
        return self._streaks.compute_streak(user_id, NUTRITION_ACTIVITY)
