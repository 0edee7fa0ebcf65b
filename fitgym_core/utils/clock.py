# =============================================================================
# fitgym_core/utils/clock.py
# Injectable Time Source
# =============================================================================
"""
Clock - the system clock plus the user's local calendar-day boundary.

Everything that stamps rows or groups activity by day takes a Clock so tests
can pin "now" and the timezone.
"""

from __future__ import annotations
from datetime import date, datetime, timezone, tzinfo
from typing import Optional


class Clock:
    """Base time source. Subclasses provide now()."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        """Current calendar day in the user's timezone."""
        return self.now().date()

    def local_day(self, moment: datetime) -> date:
        """
        Calendar day of a timestamp in the user's timezone.

        Naive datetimes are taken to already be local wall-clock time.
        """
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(self.tz).date()


class SystemClock(Clock):
    """Wall clock in the configured timezone."""

    def now(self) -> datetime:
        return datetime.now(self.tz)
