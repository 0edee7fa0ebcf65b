# =============================================================================
# fitgym_core/utils/serialization.py
# JSON-safe conversion and timestamp parsing
# =============================================================================

from __future__ import annotations
import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

import numpy as np
import pandas as pd


def to_json_safe(value: Any) -> Any:
    """
    Convert a value into something json.dumps accepts.

    Handles datetimes, enums, numpy scalars and pandas missing values, and
    recurses into lists and dicts.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        value = float(value)
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through). Returns None if empty."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def parse_day(value: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD day (or a date/datetime). Returns None if empty."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
