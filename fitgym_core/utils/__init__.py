# Utils package
from .clock import Clock, SystemClock
from .serialization import to_json_safe, parse_timestamp, parse_day

__all__ = [
    "Clock",
    "SystemClock",
    "to_json_safe",
    "parse_timestamp",
    "parse_day",
]
