from __future__ import annotations

import math
import re
from typing import Union

_SECOND = 1000
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR
_WEEK = 7 * _DAY
_YEAR = int(365.25 * _DAY)

_UNITS = {
    "ms": 1,
    "msec": 1,
    "msecs": 1,
    "millisecond": 1,
    "milliseconds": 1,
    "s": _SECOND,
    "sec": _SECOND,
    "secs": _SECOND,
    "second": _SECOND,
    "seconds": _SECOND,
    "m": _MINUTE,
    "min": _MINUTE,
    "mins": _MINUTE,
    "minute": _MINUTE,
    "minutes": _MINUTE,
    "h": _HOUR,
    "hr": _HOUR,
    "hrs": _HOUR,
    "hour": _HOUR,
    "hours": _HOUR,
    "d": _DAY,
    "day": _DAY,
    "days": _DAY,
    "w": _WEEK,
    "week": _WEEK,
    "weeks": _WEEK,
    "y": _YEAR,
    "yr": _YEAR,
    "yrs": _YEAR,
    "year": _YEAR,
    "years": _YEAR,
}

_DURATION_RE = re.compile(r"^\s*(-?(?:\d+)?\.?\d+)\s*([a-z]*)\s*$", re.IGNORECASE)


def parse_duration(value: Union[str, int, float]) -> int:
    """Convert a duration expression to whole milliseconds.

    Accepts ``"20m"``, ``"1.5h"``, ``"2 days"``, ``"500"`` (bare numbers are
    milliseconds) or a number, which is returned as-is.

    Raises:
        ValueError: If the expression is empty, not finite or uses an unknown unit.
    """
    if isinstance(value, bool):
        raise ValueError("duration must be a string or number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"duration must be finite, got {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str) or len(value) > 100:
        raise ValueError(f"invalid duration: {value!r}")

    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    multiplier = _UNITS.get(unit.lower() or "ms")
    if multiplier is None:
        raise ValueError(f"unknown duration unit {unit!r} in {value!r}")
    return int(round(float(amount) * multiplier))


__all__ = ["parse_duration"]
