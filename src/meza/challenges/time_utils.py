"""UTC time helpers for challenge deadlines.

All server-side instants are timezone-aware UTC. Database drivers that drop
tzinfo (SQLite) hand back naive values, which ``ensure_utc`` reads as UTC.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from datetime import datetime, time, timezone

Clock = Callable[[], datetime]

_TARGET_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def now_utc() -> datetime:
    """Current instant in UTC, independent of host timezone."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Interpret naive datetimes as UTC; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def seconds_remaining(deadline: datetime, now: datetime) -> int:
    """Whole seconds until the deadline, never negative."""
    delta = (ensure_utc(deadline) - ensure_utc(now)).total_seconds()
    return max(0, math.floor(delta))


def is_expired(deadline: datetime, now: datetime) -> bool:
    """True once ``now`` is strictly past the deadline."""
    return ensure_utc(now) > ensure_utc(deadline)


def parse_target_time(value: str) -> time:
    """Parse a wall-clock target like '07:00'.

    Raises:
        ValueError: If the value is not HH:MM on a 24-hour clock.
    """
    match = _TARGET_TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        msg = f"Expected HH:MM, got {value!r}"
        raise ValueError(msg)
    return time(int(match.group(1)), int(match.group(2)))
