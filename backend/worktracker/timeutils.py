"""Date, time-of-day and duration formats used by the time tracker pages.

Dates are ``yyyy-MM-dd`` and times are ``HH:mm``. Durations share the time
pattern but mean elapsed time since the UTC epoch, so ``"02:30"`` is two and a
half hours and not half past two in the morning.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Optional

SYSTEM_DATE_PATTERN = "%Y-%m-%d"

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})")
_DURATION_RE = re.compile(r"^(-)?(\d+):(\d{2})")


def parse_system_date(text: Optional[str]) -> Optional[dt.date]:
    if not text or not text.strip():
        return None
    try:
        return dt.datetime.strptime(text.strip(), SYSTEM_DATE_PATTERN).date()
    except ValueError:
        return None


def format_system_date(value: Optional[dt.date]) -> str:
    if value is None:
        return ""
    return value.strftime(SYSTEM_DATE_PATTERN)


def parse_system_time(date: dt.date, text: Optional[str]) -> Optional[dt.datetime]:
    """Combine an ``HH:mm`` time with ``date``; malformed text gives ``None``."""
    if not text:
        return None
    match = _TIME_RE.match(text.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return dt.datetime.combine(date, dt.time(hour, minute))


def format_system_time(value: Optional[dt.datetime]) -> str:
    if value is None:
        return ""
    return value.strftime("%H:%M")


def parse_duration(text: Optional[str]) -> Optional[int]:
    """Return the elapsed milliseconds of an ``HH:mm`` duration."""
    if not text:
        return None
    match = _DURATION_RE.match(text.strip())
    if not match:
        return None
    elapsed = int(match.group(2)) * HOUR_MS + int(match.group(3)) * MINUTE_MS
    return -elapsed if match.group(1) else elapsed


def format_duration(elapsed: int) -> str:
    # Rendered like a UTC wall clock: hours wrap at 24 and negatives count back from midnight.
    minutes = elapsed // MINUTE_MS
    return f"{(minutes // 60) % 24:02d}:{minutes % 60:02d}"


def format_elapsed(elapsed: int) -> str:
    """``HH:mm`` of a total such as a week's work; hours do not wrap."""
    sign = "-" if elapsed < 0 else ""
    elapsed = abs(elapsed)
    return f"{sign}{elapsed // HOUR_MS:02d}:{elapsed % HOUR_MS // MINUTE_MS:02d}"
