"""Helpers for HH:MM slot times and the Sunday-first weekday numbering."""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import date, timedelta
from decimal import Decimal

from courtbook.errors import ValidationError

_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def normalize_time(value: str) -> str:
    """Validate a 24-hour HH:MM string and zero-pad it ("9:05" -> "09:05")."""
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValidationError(
            f"Time must be in HH:MM format, got {value!r}", code="INVALID_TIME"
        )
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def minutes_of(value: str) -> int:
    hours, minutes = normalize_time(value).split(":")
    return int(hours) * 60 + int(minutes)


def validate_range(start: str, end: str) -> tuple[str, str]:
    """Return the normalized (start, end) pair, rejecting empty or reversed ranges."""
    start, end = normalize_time(start), normalize_time(end)
    if minutes_of(end) <= minutes_of(start):
        raise ValidationError(
            f"End time must be after start time ({start}-{end})",
            code="REVERSED_TIME_RANGE",
        )
    return start, end


def duration_hours(start: str, end: str) -> Decimal:
    """Fractional hours between two HH:MM values. Not rounded."""
    start, end = validate_range(start, end)
    return Decimal(minutes_of(end) - minutes_of(start)) / Decimal(60)


def overlaps(a_start: str, a_end: str, b_start: str, b_end: str) -> bool:
    """True if [a_start, a_end) and [b_start, b_end) share any minute."""
    return minutes_of(a_start) < minutes_of(b_end) and minutes_of(b_start) < minutes_of(
        a_end
    )


def day_of_week(day: date) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def iter_dates(
    from_date: date, to_date: date, weekdays: set[int] | None = None
) -> Iterator[date]:
    """Yield every date in [from_date, to_date] whose weekday is in `weekdays`."""
    current = from_date
    while current <= to_date:
        if weekdays is None or day_of_week(current) in weekdays:
            yield current
        current += timedelta(days=1)
