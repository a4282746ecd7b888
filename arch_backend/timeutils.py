"""
Calendar helpers that work in an arch's configured timezone.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time as dt_time, timedelta

import pytz

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> tuple[int, int]:
    match = _HHMM.match(value or "")
    if not match:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return int(match.group(1)), int(match.group(2))


def is_valid_timezone(name: str) -> bool:
    try:
        pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        return False
    return True


def local_datetime(timezone_name: str, now: float) -> datetime:
    return datetime.fromtimestamp(now, tz=pytz.utc).astimezone(
        pytz.timezone(timezone_name)
    )


def local_date(timezone_name: str, now: float) -> str:
    """ISO calendar date of the instant in the given timezone."""
    return local_datetime(timezone_name, now).date().isoformat()


def days_before(iso_date: str, days: int) -> str:
    return (date.fromisoformat(iso_date) - timedelta(days=days)).isoformat()


def at_local_time(timezone_name: str, iso_date: str, hhmm: str) -> float:
    """Epoch seconds of HH:MM on the given local calendar date."""
    hour, minute = parse_hhmm(hhmm)
    tz = pytz.timezone(timezone_name)
    naive = datetime.combine(date.fromisoformat(iso_date), dt_time(hour, minute))
    return tz.localize(naive).timestamp()


def has_reached(timezone_name: str, now: float, hhmm: str) -> bool:
    """True once the local wall clock is at or past HH:MM today."""
    hour, minute = parse_hhmm(hhmm)
    current = local_datetime(timezone_name, now)
    return (current.hour, current.minute) >= (hour, minute)


def to_iso(timestamp: float | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=pytz.utc).isoformat()


def from_datetime(value: datetime) -> float:
    """Epoch seconds; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = pytz.utc.localize(value)
    return value.timestamp()
