"""
Period Window Service - calendar month keys

A period key is "YYYY-MM" of the calendar month in the reference time zone.
Keys are zero-padded, so string comparison orders them chronologically.

Pure functions: no database, no logging side effects.
"""

import re
from datetime import datetime, timezone, tzinfo
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.settings import DEFAULT_REFERENCE_TIMEZONE
from app.services.periods.exceptions import InvalidPeriodError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")

TimeZoneLike = Union[str, tzinfo, None]


def resolve_timezone(tz: TimeZoneLike = None) -> tzinfo:
    """Return a tzinfo for a zone name, a tzinfo, or None (reference zone)."""
    if tz is None:
        tz = DEFAULT_REFERENCE_TIMEZONE
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone: {tz}") from e


def current_period(now: Optional[datetime] = None, tz: TimeZoneLike = None) -> str:
    """
    Period key of `now` projected into the reference zone.

    Args:
        now: Instant to classify (defaults to datetime.now(timezone.utc)).
             Naive datetimes are treated as UTC.
        tz: Zone name or tzinfo (defaults to the reference zone)

    Returns:
        "YYYY-MM"
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local = now.astimezone(resolve_timezone(tz))
    return f"{local.year:04d}-{local.month:02d}"


def period_of(joined_at: datetime, tz: TimeZoneLike = None) -> str:
    """Period key a join belongs to."""
    return current_period(joined_at, tz)


def parse_period(key: str) -> Tuple[int, int]:
    """
    Validate a period key.

    Returns:
        (year, month)

    Raises:
        InvalidPeriodError: key is not "YYYY-MM" with month in 1..12
    """
    match = _PERIOD_RE.match((key or "").strip())
    if not match:
        raise InvalidPeriodError(f"Invalid period key: {key!r} (expected YYYY-MM)")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1:
        raise InvalidPeriodError(f"Invalid period key: {key!r} (month must be 01-12)")
    return year, month


def previous_period(key: str) -> str:
    """Month before `key`, borrowing from the year in January."""
    year, month = parse_period(key)
    if month == 1:
        year, month = year - 1, 12
    else:
        month -= 1
    if year < 1:
        raise InvalidPeriodError(f"No period before {key!r}")
    return f"{year:04d}-{month:02d}"
