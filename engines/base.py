"""Shared numeric and calendar helpers for the progression engines."""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DateLike = Union[date, datetime, str]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up.

    Python's ``round`` uses banker's rounding, which would turn a 62.5%
    scenario into 62 instead of 63.
    """

    return int(math.floor(value + 0.5))


def to_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def days_between(earlier: DateLike, later: DateLike) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative if reversed)."""

    start = to_date(earlier)
    end = to_date(later)
    if start is None or end is None:
        raise ValueError("days_between requires two dates")
    return (end - start).days


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}") from None


def local_today(tz_name: Optional[str] = None, *, now: Optional[datetime] = None) -> date:
    """Calendar date at organization-local midnight boundaries.

    ``now`` must be timezone-aware when provided; naive values are treated
    as UTC.
    """

    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(resolve_zone(tz_name)).date()
