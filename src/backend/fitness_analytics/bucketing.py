"""
Calendar bucketing helpers.

Every helper returns periods oldest first, without duplicates, with ``start``
inclusive and ``end`` exclusive. Datetimes are compared in the caller's
timezone; naive values are assumed to already be in it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidWindowError
from .models import CorporateSubscriptionRecord, Period, SubscriptionRecord

Subscriptionlike = Union[SubscriptionRecord, CorporateSubscriptionRecord]


def coerce_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def normalize_datetime(dt: datetime, tz: ZoneInfo) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def _month_start(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _next_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return dt.replace(year=dt.year + 1, month=1)
    return dt.replace(month=dt.month + 1)


def _previous_month(dt: datetime) -> datetime:
    if dt.month == 1:
        return dt.replace(year=dt.year - 1, month=12)
    return dt.replace(month=dt.month - 1)


def month_period(dt: datetime) -> Period:
    start = _month_start(dt)
    return Period(
        key=start.strftime("%Y-%m"),
        label=start.strftime("%b %Y"),
        start=start,
        end=_next_month(start),
    )


def day_period(dt: datetime) -> Period:
    start = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return Period(
        key=start.strftime("%Y-%m-%d"),
        label=f"{start.strftime('%b')} {start.day}",
        start=start,
        end=start + timedelta(days=1),
    )


def _validate(start: datetime, end: datetime) -> None:
    if end <= start:
        raise InvalidWindowError("end must be greater than start")


def month_periods(start: datetime, end: datetime) -> List[Period]:
    """Every calendar month intersecting ``[start, end)``."""
    _validate(start, end)
    periods: List[Period] = []
    cursor = _month_start(start)
    while cursor < end:
        periods.append(month_period(cursor))
        cursor = _next_month(cursor)
    return periods


def months_back(reference: datetime, count: int) -> List[Period]:
    """The ``count`` calendar months ending with the month of ``reference``."""
    if count < 1:
        return []
    cursor = _month_start(reference)
    for _ in range(count - 1):
        cursor = _previous_month(cursor)
    periods: List[Period] = []
    for _ in range(count):
        periods.append(month_period(cursor))
        cursor = _next_month(cursor)
    return periods


def day_periods(start: datetime, end: datetime) -> List[Period]:
    _validate(start, end)
    periods: List[Period] = []
    cursor = start.replace(hour=0, minute=0, second=0, microsecond=0)
    while cursor < end:
        periods.append(day_period(cursor))
        cursor += timedelta(days=1)
    return periods


def clip_periods(periods: Sequence[Period], start: datetime, end: datetime) -> List[Period]:
    """Trim the outer periods so nothing outside ``[start, end)`` is bucketed."""
    clipped: List[Period] = []
    for period in periods:
        period_start = max(period.start, start)
        period_end = min(period.end, end)
        if period_start < period_end:
            clipped.append(Period(key=period.key, label=period.label, start=period_start, end=period_end))
    return clipped


def period_for(timestamp: datetime, periods: Sequence[Period]) -> Optional[Period]:
    for period in periods:
        if period.start <= timestamp < period.end:
            return period
    return None


def is_active_during(record: Subscriptionlike, month_start: datetime, month_end: datetime) -> bool:
    """
    True when the plan overlaps ``[month_start, month_end)``.

    A missing ``current_period_end`` means no expiry is known and the plan is
    treated as still running.
    """
    if record.created_at >= month_end:
        return False
    return record.current_period_end is None or record.current_period_end >= month_start


def period_keys(periods: Iterable[Period]) -> List[str]:
    return [period.key for period in periods]
