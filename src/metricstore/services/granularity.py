"""Canonical bucket widths and bucket alignment for each granularity."""

import calendar
from datetime import datetime, timedelta, timezone
from enum import Enum


class Granularity(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


FIXED_WIDTHS: dict[Granularity, timedelta] = {
    Granularity.MINUTE: timedelta(minutes=1),
    Granularity.HOUR: timedelta(hours=1),
    Granularity.DAY: timedelta(days=1),
    Granularity.WEEK: timedelta(weeks=1),
}

CALENDAR_MONTHS: dict[Granularity, int] = {
    Granularity.MONTH: 1,
    Granularity.QUARTER: 3,
    Granularity.YEAR: 12,
}


def as_utc(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC datetime. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def expected_period_end(granularity: Granularity | str, period_start: datetime) -> datetime:
    """Return the end of a ``granularity``-wide period starting at ``period_start``."""
    granularity = Granularity(granularity)
    start = as_utc(period_start)
    if granularity in FIXED_WIDTHS:
        return start + FIXED_WIDTHS[granularity]
    return add_months(start, CALENDAR_MONTHS[granularity])


def matches_granularity(
    granularity: Granularity | str, period_start: datetime, period_end: datetime
) -> bool:
    """True when ``[period_start, period_end)`` is exactly one granularity wide."""
    return expected_period_end(granularity, period_start) == as_utc(period_end)


def bucket_for(granularity: Granularity | str, moment: datetime) -> tuple[datetime, datetime]:
    """Return the aligned UTC bucket ``[start, end)`` containing ``moment``.

    Weeks start on Monday; quarters start in January, April, July and October.
    """
    granularity = Granularity(granularity)
    moment = as_utc(moment)

    if granularity is Granularity.MINUTE:
        start = moment.replace(second=0, microsecond=0)
    elif granularity is Granularity.HOUR:
        start = moment.replace(minute=0, second=0, microsecond=0)
    else:
        midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        if granularity is Granularity.DAY:
            start = midnight
        elif granularity is Granularity.WEEK:
            start = midnight - timedelta(days=midnight.weekday())
        elif granularity is Granularity.MONTH:
            start = midnight.replace(day=1)
        elif granularity is Granularity.QUARTER:
            first_month = (midnight.month - 1) // 3 * 3 + 1
            start = midnight.replace(month=first_month, day=1)
        else:
            start = midnight.replace(month=1, day=1)

    return start, expected_period_end(granularity, start)


def previous_bucket(
    granularity: Granularity | str, moment: datetime
) -> tuple[datetime, datetime]:
    """Return the bucket immediately before the one containing ``moment``.

    This is the period a scheduled collector closes when it runs at ``moment``.
    """
    current_start, _ = bucket_for(granularity, moment)
    return bucket_for(granularity, current_start - timedelta(microseconds=1))
