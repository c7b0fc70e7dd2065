from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from workforce_summary.models import Timespan, TimespanType
from workforce_summary.services.calendar import month_bounds


def local_month_to_utc_bounds(year: int, month: int, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start_date, end_date = month_bounds(year, month)
    return local_date_range_to_utc_bounds(start_date, end_date, tz)


def local_date_range_to_utc_bounds(start_date: date, end_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start_local = datetime.combine(start_date, time.min, tzinfo=tz)
    end_local = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def _as_utc(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)


def clipped_hours(timespan: Timespan, range_start: datetime, range_end: datetime, tz: ZoneInfo) -> float:
    start = max(_as_utc(timespan.start, tz), range_start)
    end = min(_as_utc(timespan.end, tz), range_end)
    if end <= start:
        return 0.0
    return (end - start).total_seconds() / 3600


def sum_worked_hours(
    timespans: Iterable[Timespan],
    *,
    year: int,
    month: int,
    tz: ZoneInfo,
) -> dict[str, float]:
    """Work hours per employee, with entries crossing the month clipped to it."""
    range_start, range_end = local_month_to_utc_bounds(year, month, tz)
    totals: dict[str, float] = defaultdict(float)
    for timespan in timespans:
        if timespan.type != TimespanType.WORK:
            continue
        totals[timespan.employee_id] += clipped_hours(timespan, range_start, range_end, tz)
    return {employee_id: round(hours, 2) for employee_id, hours in totals.items()}
