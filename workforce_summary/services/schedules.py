from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from workforce_summary.models import DayConfig, Employee, Schedule
from workforce_summary.schemas import ScheduleOverview, ScheduleOverviewItem
from workforce_summary.services.shift_hours import calculate_shift_hours
from workforce_summary.settings import get_settings

WORKDAYS_PER_WEEK = 5


@lru_cache
def resolve_timezone(name: str | None, default_name: str | None = None) -> ZoneInfo:
    raw_name = (name or "").strip() or (default_name or "").strip() or get_settings().default_timezone
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_today(default_name: str | None = None) -> date:
    return datetime.now(resolve_timezone(None, default_name)).date()


def upstream_weekday(day_date: date) -> int:
    """0 = Sunday ... 6 = Saturday, as used in schedule day maps."""
    return day_date.isoweekday() % 7


def is_weekend(day_date: date) -> bool:
    return day_date.weekday() >= 5


def to_local_date(value: date | datetime | str | None, tz: ZoneInfo) -> date | None:
    """Calendar date of ``value`` in ``tz``.

    Naive timestamps and bare dates are already local. Aware timestamps are
    converted before truncation so ``2025-03-01T00:00:00+01:00`` stays the 1st
    in Europe/Berlin instead of becoming the last day of February in UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            try:
                return date.fromisoformat(raw[:10])
            except ValueError:
                return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(tz).date()
    return value


@dataclass(frozen=True)
class ScheduleTimeline:
    """Effective-dated schedules of one employee, sorted by local start date."""

    starts: tuple[date, ...]
    schedules: tuple[Schedule, ...]

    def schedule_for(self, day_date: date) -> Schedule | None:
        index = bisect_right(self.starts, day_date)
        if index == 0:
            return None
        return self.schedules[index - 1]


def build_schedule_timeline(schedules: tuple[Schedule, ...] | list[Schedule], tz: ZoneInfo) -> ScheduleTimeline:
    dated: list[tuple[date, int, Schedule]] = []
    for position, schedule in enumerate(schedules or ()):
        start = to_local_date(schedule.effective_from, tz)
        if start is None:
            continue
        dated.append((start, position, schedule))

    # Later entries win when two schedules start on the same day.
    dated.sort(key=lambda item: (item[0], item[1]))
    return ScheduleTimeline(
        starts=tuple(item[0] for item in dated),
        schedules=tuple(item[2] for item in dated),
    )


def day_config_for(schedule: Schedule | None, day_date: date) -> DayConfig | None:
    if schedule is None or not schedule.days:
        return None
    return schedule.days.get(upstream_weekday(day_date))


def hours_for_date(schedule: Schedule | None, day_date: date) -> float:
    day_config = day_config_for(schedule, day_date)
    if day_config is None or not day_config.active:
        return 0.0
    return calculate_shift_hours(day_config.shifts)


def scheduled_hours_for_day(timeline: ScheduleTimeline, day_date: date) -> float:
    return hours_for_date(timeline.schedule_for(day_date), day_date)


def fallback_daily_hours(employee: Employee, default_weekly_hours: float | None = None) -> float:
    if default_weekly_hours is None:
        default_weekly_hours = get_settings().default_weekly_hours
    weekly_hours = employee.weekly_hours or default_weekly_hours
    return max(0.0, weekly_hours) / WORKDAYS_PER_WEEK


def fallback_hours_for_date(
    employee: Employee,
    day_date: date,
    default_weekly_hours: float | None = None,
) -> float:
    if is_weekend(day_date):
        return 0.0
    return fallback_daily_hours(employee, default_weekly_hours)


class EmployeeScheduleResolver:
    """Scheduled hours per day for one employee.

    Employees without any schedule record are planned ``weekly_hours / 5`` on
    weekdays. Once at least one dated schedule exists it is authoritative,
    including an in-force schedule with every weekday inactive.
    """

    def __init__(self, employee: Employee, tz: ZoneInfo, *, default_weekly_hours: float | None = None):
        self.employee = employee
        self.default_weekly_hours = default_weekly_hours
        self.uses_fallback = not employee.schedules
        self.timeline = build_schedule_timeline(employee.schedules, tz)

    def hours_for(self, day_date: date) -> float:
        if self.uses_fallback:
            return fallback_hours_for_date(self.employee, day_date, self.default_weekly_hours)
        return scheduled_hours_for_day(self.timeline, day_date)


def schedule_overview(employee: Employee, tz: ZoneInfo | None = None) -> ScheduleOverview:
    """Dated schedules of ``employee`` as the resolver sees them in ``tz``."""
    tz = tz or resolve_timezone(None)
    items: list[ScheduleOverviewItem] = []
    for schedule in employee.schedules:
        effective = to_local_date(schedule.effective_from, tz)
        items.append(
            ScheduleOverviewItem(
                effective_from=effective.isoformat() if effective else None,
                schedule_type=schedule.schedule_type,
                active_days=sum(1 for config in schedule.days.values() if config.active),
            )
        )
    return ScheduleOverview(
        has_schedule=bool(employee.schedules),
        schedule_count=len(employee.schedules),
        schedules=items,
    )