"""Collaborator contract for the upstream data and normalisers for its raw payloads.

The engine only depends on ``WorkforceSource``. The ``normalize_*`` helpers
turn records as the absence-management API returns them (``_id`` keys,
camelCase fields, ISO timestamps, weekday maps nested in ``days[0]``) into
the immutable records of ``workforce_summary.models``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Protocol

from workforce_summary.models import (
    AbsenceDay,
    AbsenceRecord,
    DayConfig,
    Department,
    Employee,
    HolidayOccurrence,
    Location,
    Reason,
    Schedule,
    ShiftInterval,
    Team,
    Timespan,
    TimespanType,
    parse_absence_status,
)


class WorkforceSource(Protocol):
    async def fetch_employees(self) -> list[Employee]: ...

    async def fetch_approved_absences(self, year: int, month: int) -> list[AbsenceRecord]: ...

    async def fetch_worked_hours(self, year: int, month: int) -> dict[str, float]: ...

    async def fetch_holidays(self) -> list[HolidayOccurrence]: ...

    async def fetch_reasons(self) -> list[Reason]: ...

    async def fetch_locations(self) -> list[Location]: ...

    async def fetch_departments(self) -> list[Department]: ...

    async def fetch_teams(self) -> list[Team]: ...


def parse_date_part(raw: Any) -> date | None:
    """Calendar date of an upstream value, ignoring any time and offset.

    ``2025-01-01T00:00:00.000Z`` is the 1st of January wherever it is read.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return None


def parse_timestamp(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    value = str(raw).strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _str_id(raw: Any) -> str | None:
    if raw is None or raw == "":
        return None
    return str(raw)


def _str_ids(raw: Iterable[Any] | None) -> tuple[str, ...]:
    return tuple(str(item) for item in raw or () if item is not None)


def normalize_day_config(raw: dict[str, Any] | None) -> DayConfig:
    raw = raw or {}
    shifts = tuple(
        ShiftInterval(start=item.get("start"), end=item.get("end"))
        for item in raw.get("shift") or raw.get("shifts") or []
        if isinstance(item, dict)
    )
    return DayConfig(active=bool(raw.get("active")), shifts=shifts)


def normalize_schedule(raw: dict[str, Any]) -> Schedule:
    raw_days = raw.get("days") or {}
    if isinstance(raw_days, list):
        raw_days = raw_days[0] if raw_days else {}
    days: dict[int, DayConfig] = {}
    for key, value in raw_days.items():
        try:
            weekday = int(key)
        except (TypeError, ValueError):
            continue
        if 0 <= weekday <= 6:
            days[weekday] = normalize_day_config(value)
    return Schedule(
        effective_from=raw.get("start") or raw.get("effectiveFrom"),
        days=days,
        schedule_type=raw.get("scheduleType"),
    )


def normalize_employee(raw: dict[str, Any]) -> Employee:
    weekly_hours = raw.get("weeklyHours")
    return Employee(
        id=str(raw.get("_id") or raw.get("id")),
        first_name=raw.get("firstName") or "",
        last_name=raw.get("lastName") or "",
        email=raw.get("email"),
        active=raw.get("active") is not False,
        weekly_hours=float(weekly_hours) if weekly_hours else None,
        schedules=tuple(normalize_schedule(item) for item in raw.get("schedules") or [] if isinstance(item, dict)),
        employment_start_date=parse_date_part(raw.get("employmentStartDate")),
        employment_end_date=parse_date_part(raw.get("employmentEndDate")),
        location_id=_str_id(raw.get("locationId")),
        department_id=_str_id(raw.get("departmentId")),
        team_ids=_str_ids(raw.get("teamIds")),
    )


def normalize_location(raw: dict[str, Any]) -> Location:
    return Location(
        id=str(raw.get("_id") or raw.get("id")),
        name=raw.get("name"),
        timezone=raw.get("timezone"),
        holiday_ids=_str_ids(raw.get("holidayIds")),
    )


def normalize_department(raw: dict[str, Any]) -> Department:
    return Department(id=str(raw.get("_id") or raw.get("id")), name=raw.get("name") or "")


def normalize_team(raw: dict[str, Any]) -> Team:
    return Team(
        id=str(raw.get("_id") or raw.get("id")),
        name=raw.get("name") or "",
        member_ids=_str_ids(raw.get("memberIds")),
    )


def normalize_holiday(raw: dict[str, Any]) -> list[HolidayOccurrence]:
    """One occurrence per date; a holiday record lists its dates across years."""
    raw_dates = raw.get("dates") or ([raw["date"]] if raw.get("date") else [])
    holiday_id = str(raw.get("_id") or raw.get("id"))
    location_ids = _str_ids(raw.get("locationIds"))
    occurrences: list[HolidayOccurrence] = []
    for raw_date in raw_dates:
        occurrence_date = parse_date_part(raw_date)
        if occurrence_date is None:
            continue
        occurrences.append(
            HolidayOccurrence(
                holiday_id=holiday_id,
                date=occurrence_date,
                name=raw.get("name"),
                location_ids=location_ids,
            )
        )
    return occurrences


def normalize_holidays(raw_holidays: Iterable[dict[str, Any]]) -> list[HolidayOccurrence]:
    occurrences: list[HolidayOccurrence] = []
    for raw in raw_holidays:
        occurrences.extend(normalize_holiday(raw))
    return occurrences


def normalize_absence_day(raw: dict[str, Any]) -> AbsenceDay | None:
    day_date = parse_date_part(raw.get("date"))
    if day_date is None:
        return None
    value = raw.get("value")
    return AbsenceDay(
        date=day_date,
        value=float(value) if value is not None else 1.0,
        weekend=bool(raw.get("weekend")),
        holiday=bool(raw.get("holiday")),
    )


def normalize_absence(raw: dict[str, Any]) -> AbsenceRecord:
    days = tuple(
        day
        for day in (normalize_absence_day(item) for item in raw.get("days") or [] if isinstance(item, dict))
        if day is not None
    )
    return AbsenceRecord(
        id=str(raw.get("_id") or raw.get("id")),
        employee_id=str(raw.get("assignedToId") or raw.get("userId")),
        reason_id=_str_id(raw.get("reasonId")),
        status=parse_absence_status(raw.get("status")),
        start=parse_date_part(raw.get("start")),
        end=parse_date_part(raw.get("end")),
        days=days,
        days_count=float(raw.get("daysCount") or 0),
    )


def normalize_reason(raw: dict[str, Any]) -> Reason:
    return Reason(
        id=str(raw.get("_id") or raw.get("id")),
        name=raw.get("name"),
        counts_as_work=raw.get("countsAsWork") is not False,
        reduces_days=raw.get("reducesDays") is True,
    )


def normalize_timespan(raw: dict[str, Any]) -> Timespan | None:
    start = parse_timestamp(raw.get("start"))
    end = parse_timestamp(raw.get("end"))
    if start is None or end is None:
        return None
    try:
        timespan_type = TimespanType(str(raw.get("type") or "work").strip().upper())
    except ValueError:
        timespan_type = TimespanType.OTHER
    return Timespan(
        employee_id=str(raw.get("userId")),
        start=start,
        end=end,
        type=timespan_type,
    )
