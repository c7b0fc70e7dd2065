from __future__ import annotations

import logging
from calendar import monthrange
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Iterator

from workforce_summary.models import AbsenceRecord, HolidayOccurrence, Location
from workforce_summary.schemas import ReasonClassification
from workforce_summary.services.schedules import is_weekend

logger = logging.getLogger("workforce_summary.calendar")


@dataclass(frozen=True)
class LocationHolidays:
    total_count: int
    working_day_dates: frozenset[date]

    @property
    def working_day_count(self) -> int:
        return len(self.working_day_dates)


EMPTY_HOLIDAYS = LocationHolidays(total_count=0, working_day_dates=frozenset())


@dataclass
class AbsenceBreakdown:
    excluded_dates: set[date] = field(default_factory=set)
    absence_days: float = 0.0
    absence_count: int = 0
    mobile_work_days: float = 0.0


def month_bounds(year: int, month: int) -> tuple[date, date]:
    days_in_month = monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, days_in_month)


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    cursor = start_date
    while cursor <= end_date:
        yield cursor
        cursor += timedelta(days=1)


def clamp_period(
    year: int,
    month: int,
    *,
    employment_start: date | None,
    employment_end: date | None,
) -> tuple[date, date] | None:
    month_start, month_end = month_bounds(year, month)
    start_date = max(month_start, employment_start) if employment_start else month_start
    end_date = min(month_end, employment_end) if employment_end else month_end
    if start_date > end_date:
        return None
    return start_date, end_date


def holiday_applies_to_location(
    occurrence: HolidayOccurrence,
    *,
    location_id: str | None,
    location: Location | None,
) -> bool:
    if location is not None and location.holiday_ids:
        return occurrence.holiday_id in location.holiday_ids
    if not occurrence.location_ids:
        return True
    return location_id is not None and location_id in occurrence.location_ids


def holidays_for_location(
    holidays: Iterable[HolidayOccurrence],
    *,
    location_id: str | None,
    location: Location | None,
    year: int,
    month: int,
) -> LocationHolidays:
    month_start, month_end = month_bounds(year, month)
    total_count = 0
    working_day_dates: set[date] = set()
    for occurrence in holidays:
        if not month_start <= occurrence.date <= month_end:
            continue
        if not holiday_applies_to_location(occurrence, location_id=location_id, location=location):
            continue
        total_count += 1
        if not is_weekend(occurrence.date):
            working_day_dates.add(occurrence.date)
    return LocationHolidays(total_count=total_count, working_day_dates=frozenset(working_day_dates))


def qualifying_absence_days(
    record: AbsenceRecord,
    *,
    year: int,
    month: int,
    holiday_dates: frozenset[date] | set[date],
) -> Iterator[tuple[date, float]]:
    """Working days of ``record`` inside the month, with their day fraction."""
    if record.days:
        for day in record.days:
            if day.date.year != year or day.date.month != month:
                continue
            if day.value <= 0 or day.weekend or day.holiday:
                continue
            if day.date in holiday_dates:
                continue
            yield day.date, day.value
        return

    if record.start is None or record.end is None:
        return
    month_start, month_end = month_bounds(year, month)
    for day_date in iter_days(max(record.start, month_start), min(record.end, month_end)):
        if is_weekend(day_date) or day_date in holiday_dates:
            continue
        yield day_date, 1.0


def group_absences_by_employee(records: Iterable[AbsenceRecord]) -> dict[str, list[AbsenceRecord]]:
    grouped: dict[str, list[AbsenceRecord]] = defaultdict(list)
    for record in records:
        if not record.is_approved:
            continue
        grouped[record.employee_id].append(record)
    return dict(grouped)


def build_absence_breakdown(
    records: Iterable[AbsenceRecord],
    reasons: dict[str, ReasonClassification],
    *,
    year: int,
    month: int,
    holiday_dates: frozenset[date] | set[date],
) -> AbsenceBreakdown:
    breakdown = AbsenceBreakdown()
    for record in records:
        if not record.is_approved:
            continue
        reason = reasons.get(record.reason_id or "")
        if reason is None:
            logger.warning(
                "absence_reason_unknown",
                extra={"absence_id": record.id, "employee_id": record.employee_id, "reason_id": record.reason_id},
            )
            continue

        if reason.is_mobile_work:
            if record.days:
                breakdown.mobile_work_days += sum(
                    value
                    for _, value in qualifying_absence_days(record, year=year, month=month, holiday_dates=holiday_dates)
                )
            else:
                # Ranges without a day breakdown carry the upstream day count as is.
                breakdown.mobile_work_days += record.days_count
            continue

        days = list(qualifying_absence_days(record, year=year, month=month, holiday_dates=holiday_dates))

        if reason.reduces_scheduled_hours:
            breakdown.excluded_dates.update(day_date for day_date, _ in days)
        if reason.is_absence:
            breakdown.absence_days += sum(value for _, value in days)
            breakdown.absence_count += 1

    return breakdown
