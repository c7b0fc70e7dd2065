from __future__ import annotations

import asyncio
import logging
import time
from datetime import date
from functools import partial
from typing import Callable, Iterable, Iterator, TypeVar
from zoneinfo import ZoneInfo

from workforce_summary.errors import SummaryGenerationError, UpstreamError
from workforce_summary.models import (
    AbsenceRecord,
    Department,
    Employee,
    HolidayOccurrence,
    Location,
    Reason,
    SharedMetadata,
    Team,
)
from workforce_summary.schemas import (
    MonthlySummary,
    ReasonClassification,
    ScheduleOverview,
    TimeTrackingUser,
    TrackedHours,
    TrackedProjectHours,
)
from workforce_summary.services.cache import TTLCache, month_key_ttl
from workforce_summary.services.calendar import (
    EMPTY_HOLIDAYS,
    AbsenceBreakdown,
    LocationHolidays,
    build_absence_breakdown,
    clamp_period,
    group_absences_by_employee,
    holidays_for_location,
    iter_days,
)
from workforce_summary.services.reasons import build_reason_map
from workforce_summary.services.schedules import (
    EmployeeScheduleResolver,
    local_today,
    resolve_timezone,
    schedule_overview,
)
from workforce_summary.services.time_tracking import SOURCE_NAME as TIME_TRACKING_SOURCE
from workforce_summary.services.time_tracking import TimeTrackingService
from workforce_summary.settings import Settings, get_settings
from workforce_summary.sources import WorkforceSource

logger = logging.getLogger("workforce_summary.monthly")

_ALL = "all"
T = TypeVar("T")


def _round_hours(value: float) -> float:
    return round(value, 2)


def _batched(items: list[T], size: int) -> Iterator[list[T]]:
    size = max(1, size)
    for index in range(0, len(items), size):
        yield items[index : index + size]


def _validate_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")
    if year < 1:
        raise ValueError(f"year must be positive, got {year}")


def calculate_scheduled_hours(
    employee: Employee,
    year: int,
    month: int,
    *,
    tz: ZoneInfo,
    holiday_dates: frozenset[date] | set[date] = frozenset(),
    excluded_dates: frozenset[date] | set[date] = frozenset(),
    default_weekly_hours: float | None = None,
) -> float:
    period = clamp_period(
        year,
        month,
        employment_start=employee.employment_start_date,
        employment_end=employee.employment_end_date,
    )
    if period is None:
        return 0.0

    resolver = EmployeeScheduleResolver(employee, tz, default_weekly_hours=default_weekly_hours)
    total_hours = 0.0
    for day_date in iter_days(*period):
        if day_date in holiday_dates or day_date in excluded_dates:
            continue
        total_hours += resolver.hours_for(day_date)
    return _round_hours(total_hours)


class _MonthContext:
    """Lookups shared by every employee of one aggregation pass."""

    def __init__(
        self,
        year: int,
        month: int,
        metadata: SharedMetadata,
        absences: Iterable[AbsenceRecord],
        worked_hours: dict[str, float],
        settings: Settings,
    ):
        self.year = year
        self.month = month
        self.settings = settings
        self.holidays = metadata.holidays
        self.worked_hours = worked_hours
        self.reasons: dict[str, ReasonClassification] = build_reason_map(metadata.reasons)
        self.locations: dict[str, Location] = {item.id: item for item in metadata.locations}
        self.departments: dict[str, Department] = {item.id: item for item in metadata.departments}
        self.teams = metadata.teams
        self.absences_by_employee = group_absences_by_employee(absences)
        self._holidays_by_location: dict[str | None, LocationHolidays] = {}

    def location_holidays(self, location_id: str | None) -> LocationHolidays:
        if location_id not in self._holidays_by_location:
            location = self.locations.get(location_id) if location_id else None
            if location_id and location is None:
                logger.warning("employee_location_unknown", extra={"location_id": location_id})
            self._holidays_by_location[location_id] = holidays_for_location(
                self.holidays,
                location_id=location_id,
                location=location,
                year=self.year,
                month=self.month,
            )
        return self._holidays_by_location.get(location_id, EMPTY_HOLIDAYS)


def employee_timezone(employee: Employee, locations: dict[str, Location], default_timezone: str) -> ZoneInfo:
    location = locations.get(employee.location_id) if employee.location_id else None
    return resolve_timezone(location.timezone if location else None, default_timezone)


def _summarize_employee(employee: Employee, ctx: _MonthContext) -> MonthlySummary:
    location = ctx.locations.get(employee.location_id) if employee.location_id else None
    tz = employee_timezone(employee, ctx.locations, ctx.settings.default_timezone)
    holidays = ctx.location_holidays(employee.location_id)

    breakdown: AbsenceBreakdown = build_absence_breakdown(
        ctx.absences_by_employee.get(employee.id, ()),
        ctx.reasons,
        year=ctx.year,
        month=ctx.month,
        holiday_dates=holidays.working_day_dates,
    )
    scheduled_hours = calculate_scheduled_hours(
        employee,
        ctx.year,
        ctx.month,
        tz=tz,
        holiday_dates=holidays.working_day_dates,
        excluded_dates=breakdown.excluded_dates,
        default_weekly_hours=ctx.settings.default_weekly_hours,
    )
    worked_hours = _round_hours(ctx.worked_hours.get(employee.id, 0.0))
    teams = [
        team for team in ctx.teams if team.id in employee.team_ids or employee.id in team.member_ids
    ]
    department = ctx.departments.get(employee.department_id) if employee.department_id else None

    return MonthlySummary(
        employee_id=employee.id,
        first_name=employee.first_name,
        last_name=employee.last_name,
        full_name=employee.full_name,
        email=employee.email,
        department_id=employee.department_id,
        department_name=department.name if department else None,
        location_id=employee.location_id,
        location_name=location.name if location else None,
        team_ids=list(employee.team_ids),
        team_names=[team.name for team in teams],
        year=ctx.year,
        month=ctx.month,
        weekly_hours=employee.weekly_hours or 0.0,
        scheduled_hours=scheduled_hours,
        worked_hours=worked_hours,
        overtime_hours=_round_hours(worked_hours - scheduled_hours),
        absence_days=breakdown.absence_days,
        absence_count=breakdown.absence_count,
        mobile_work_days=breakdown.mobile_work_days,
        holiday_count=holidays.working_day_count,
    )


def aggregate_month(
    year: int,
    month: int,
    metadata: SharedMetadata,
    absences: Iterable[AbsenceRecord],
    worked_hours: dict[str, float],
    *,
    settings: Settings | None = None,
) -> list[MonthlySummary]:
    ctx = _MonthContext(year, month, metadata, absences, worked_hours, settings or get_settings())
    summaries: list[MonthlySummary] = []
    for employee in metadata.employees:
        if not employee.active:
            continue
        try:
            summaries.append(_summarize_employee(employee, ctx))
        except (ArithmeticError, AttributeError, KeyError, TypeError, ValueError):
            logger.exception(
                "employee_summary_failed",
                extra={"employee_id": employee.id, "year": year, "month": month},
            )
    return summaries


def _match_tracked_hours(
    summary: MonthlySummary,
    users_by_email: dict[str, TimeTrackingUser],
    hours: dict[int, TrackedHours],
) -> MonthlySummary:
    email = (summary.email or "").lower().strip()
    user = users_by_email.get(email) if email else None
    tracked = hours.get(user.id) if user else None
    if tracked is None:
        return summary.model_copy(
            update={
                "tracked_total_hours": 0.0,
                "tracked_billable_hours": 0.0,
                "tracked_non_billable_hours": 0.0,
            }
        )
    return summary.model_copy(
        update={
            "tracked_total_hours": tracked.total_hours,
            "tracked_billable_hours": tracked.billable_hours,
            "tracked_non_billable_hours": tracked.non_billable_hours,
            "tracked_projects": tracked.projects,
            "tracked_clients": tracked.clients,
        }
    )


class MonthlySummaryService:
    """Monthly workforce summaries on top of cached upstream reads."""

    def __init__(
        self,
        source: WorkforceSource,
        *,
        settings: Settings | None = None,
        time_tracking: TimeTrackingService | None = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] | None = None,
    ):
        self.source = source
        self.settings = settings or get_settings()
        self.time_tracking = time_tracking
        self._today = today or partial(local_today, self.settings.default_timezone)

        metadata_ttl = self.settings.metadata_cache_ttl_seconds
        month_ttl = month_key_ttl(
            current_month_ttl_seconds=self.settings.month_cache_ttl_seconds,
            historical_ttl_seconds=self.settings.historical_month_cache_ttl_seconds,
            today=self._today,
        )
        max_entries = self.settings.month_cache_max_entries

        self._employees: TTLCache[str, tuple[Employee, ...]] = TTLCache(
            "employees", self._fetch_employees, ttl_seconds=metadata_ttl, clock=clock
        )
        self._reasons: TTLCache[str, tuple[Reason, ...]] = TTLCache(
            "reasons", self._fetch_reasons, ttl_seconds=metadata_ttl, clock=clock
        )
        self._holidays: TTLCache[str, tuple[HolidayOccurrence, ...]] = TTLCache(
            "holidays",
            self._fetch_holidays,
            ttl_seconds=self.settings.holiday_cache_ttl_seconds,
            clock=clock,
        )
        self._locations: TTLCache[str, tuple[Location, ...]] = TTLCache(
            "locations", self._fetch_locations, ttl_seconds=metadata_ttl, clock=clock
        )
        self._departments: TTLCache[str, tuple[Department, ...]] = TTLCache(
            "departments", self._fetch_departments, ttl_seconds=metadata_ttl, clock=clock
        )
        self._teams: TTLCache[str, tuple[Team, ...]] = TTLCache(
            "teams", self._fetch_teams, ttl_seconds=metadata_ttl, clock=clock
        )
        self._absences: TTLCache[tuple[int, int], tuple[AbsenceRecord, ...]] = TTLCache(
            "absences", self._fetch_absences, ttl_seconds=month_ttl, max_entries=max_entries, clock=clock
        )
        self._worked_hours: TTLCache[tuple[int, int], dict[str, float]] = TTLCache(
            "worked_hours", self._fetch_worked_hours, ttl_seconds=month_ttl, max_entries=max_entries, clock=clock
        )
        self._periods: TTLCache[tuple[int, int, bool], dict[tuple[int, int], list[MonthlySummary]]] = TTLCache(
            "period_summaries",
            self._build_period,
            ttl_seconds=self.settings.period_cache_ttl_seconds,
            max_entries=max_entries,
            clock=clock,
        )

    async def _fetch_employees(self, _key: str) -> tuple[Employee, ...]:
        return tuple(await self.source.fetch_employees())

    async def _fetch_reasons(self, _key: str) -> tuple[Reason, ...]:
        return tuple(await self.source.fetch_reasons())

    async def _fetch_holidays(self, _key: str) -> tuple[HolidayOccurrence, ...]:
        holidays = tuple(await self.source.fetch_holidays())
        logger.info("holidays_fetched", extra={"count": len(holidays)})
        return holidays

    async def _fetch_locations(self, _key: str) -> tuple[Location, ...]:
        return tuple(await self.source.fetch_locations())

    async def _fetch_departments(self, _key: str) -> tuple[Department, ...]:
        return tuple(await self.source.fetch_departments())

    async def _fetch_teams(self, _key: str) -> tuple[Team, ...]:
        return tuple(await self.source.fetch_teams())

    async def _fetch_absences(self, key: tuple[int, int]) -> tuple[AbsenceRecord, ...]:
        year, month = key
        return tuple(await self.source.fetch_approved_absences(year, month))

    async def _fetch_worked_hours(self, key: tuple[int, int]) -> dict[str, float]:
        year, month = key
        return dict(await self.source.fetch_worked_hours(year, month))

    async def load_shared_metadata(self) -> SharedMetadata:
        try:
            employees, reasons, holidays, locations, departments, teams = await asyncio.gather(
                self._employees.get(_ALL),
                self._reasons.get(_ALL),
                self._holidays.get(_ALL),
                self._locations.get(_ALL),
                self._departments.get(_ALL),
                self._teams.get(_ALL),
            )
        except UpstreamError as exc:
            logger.error("shared_metadata_failed", extra={"source": exc.source, "error": exc.message})
            raise SummaryGenerationError.from_upstream(exc) from exc
        return SharedMetadata(
            employees=employees,
            reasons=reasons,
            holidays=holidays,
            locations=locations,
            departments=departments,
            teams=teams,
        )

    async def generate_monthly_summary(
        self,
        year: int,
        month: int,
        shared: SharedMetadata | None = None,
    ) -> list[MonthlySummary]:
        _validate_month(year, month)
        key = (year, month)
        try:
            absences, worked_hours = await asyncio.gather(
                self._absences.get(key),
                self._worked_hours.get(key),
            )
        except UpstreamError as exc:
            logger.error(
                "monthly_summary_failed",
                extra={"year": year, "month": month, "source": exc.source, "error": exc.message},
            )
            raise SummaryGenerationError.from_upstream(exc) from exc

        metadata = shared if shared is not None else await self.load_shared_metadata()
        summaries = aggregate_month(year, month, metadata, absences, worked_hours, settings=self.settings)
        logger.info(
            "monthly_summary_generated",
            extra={"year": year, "month": month, "employees": len(summaries)},
        )
        return summaries

    async def get_employee_monthly_summary(
        self,
        employee_id: str,
        year: int,
        month: int,
    ) -> MonthlySummary | None:
        summaries = await self.generate_monthly_summary(year, month)
        for summary in summaries:
            if summary.employee_id == employee_id:
                return summary
        return None

    async def get_schedule_overview(self, employee_id: str) -> ScheduleOverview | None:
        shared = await self.load_shared_metadata()
        locations = {item.id: item for item in shared.locations}
        for employee in shared.employees:
            if employee.id == employee_id:
                tz = employee_timezone(employee, locations, self.settings.default_timezone)
                return schedule_overview(employee, tz)
        return None

    def _validate_year_range(self, from_year: int, to_year: int) -> None:
        if to_year < from_year:
            raise ValueError("to_year must not be before from_year")
        if to_year - from_year > self.settings.max_year_range:
            raise ValueError(f"Maximum range is {self.settings.max_year_range} years")

    async def _tracked_hours_for(
        self,
        tracking: TimeTrackingService,
        months: list[tuple[int, int]],
    ) -> dict[tuple[int, int], dict[int, TrackedHours]]:
        results: dict[tuple[int, int], dict[int, TrackedHours]] = {}
        for batch in _batched(months, self.settings.time_tracking_batch_size):
            hours = await asyncio.gather(*(tracking.get_hours_by_month(year, month) for year, month in batch))
            results.update(zip(batch, hours))
        return results

    def _active_tracking(self, include_time_tracking: bool = True) -> TimeTrackingService | None:
        tracking = self.time_tracking
        if not include_time_tracking or tracking is None or not tracking.enabled:
            return None
        return tracking

    async def _build_period(self, key: tuple[int, int, bool]) -> dict[tuple[int, int], list[MonthlySummary]]:
        from_year, to_year, with_tracking = key
        months = [(year, month) for year in range(from_year, to_year + 1) for month in range(1, 13)]
        shared = await self.load_shared_metadata()
        monthly = await asyncio.gather(
            *(self.generate_monthly_summary(year, month, shared) for year, month in months)
        )
        results = dict(zip(months, monthly))

        tracking = self._active_tracking(with_tracking)
        if tracking is None:
            return results

        try:
            users = await tracking.get_users()
            tracked = await self._tracked_hours_for(tracking, months)
        except UpstreamError as exc:
            logger.error(
                "time_tracking_enrichment_failed",
                extra={"source": exc.source, "error": exc.message},
            )
            raise SummaryGenerationError.from_upstream(exc) from exc

        users_by_email = {user.email: user for user in users if user.email}
        return {
            key: [_match_tracked_hours(summary, users_by_email, tracked.get(key, {})) for summary in summaries]
            for key, summaries in results.items()
        }

    async def generate_period_summaries(
        self,
        from_year: int,
        to_year: int,
        *,
        include_time_tracking: bool = True,
    ) -> dict[tuple[int, int], list[MonthlySummary]]:
        self._validate_year_range(from_year, to_year)
        with_tracking = self._active_tracking(include_time_tracking) is not None
        return dict(await self._periods.get((from_year, to_year, with_tracking)))

    async def generate_project_breakdown(self, from_year: int, to_year: int) -> list[TrackedProjectHours]:
        """Per-project tracked hours for every month of the range up to the current month.

        Rows are linked to employees by case-insensitive email.
        """
        self._validate_year_range(from_year, to_year)
        tracking = self._active_tracking()
        if tracking is None:
            raise SummaryGenerationError(TIME_TRACKING_SOURCE, "time tracking is not configured")

        today = self._today()
        months = [
            (year, month)
            for year in range(from_year, to_year + 1)
            for month in range(1, 13)
            if (year, month) <= (today.year, today.month)
        ]
        shared = await self.load_shared_metadata()
        employees_by_email = {
            employee.email.lower().strip(): employee for employee in shared.employees if employee.email
        }

        rows: list[TrackedProjectHours] = []
        try:
            for batch in _batched(months, self.settings.time_tracking_batch_size):
                breakdowns = await asyncio.gather(
                    *(tracking.get_project_breakdown(year, month) for year, month in batch)
                )
                for breakdown in breakdowns:
                    rows.extend(breakdown)
        except UpstreamError as exc:
            logger.error(
                "project_breakdown_failed",
                extra={"source": exc.source, "error": exc.message},
            )
            raise SummaryGenerationError.from_upstream(exc) from exc

        matched: list[TrackedProjectHours] = []
        for row in rows:
            employee = employees_by_email.get((row.user_email or "").lower().strip())
            if employee is None:
                matched.append(row)
                continue
            matched.append(row.model_copy(update={"employee_id": employee.id, "employee_name": employee.full_name}))
        logger.info(
            "project_breakdown_generated",
            extra={"from_year": from_year, "to_year": to_year, "months": len(months), "rows": len(matched)},
        )
        return matched
