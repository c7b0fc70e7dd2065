from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Mapping


class AbsenceStatus(str, enum.Enum):
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"
    CONFIRMED = "CONFIRMED"


class TimespanType(str, enum.Enum):
    WORK = "WORK"
    BREAK = "BREAK"
    OTHER = "OTHER"


APPROVED_ABSENCE_STATUSES = frozenset({AbsenceStatus.APPROVED, AbsenceStatus.CONFIRMED})

# Upstream encodes status either numerically (0 pending, 1 rejected, 2 approved)
# or by name.
_ABSENCE_STATUS_ALIASES: dict[object, AbsenceStatus] = {
    0: AbsenceStatus.PENDING,
    1: AbsenceStatus.REJECTED,
    2: AbsenceStatus.APPROVED,
    "pending": AbsenceStatus.PENDING,
    "rejected": AbsenceStatus.REJECTED,
    "declined": AbsenceStatus.REJECTED,
    "approved": AbsenceStatus.APPROVED,
    "confirmed": AbsenceStatus.CONFIRMED,
    "confirmedbyapprover": AbsenceStatus.CONFIRMED,
}


def parse_absence_status(raw: object) -> AbsenceStatus:
    if isinstance(raw, AbsenceStatus):
        return raw
    if isinstance(raw, bool):
        return AbsenceStatus.PENDING
    if isinstance(raw, int):
        return _ABSENCE_STATUS_ALIASES.get(raw, AbsenceStatus.PENDING)
    if isinstance(raw, str):
        key = raw.strip().lower()
        if key.isdigit():
            return _ABSENCE_STATUS_ALIASES.get(int(key), AbsenceStatus.PENDING)
        return _ABSENCE_STATUS_ALIASES.get(key, AbsenceStatus.PENDING)
    return AbsenceStatus.PENDING


@dataclass(frozen=True)
class ShiftInterval:
    start: str | None
    end: str | None


@dataclass(frozen=True)
class DayConfig:
    active: bool
    shifts: tuple[ShiftInterval, ...] = ()


@dataclass(frozen=True)
class Schedule:
    # Weekday keys follow the upstream convention: 0 = Sunday ... 6 = Saturday.
    effective_from: date | datetime | str | None
    days: Mapping[int, DayConfig] = field(default_factory=dict)
    schedule_type: str | None = None


@dataclass(frozen=True)
class Employee:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    active: bool = True
    weekly_hours: float | None = None
    schedules: tuple[Schedule, ...] = ()
    employment_start_date: date | None = None
    employment_end_date: date | None = None
    location_id: str | None = None
    department_id: str | None = None
    team_ids: tuple[str, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Location:
    id: str
    name: str | None = None
    timezone: str | None = None
    holiday_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Department:
    id: str
    name: str


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    member_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class HolidayOccurrence:
    holiday_id: str
    date: date
    name: str | None = None
    location_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class AbsenceDay:
    date: date
    value: float = 1.0
    weekend: bool = False
    holiday: bool = False


@dataclass(frozen=True)
class AbsenceRecord:
    id: str
    employee_id: str
    reason_id: str | None
    status: AbsenceStatus
    start: date | None = None
    end: date | None = None
    days: tuple[AbsenceDay, ...] = ()
    days_count: float = 0.0

    @property
    def is_approved(self) -> bool:
        return self.status in APPROVED_ABSENCE_STATUSES


@dataclass(frozen=True)
class Reason:
    id: str
    name: str | None
    counts_as_work: bool = True
    reduces_days: bool = False


@dataclass(frozen=True)
class Timespan:
    employee_id: str
    start: datetime
    end: datetime
    type: TimespanType = TimespanType.WORK


@dataclass(frozen=True)
class SharedMetadata:
    employees: tuple[Employee, ...]
    reasons: tuple[Reason, ...]
    holidays: tuple[HolidayOccurrence, ...]
    locations: tuple[Location, ...] = ()
    departments: tuple[Department, ...] = ()
    teams: tuple[Team, ...] = ()
