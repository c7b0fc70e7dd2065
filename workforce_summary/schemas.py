from pydantic import BaseModel, ConfigDict, Field


class ReasonClassification(BaseModel):
    reason_id: str
    name: str | None = None
    is_mobile_work: bool = False
    is_sick_leave: bool = False
    is_work_marker: bool = False
    is_compensation: bool = False
    is_absence: bool = False
    reduces_scheduled_hours: bool = False

    model_config = ConfigDict(frozen=True)


class ScheduleOverviewItem(BaseModel):
    effective_from: str | None
    schedule_type: str | None = None
    active_days: int


class ScheduleOverview(BaseModel):
    has_schedule: bool
    schedule_count: int
    schedules: list[ScheduleOverviewItem] = Field(default_factory=list)


class TimeTrackingUser(BaseModel):
    id: int
    email: str
    full_name: str

    model_config = ConfigDict(frozen=True)


class TimeTrackingProject(BaseModel):
    id: int
    name: str
    client_id: int | None = None

    model_config = ConfigDict(frozen=True)


class TrackedUserSeconds(BaseModel):
    user_id: int
    total_seconds: int = 0
    billable_seconds: int = 0
    project_names: list[str] = Field(default_factory=list)
    client_names: list[str] = Field(default_factory=list)


class TrackedHours(BaseModel):
    user_id: int
    total_hours: float
    billable_hours: float
    non_billable_hours: float
    projects: str | None = None
    clients: str | None = None


class MonthlySummary(BaseModel):
    employee_id: str
    first_name: str
    last_name: str
    full_name: str
    email: str | None = None
    department_id: str | None = None
    department_name: str | None = None
    location_id: str | None = None
    location_name: str | None = None
    team_ids: list[str] = Field(default_factory=list)
    team_names: list[str] = Field(default_factory=list)
    year: int
    month: int = Field(ge=1, le=12)
    weekly_hours: float = 0.0
    scheduled_hours: float
    worked_hours: float
    overtime_hours: float
    absence_days: float = 0.0
    absence_count: int = 0
    mobile_work_days: float = 0.0
    holiday_count: int = 0
    tracked_total_hours: float | None = None
    tracked_billable_hours: float | None = None
    tracked_non_billable_hours: float | None = None
    tracked_projects: str | None = None
    tracked_clients: str | None = None

    model_config = ConfigDict(frozen=True)


class TrackedProjectHours(BaseModel):
    user_id: int
    user_name: str
    user_email: str | None = None
    employee_id: str | None = None
    employee_name: str | None = None
    project_id: int | None = None
    project_name: str
    client_id: int | None = None
    client_name: str
    year: int
    month: int = Field(ge=1, le=12)
    total_hours: float
    billable_hours: float
    non_billable_hours: float

    model_config = ConfigDict(frozen=True)
