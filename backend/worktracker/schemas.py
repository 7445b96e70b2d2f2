from __future__ import annotations

import calendar
import datetime as dt
from enum import Enum
from typing import Annotated, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .timeutils import format_system_date

# Identity of an entity the server has not assigned yet.
ID_NONE = 0

# Totals that were not computed, as opposed to computed as zero.
UNKNOWN = -(2**63)


class TaskRecordStatus(str, Enum):
    DRAFT = "draft"
    CURRENT = "current"
    MODIFIED = "modified"
    DELETED = "deleted"


class Location(int, Enum):
    EMPTY = 0
    HOME = 10
    CLIENT = 11
    TIKAL = 12
    OTHER = 13

    @classmethod
    def value_of(cls, location_id: int) -> "Location":
        for location in cls:
            if location.value == location_id:
                return location
        return cls.OTHER


class ReportTimePeriod(str, Enum):
    CUSTOM = ""
    TODAY = "1"
    THIS_WEEK = "2"
    THIS_MONTH = "3"
    PREVIOUS_WEEK = "6"
    PREVIOUS_MONTH = "7"
    YESTERDAY = "8"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "ReportTimePeriod":
        for period in cls:
            if value and period.value == value:
                return period
        return DEFAULT_TIME_PERIOD


DEFAULT_TIME_PERIOD = ReportTimePeriod.THIS_MONTH


class ProjectTask(BaseModel):
    id: int = ID_NONE
    name: str = ""
    description: str = ""

    def is_empty(self) -> bool:
        return self.id == ID_NONE or not self.name


def _normalize_tasks(tasks: Iterable[ProjectTask]) -> List[ProjectTask]:
    """Keep one task per identity and per name, ordered by name."""
    by_name: Dict[str, ProjectTask] = {}
    for task in tasks:
        if task.id != ID_NONE:
            for name, existing in list(by_name.items()):
                if existing.id == task.id:
                    del by_name[name]
        by_name[task.name] = task
    return sorted(by_name.values(), key=lambda task: task.name)


class ProjectTaskKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: int
    task_id: int


class Project(BaseModel):
    id: int = ID_NONE
    name: str = ""
    description: str = ""
    tasks: List[ProjectTask] = Field(default_factory=list)

    @field_validator("tasks")
    @classmethod
    def _unique_task_names(cls, value: List[ProjectTask]) -> List[ProjectTask]:
        return _normalize_tasks(value)

    def is_empty(self) -> bool:
        return self.id == ID_NONE or not self.name

    def add_task(self, task: ProjectTask) -> None:
        self.tasks = _normalize_tasks([*self.tasks, task])

    def add_tasks(self, tasks: Iterable[ProjectTask]) -> None:
        self.tasks = _normalize_tasks([*self.tasks, *tasks])

    def clear_tasks(self) -> None:
        self.tasks = []

    def find_task(self, name: str) -> Optional[ProjectTask]:
        for task in self.tasks:
            if task.name == name:
                return task
        return None

    def find_task_by_id(self, task_id: int) -> Optional[ProjectTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def keys(self) -> List[ProjectTaskKey]:
        if self.id == ID_NONE:
            return []
        return [ProjectTaskKey(project_id=self.id, task_id=task.id) for task in self.tasks if task.id != ID_NONE]

    def summary(self) -> "Project":
        """Copy of this project without its tasks, as referenced by a record."""
        return Project(id=self.id, name=self.name, description=self.description)


class User(BaseModel):
    id: int = ID_NONE
    username: str = ""
    display_name: str = ""
    email: str = ""
    roles: List[str] = Field(default_factory=list)


def _to_minute(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    return value.replace(second=0, microsecond=0)


def _elapsed(start: Optional[dt.datetime], finish: Optional[dt.datetime]) -> int:
    if start is None or finish is None:
        return 0
    return int((finish - start).total_seconds() * 1000)


class TimeRecord(BaseModel):
    """A time sheet entry.

    The duration is either entered directly or derived from start and finish.
    When it is zero and both times are known it is computed from the times.
    """

    id: int = ID_NONE
    project: Project = Field(default_factory=Project)
    task: ProjectTask = Field(default_factory=ProjectTask)
    date: dt.date = Field(default_factory=dt.date.today)
    start: Optional[dt.datetime] = None
    finish: Optional[dt.datetime] = None
    duration: int = 0  # milliseconds
    note: str = ""
    cost: float = 0.0
    location: Location = Location.EMPTY
    status: TaskRecordStatus = TaskRecordStatus.DRAFT
    version: int = 0

    @field_validator("start", "finish")
    @classmethod
    def _truncate_seconds(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return _to_minute(value)

    @model_validator(mode="after")
    def _derive_duration(self) -> "TimeRecord":
        if not self.duration:
            self.duration = _elapsed(self.start, self.finish)
        return self

    def set_times(self, start: Optional[dt.datetime], finish: Optional[dt.datetime]) -> None:
        self.start = _to_minute(start)
        self.finish = _to_minute(finish)
        self.duration = _elapsed(self.start, self.finish)

    def set_duration(self, duration: int) -> None:
        self.start = None
        self.finish = None
        self.duration = duration

    def is_empty(self) -> bool:
        return self.project.is_empty() or self.task.is_empty() or self.duration == 0


class ReportFilter(BaseModel):
    project: Project = Field(default_factory=Project)
    task: ProjectTask = Field(default_factory=ProjectTask)
    period: ReportTimePeriod = DEFAULT_TIME_PERIOD
    start: Optional[dt.date] = None
    finish: Optional[dt.date] = None
    location: Location = Location.EMPTY
    favorite: Optional[str] = None
    project_field_visible: bool = True
    task_field_visible: bool = True
    start_field_visible: bool = True
    finish_field_visible: bool = True
    duration_field_visible: bool = True
    note_field_visible: bool = True
    cost_field_visible: bool = False
    location_field_visible: bool = False
    status: TaskRecordStatus = TaskRecordStatus.DRAFT

    def to_fields(self) -> Dict[str, str]:
        """Form fields that ask the server to generate this report."""
        fields: Dict[str, str] = {
            "project": "" if self.project.id == ID_NONE else str(self.project.id),
            "task": "" if self.task.id == ID_NONE else str(self.task.id),
            "period": self.period.value,
            "time_field_5": str(self.location.value),
            # Always fetched, the visibility flags only hide them locally.
            "chproject": "1",
            "chtask": "1",
            "chstart": "1",
            "chfinish": "1",
            "group_by1": "no_grouping",
            "group_by2": "no_grouping",
            "group_by3": "no_grouping",
            "favorite_report": "-1",
            "new_fav_report": "",
            "fav_report_changed": "",
        }
        if self.start is not None:
            fields["start_date"] = format_system_date(self.start)
        if self.finish is not None:
            fields["end_date"] = format_system_date(self.finish)
        if self.note_field_visible:
            fields["chnote"] = "1"
        if self.duration_field_visible:
            fields["chduration"] = "1"
        if self.cost_field_visible:
            fields["chcost"] = "1"
        return fields

    def update_dates(self, today: dt.date, first_weekday: int = 7) -> None:
        """Set the bounds for the selected period; ``first_weekday`` is ISO numbered."""
        period = self.period
        if period == ReportTimePeriod.CUSTOM:
            if self.start is None:
                self.start = today
            if self.finish is None:
                self.finish = today
        elif period == ReportTimePeriod.TODAY:
            self.start = today
            self.finish = today
        elif period == ReportTimePeriod.YESTERDAY:
            yesterday = today - dt.timedelta(days=1)
            self.start = yesterday
            self.finish = yesterday
        elif period in (ReportTimePeriod.THIS_WEEK, ReportTimePeriod.PREVIOUS_WEEK):
            first = today - dt.timedelta(days=(today.isoweekday() - first_weekday) % 7)
            if period == ReportTimePeriod.PREVIOUS_WEEK:
                first -= dt.timedelta(days=7)
            self.start = first
            self.finish = first + dt.timedelta(days=6)
        elif period == ReportTimePeriod.THIS_MONTH:
            self.start = today.replace(day=1)
            self.finish = today.replace(day=calendar.monthrange(today.year, today.month)[1])
        elif period == ReportTimePeriod.PREVIOUS_MONTH:
            last = today.replace(day=1) - dt.timedelta(days=1)
            self.start = last.replace(day=1)
            self.finish = last


class TimeTotals(BaseModel):
    daily: int = UNKNOWN
    weekly: int = UNKNOWN
    monthly: int = UNKNOWN
    remaining: int = UNKNOWN
    status: TaskRecordStatus = TaskRecordStatus.DRAFT

    def clear(self, unknown: bool = True) -> None:
        value = UNKNOWN if unknown else 0
        self.daily = value
        self.weekly = value
        self.monthly = value
        self.remaining = value


class ReportTotals(BaseModel):
    duration: int = UNKNOWN
    cost: float = float(UNKNOWN)
    status: TaskRecordStatus = TaskRecordStatus.DRAFT

    def is_known(self) -> bool:
        return self.duration != UNKNOWN


# ----------------------------------------------------------------------
# Page aggregates
# ----------------------------------------------------------------------


class TimeListPage(BaseModel):
    kind: Literal["time_list"] = "time_list"
    record: TimeRecord = Field(default_factory=TimeRecord)
    projects: List[Project] = Field(default_factory=list)
    tasks: List[ProjectTask] = Field(default_factory=list)
    error_message: Optional[str] = None
    date: Optional[dt.date] = None
    records: List[TimeRecord] = Field(default_factory=list)
    totals: TimeTotals = Field(default_factory=TimeTotals)


class TimeEditPage(BaseModel):
    kind: Literal["time_edit"] = "time_edit"
    record: TimeRecord = Field(default_factory=TimeRecord)
    projects: List[Project] = Field(default_factory=list)
    tasks: List[ProjectTask] = Field(default_factory=list)
    error_message: Optional[str] = None
    date: Optional[dt.date] = None


class ReportFormPage(BaseModel):
    kind: Literal["report_form"] = "report_form"
    record: ReportFilter = Field(default_factory=ReportFilter)
    projects: List[Project] = Field(default_factory=list)
    tasks: List[ProjectTask] = Field(default_factory=list)
    error_message: Optional[str] = None


class ReportPage(BaseModel):
    kind: Literal["report"] = "report"
    filter: ReportFilter = Field(default_factory=ReportFilter)
    projects: List[Project] = Field(default_factory=list)
    records: List[TimeRecord] = Field(default_factory=list)
    totals: ReportTotals = Field(default_factory=ReportTotals)
    error_message: Optional[str] = None


class ProjectsPage(BaseModel):
    kind: Literal["projects"] = "projects"
    projects: List[Project] = Field(default_factory=list)


class ProjectTasksPage(BaseModel):
    kind: Literal["project_tasks"] = "project_tasks"
    tasks: List[ProjectTask] = Field(default_factory=list)


class UsersPage(BaseModel):
    kind: Literal["users"] = "users"
    users: List[User] = Field(default_factory=list)


Page = Annotated[
    Union[
        TimeListPage,
        TimeEditPage,
        ReportFormPage,
        ReportPage,
        ProjectsPage,
        ProjectTasksPage,
        UsersPage,
    ],
    Field(discriminator="kind"),
]

FormPage = Union[TimeListPage, TimeEditPage, ReportFormPage]
