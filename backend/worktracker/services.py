from __future__ import annotations

import calendar
import datetime as dt
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Generator, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import ReconciliationError
from .models import (
    ProjectEntity,
    ProjectTaskEntity,
    ProjectTaskKeyEntity,
    ReportRecordEntity,
    TimeRecordEntity,
)
from .parsers import report_totals
from .schemas import (
    ID_NONE,
    Location,
    Page,
    Project,
    ProjectTask,
    ReportFilter,
    ReportFormPage,
    ReportPage,
    TaskRecordStatus,
    TimeEditPage,
    TimeListPage,
    TimeRecord,
    TimeTotals,
)
from .state import Preferences
from .timeutils import HOUR_MS

logger = logging.getLogger(__name__)

# Fields a time list row carries; anything else on a cached record is local.
TIME_LIST_FIELDS = ("date", "start", "finish", "duration", "note", "project_id", "task_id", "status")
TIME_EDIT_FIELDS = TIME_LIST_FIELDS + ("location",)
REPORT_FIELDS = (
    "date",
    "start",
    "finish",
    "duration",
    "note",
    "cost",
    "location",
    "project_id",
    "project_name",
    "task_id",
    "task_name",
    "status",
)


@dataclass(slots=True)
class ChangeSet:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    def is_empty(self) -> bool:
        return not (self.inserted or self.updated or self.deleted)


@dataclass(slots=True)
class ReconcileResult:
    changes: Dict[str, ChangeSet] = field(default_factory=dict)

    def get(self, collection: str) -> ChangeSet:
        return self.changes.setdefault(collection, ChangeSet())

    def is_empty(self) -> bool:
        return all(change.is_empty() for change in self.changes.values())

    def describe(self) -> str:
        return ", ".join(
            f"{name}: +{change.inserted} ~{change.updated} -{change.deleted}"
            for name, change in sorted(self.changes.items())
        )


@contextmanager
def unit_of_work(session: Session) -> Generator[Session, None, None]:
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise ReconciliationError(
            "local store rejected the reconciliation batch",
            {"error": exc.__class__.__name__},
        ) from exc
    except Exception:
        session.rollback()
        raise


def _apply_fields(row, values: Dict[str, object], names: Iterable[str]) -> bool:
    changed = False
    for name in names:
        value = values[name]
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


# ----------------------------------------------------------------------
# Conversions
# ----------------------------------------------------------------------


def _record_values(record: TimeRecord) -> Dict[str, object]:
    return {
        "date": record.date,
        "start": record.start,
        "finish": record.finish,
        "duration": record.duration,
        "note": record.note,
        "cost": record.cost,
        "location": int(record.location.value),
        "project_id": record.project.id,
        "project_name": record.project.name,
        "task_id": record.task.id,
        "task_name": record.task.name,
        "status": record.status.value,
    }


def _time_record_entity(record: TimeRecord) -> TimeRecordEntity:
    values = _record_values(record)
    del values["project_name"], values["task_name"]
    return TimeRecordEntity(id=record.id, version=record.version, **values)


def _report_record_entity(record: TimeRecord) -> ReportRecordEntity:
    return ReportRecordEntity(id=record.id, version=record.version, **_record_values(record))


def _to_time_record(
    row,
    projects_by_id: Dict[int, Project],
    project: Optional[Project] = None,
    task: Optional[ProjectTask] = None,
) -> TimeRecord:
    if project is None:
        project = projects_by_id.get(row.project_id) or Project(id=row.project_id)
    if task is None:
        task = project.find_task_by_id(row.task_id) or ProjectTask(id=row.task_id)
    return TimeRecord(
        id=row.id,
        project=project.summary(),
        task=task,
        date=row.date,
        start=row.start,
        finish=row.finish,
        duration=row.duration or 0,
        note=row.note or "",
        cost=row.cost or 0.0,
        location=Location.value_of(row.location or 0),
        status=TaskRecordStatus(row.status),
        version=row.version or 0,
    )


def _report_row_to_time_record(row: ReportRecordEntity, projects: Sequence[Project]) -> TimeRecord:
    """Resolve the cached row's project and task by id, then by name, else synthesize them."""
    project = next((p for p in projects if p.id == row.project_id and p.id != ID_NONE), None)
    if project is None:
        project = next((p for p in projects if p.name == row.project_name), None)
    if project is None:
        project = Project(id=row.project_id, name=row.project_name)
    task = None
    if row.task_id != ID_NONE:
        task = project.find_task_by_id(row.task_id)
    if task is None:
        task = project.find_task(row.task_name) or ProjectTask(id=row.task_id, name=row.task_name)
    return _to_time_record(row, {}, project=project, task=task)


# ----------------------------------------------------------------------
# Reconciliation
# ----------------------------------------------------------------------


def _delete_project_dependents(session: Session, project_ids: List[int]) -> None:
    session.execute(delete(ProjectTaskKeyEntity).where(ProjectTaskKeyEntity.project_id.in_(project_ids)))
    session.execute(delete(TimeRecordEntity).where(TimeRecordEntity.project_id.in_(project_ids)))
    session.execute(delete(ReportRecordEntity).where(ReportRecordEntity.project_id.in_(project_ids)))


def _delete_task_dependents(session: Session, task_ids: List[int]) -> None:
    session.execute(delete(ProjectTaskKeyEntity).where(ProjectTaskKeyEntity.task_id.in_(task_ids)))
    session.execute(delete(TimeRecordEntity).where(TimeRecordEntity.task_id.in_(task_ids)))
    session.execute(delete(ReportRecordEntity).where(ReportRecordEntity.task_id.in_(task_ids)))


def save_projects(session: Session, projects: Sequence[Project]) -> ChangeSet:
    """Make the ``project`` table match ``projects``, cascading removals."""
    changes = ChangeSet()
    remote = {project.id: project for project in projects if project.id != ID_NONE}
    local = {row.id: row for row in session.query(ProjectEntity).all()}

    stale = sorted(project_id for project_id in local if project_id not in remote)
    if stale:
        _delete_project_dependents(session, stale)
        session.execute(delete(ProjectEntity).where(ProjectEntity.id.in_(stale)))
        changes.deleted = len(stale)

    for project_id, project in remote.items():
        if project_id not in local:
            session.add(ProjectEntity(id=project_id, name=project.name, description=project.description))
            changes.inserted += 1
    session.flush()

    for project_id, row in local.items():
        project = remote.get(project_id)
        if project is None:
            continue
        if _apply_fields(row, {"name": project.name, "description": project.description}, ("name", "description")):
            row.version = (row.version or 0) + 1
            changes.updated += 1
    session.flush()
    return changes


def save_tasks(session: Session, tasks: Sequence[ProjectTask]) -> ChangeSet:
    changes = ChangeSet()
    remote = {task.id: task for task in tasks if task.id != ID_NONE}
    local = {row.id: row for row in session.query(ProjectTaskEntity).all()}

    stale = sorted(task_id for task_id in local if task_id not in remote)
    if stale:
        _delete_task_dependents(session, stale)
        session.execute(delete(ProjectTaskEntity).where(ProjectTaskEntity.id.in_(stale)))
        changes.deleted = len(stale)

    for task_id, task in remote.items():
        if task_id not in local:
            session.add(ProjectTaskEntity(id=task_id, name=task.name, description=task.description))
            changes.inserted += 1
    session.flush()

    for task_id, row in local.items():
        task = remote.get(task_id)
        if task is None:
            continue
        if _apply_fields(row, {"name": task.name, "description": task.description}, ("name", "description")):
            row.version = (row.version or 0) + 1
            changes.updated += 1
    session.flush()
    return changes


def save_project_task_keys(session: Session, projects: Sequence[Project]) -> ChangeSet:
    """Associations are compared as exact pairs; there is nothing to update."""
    changes = ChangeSet()
    remote: Set[Tuple[int, int]] = {
        (key.project_id, key.task_id) for project in projects for key in project.keys()
    }
    local = {(row.project_id, row.task_id): row for row in session.query(ProjectTaskKeyEntity).all()}

    for pair, row in local.items():
        if pair not in remote:
            session.delete(row)
            changes.deleted += 1
    session.flush()

    for project_id, task_id in sorted(remote - set(local)):
        session.add(ProjectTaskKeyEntity(project_id=project_id, task_id=task_id))
        changes.inserted += 1
    session.flush()
    return changes


def _catalogue_tasks(projects: Sequence[Project], tasks: Sequence[ProjectTask]) -> List[ProjectTask]:
    by_id: Dict[int, ProjectTask] = {task.id: task for task in tasks if task.id != ID_NONE}
    for project in projects:
        for task in project.tasks:
            if task.id != ID_NONE:
                by_id.setdefault(task.id, task)
    return list(by_id.values())


def _save_catalogue(
    session: Session,
    result: ReconcileResult,
    projects: Sequence[Project],
    tasks: Sequence[ProjectTask],
) -> None:
    result.changes["project"] = save_projects(session, projects)
    result.changes["project_task"] = save_tasks(session, _catalogue_tasks(projects, tasks))
    result.changes["project_task_key"] = save_project_task_keys(session, projects)


def _upsert_time_record(session: Session, record: TimeRecord, names: Sequence[str]) -> Tuple[bool, bool]:
    """Merge the carried fields into the cached record, or insert it.

    Returns ``(inserted, updated)``.
    """
    row = session.get(TimeRecordEntity, record.id)
    if row is None:
        session.add(_time_record_entity(record))
        return True, False
    if _apply_fields(row, _record_values(record), names):
        row.bump_version()
        return False, True
    return False, False


def save_time_records(
    session: Session,
    records: Sequence[TimeRecord],
    start_date: dt.date,
    end_date: dt.date,
    names: Sequence[str] = TIME_LIST_FIELDS,
) -> ChangeSet:
    """Reconcile the cached records dated within ``start_date``..``end_date``.

    Records outside the range are never deleted. Empty remote records and
    records without a server identity are not inserted.
    """
    changes = ChangeSet()
    remote = {record.id: record for record in records if record.id != ID_NONE}
    local = {
        row.id: row
        for row in session.query(TimeRecordEntity)
        .filter(TimeRecordEntity.date >= start_date, TimeRecordEntity.date <= end_date)
        .all()
    }

    for record_id, row in local.items():
        if record_id not in remote:
            session.delete(row)
            changes.deleted += 1
    session.flush()

    for record_id, record in remote.items():
        if record_id in local:
            continue
        if record.is_empty():
            logger.debug("not caching empty record %s", record_id)
            continue
        inserted, updated = _upsert_time_record(session, record, names)
        changes.inserted += int(inserted)
        changes.updated += int(updated)
    session.flush()

    for record_id, row in local.items():
        record = remote.get(record_id)
        if record is None:
            continue
        if _apply_fields(row, _record_values(record), names):
            row.bump_version()
            changes.updated += 1
    session.flush()
    return changes


def _report_query(
    session: Session,
    start_date: Optional[dt.date],
    end_date: Optional[dt.date],
    project_id: int = ID_NONE,
    task_id: int = ID_NONE,
):
    query = session.query(ReportRecordEntity)
    if start_date is not None:
        query = query.filter(ReportRecordEntity.date >= start_date)
    if end_date is not None:
        query = query.filter(ReportRecordEntity.date <= end_date)
    if project_id != ID_NONE:
        query = query.filter(ReportRecordEntity.project_id == project_id)
    if task_id != ID_NONE:
        query = query.filter(ReportRecordEntity.task_id == task_id)
    return query


def save_report_records(
    session: Session,
    records: Sequence[TimeRecord],
    start_date: dt.date,
    end_date: dt.date,
    project_id: int = ID_NONE,
    task_id: int = ID_NONE,
) -> ChangeSet:
    """Reconcile the cached report rows the report covers.

    Only rows within the date range and of the selected project and task are
    compared, so a narrower report never removes rows of another selection.
    """
    changes = ChangeSet()
    remote = {record.id: record for record in records if record.id != ID_NONE}
    local = {row.id: row for row in _report_query(session, start_date, end_date, project_id, task_id).all()}

    for record_id, row in local.items():
        if record_id not in remote:
            session.delete(row)
            changes.deleted += 1
    session.flush()

    for record_id, record in remote.items():
        if record_id in local:
            continue
        row = session.get(ReportRecordEntity, record_id)
        if row is None:
            session.add(_report_record_entity(record))
            changes.inserted += 1
        elif _apply_fields(row, _record_values(record), REPORT_FIELDS):
            changes.updated += 1
    session.flush()

    for record_id, row in local.items():
        record = remote.get(record_id)
        if record is not None and _apply_fields(row, _record_values(record), REPORT_FIELDS):
            changes.updated += 1
    session.flush()
    return changes


def save_time_list_page(session: Session, page: TimeListPage) -> ReconcileResult:
    result = ReconcileResult()
    with unit_of_work(session):
        _save_catalogue(session, result, page.projects, page.tasks)
        if page.date is not None:
            result.changes["record"] = save_time_records(session, page.records, page.date, page.date)
    logger.info("time list %s reconciled (%s)", page.date, result.describe())
    return result


def save_time_edit_page(session: Session, page: TimeEditPage) -> ReconcileResult:
    result = ReconcileResult()
    with unit_of_work(session):
        _save_catalogue(session, result, page.projects, page.tasks)
        record = page.record
        if record.id != ID_NONE:
            inserted, updated = _upsert_time_record(session, record, TIME_EDIT_FIELDS)
            change = result.get("record")
            change.inserted += int(inserted)
            change.updated += int(updated)
    logger.info("time edit %s reconciled (%s)", page.record.id, result.describe())
    return result


def save_report_form_page(session: Session, page: ReportFormPage) -> ReconcileResult:
    result = ReconcileResult()
    with unit_of_work(session):
        _save_catalogue(session, result, page.projects, page.tasks)
    logger.info("report form reconciled (%s)", result.describe())
    return result


def _report_range(page: ReportPage) -> Optional[Tuple[dt.date, dt.date]]:
    start, finish = page.filter.start, page.filter.finish
    dates = [record.date for record in page.records]
    if start is None:
        start = min(dates) if dates else None
    if finish is None:
        finish = max(dates) if dates else None
    if start is None or finish is None:
        return None
    return start, finish


def save_report_page(session: Session, page: ReportPage) -> ReconcileResult:
    result = ReconcileResult()
    span = _report_range(page)
    if span is None:
        logger.debug("report page has no date range, nothing to cache")
        return result
    with unit_of_work(session):
        result.changes["report"] = save_report_records(
            session, page.records, *span, page.filter.project.id, page.filter.task.id
        )
    logger.info("report %s..%s reconciled (%s)", span[0], span[1], result.describe())
    return result


def save_page(session: Session, page: Page) -> ReconcileResult:
    """Reconcile the local store with any page aggregate that carries server data."""
    if isinstance(page, TimeListPage):
        return save_time_list_page(session, page)
    if isinstance(page, TimeEditPage):
        return save_time_edit_page(session, page)
    if isinstance(page, ReportFormPage):
        return save_report_form_page(session, page)
    if isinstance(page, ReportPage):
        return save_report_page(session, page)
    logger.debug("%s pages are not cached", page.kind)
    return ReconcileResult()


# ----------------------------------------------------------------------
# Local pages
# ----------------------------------------------------------------------


def load_projects(session: Session) -> List[Project]:
    """Cached projects ordered by name, each with its associated tasks."""
    tasks = {
        row.id: ProjectTask(id=row.id, name=row.name, description=row.description or "")
        for row in session.query(ProjectTaskEntity).all()
    }
    task_ids: Dict[int, List[int]] = {}
    for key in session.query(ProjectTaskKeyEntity).all():
        task_ids.setdefault(key.project_id, []).append(key.task_id)
    projects: List[Project] = []
    for row in session.query(ProjectEntity).order_by(ProjectEntity.name).all():
        project_tasks = [tasks[task_id] for task_id in task_ids.get(row.id, []) if task_id in tasks]
        projects.append(
            Project(id=row.id, name=row.name, description=row.description or "", tasks=project_tasks)
        )
    return projects


def load_tasks(session: Session) -> List[ProjectTask]:
    return [
        ProjectTask(id=row.id, name=row.name, description=row.description or "")
        for row in session.query(ProjectTaskEntity).order_by(ProjectTaskEntity.name).all()
    ]


def load_time_records(
    session: Session,
    start_date: dt.date,
    end_date: dt.date,
    projects: Optional[Sequence[Project]] = None,
) -> List[TimeRecord]:
    if projects is None:
        projects = load_projects(session)
    projects_by_id = {project.id: project for project in projects}
    rows = (
        session.query(TimeRecordEntity)
        .filter(TimeRecordEntity.date >= start_date, TimeRecordEntity.date <= end_date)
        .order_by(TimeRecordEntity.date, TimeRecordEntity.start, TimeRecordEntity.id)
        .all()
    )
    return [_to_time_record(row, projects_by_id) for row in rows]


def load_time_record(session: Session, record_id: int) -> Optional[TimeRecord]:
    row = session.get(TimeRecordEntity, record_id)
    if row is None:
        return None
    return _to_time_record(row, {project.id: project for project in load_projects(session)})


def _sum_durations(records: Iterable[TimeRecord]) -> int:
    return sum(max(record.duration, 0) for record in records)


def _work_days_in_month(day: dt.date, work_days: Iterable[int]) -> int:
    wanted = set(work_days)
    days_in_month = calendar.monthrange(day.year, day.month)[1]
    return sum(
        1 for number in range(1, days_in_month + 1) if day.replace(day=number).isoweekday() in wanted
    )


def calculate_totals(session: Session, date: dt.date, preferences: Preferences) -> TimeTotals:
    """Day, week and month totals from the cache; remaining is the month quota left."""
    month_start = date.replace(day=1)
    month_end = date.replace(day=calendar.monthrange(date.year, date.month)[1])
    week_start = date - dt.timedelta(days=(date.isoweekday() - preferences.first_weekday) % 7)
    week_end = week_start + dt.timedelta(days=6)

    rows = (
        session.query(TimeRecordEntity.date, TimeRecordEntity.duration)
        .filter(
            TimeRecordEntity.date >= min(month_start, week_start),
            TimeRecordEntity.date <= max(month_end, week_end),
        )
        .all()
    )
    daily = weekly = monthly = 0
    for day, duration in rows:
        duration = max(duration or 0, 0)
        if day == date:
            daily += duration
        if week_start <= day <= week_end:
            weekly += duration
        if month_start <= day <= month_end:
            monthly += duration

    quota = preferences.work_hours_per_day * HOUR_MS * _work_days_in_month(date, preferences.work_days)
    return TimeTotals(
        daily=daily,
        weekly=weekly,
        monthly=monthly,
        remaining=quota - monthly,
        status=TaskRecordStatus.CURRENT,
    )


def load_time_list_page(session: Session, date: dt.date, preferences: Preferences) -> TimeListPage:
    projects = load_projects(session)
    return TimeListPage(
        record=TimeRecord(date=date),
        projects=projects,
        tasks=load_tasks(session),
        date=date,
        records=load_time_records(session, date, date, projects),
        totals=calculate_totals(session, date, preferences),
    )


def load_report_page(session: Session, report_filter: ReportFilter) -> ReportPage:
    """Report from the cached report rows within the filter's bounds."""
    projects = load_projects(session)
    query = _report_query(
        session, report_filter.start, report_filter.finish, report_filter.project.id, report_filter.task.id
    )
    rows = query.order_by(ReportRecordEntity.date, ReportRecordEntity.start, ReportRecordEntity.id).all()
    records = [_report_row_to_time_record(row, projects) for row in rows]
    return ReportPage(
        filter=report_filter.model_copy(deep=True),
        projects=projects,
        records=records,
        totals=report_totals(records),
    )
