"""Build page aggregates out of the tracker's HTML screens.

Each screen has its own ``parse_*`` function. They share the catalogue and row
helpers below and never raise for malformed markup: missing tables give empty
lists and unparseable fields keep their defaults.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from . import fields, html
from .schemas import (
    ID_NONE,
    Project,
    ProjectTask,
    ProjectTasksPage,
    ProjectsPage,
    ReportFilter,
    ReportFormPage,
    ReportPage,
    ReportTimePeriod,
    ReportTotals,
    TaskRecordStatus,
    TimeEditPage,
    TimeListPage,
    TimeRecord,
    TimeTotals,
    UNKNOWN,
    User,
    UsersPage,
)
from .scripts import (
    REPORT_SCRIPT_START,
    REPORT_TASK_IDS,
    TIME_SCRIPT_START,
    TIME_TASK_IDS,
    populate_task_ids,
)
from .timeutils import parse_duration

logger = logging.getLogger(__name__)

DEFAULT_EDITOR_PAGE = "time_edit.php"

TIME_FORM = "timeRecordForm"
REPORT_FORM = "reportForm"
REPORT_VIEW_FORM = "reportViewForm"

RECORD_LIST_CLASS = "record-list"
DAY_TOTALS_CLASS = "day-totals"

TOTAL_DAY = "Day total:"
TOTAL_WEEK = "Week total:"
TOTAL_MONTH = "Month total:"
TOTAL_REMAINING = "Remaining quota:"


class Catalogue:
    """Projects by name while a page is parsed.

    With ``synthesize`` set, names missing from the catalogue are added as
    stand-ins that only carry a name.
    """

    def __init__(self, projects: Iterable[Project] = (), synthesize: bool = False) -> None:
        self._projects: Dict[str, Project] = {}
        self.synthesize = synthesize
        for project in projects:
            self._projects.setdefault(project.name, project.model_copy(deep=True))

    def project(self, name: str) -> Project:
        project = self._projects.get(name)
        if project is not None:
            return project
        project = Project(name=name)
        if self.synthesize:
            logger.debug("synthesizing project %r", name)
            self._projects[name] = project
        return project

    def task(self, project: Project, name: str) -> ProjectTask:
        task = project.find_task(name)
        if task is not None:
            return task
        task = ProjectTask(name=name)
        if self.synthesize and project.name in self._projects:
            logger.debug("synthesizing task %r of project %r", name, project.name)
            project.add_task(task)
        return task

    def projects(self) -> List[Project]:
        return list(self._projects.values())


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------


def _parse_catalogue(
    doc: BeautifulSoup,
    form: Tag,
    script_start: str,
    pattern,
) -> Tuple[List[Project], List[ProjectTask]]:
    projects = fields.parse_project_options(html.select_by_name(form, "project"))
    tasks = fields.parse_task_options(html.select_by_name(form, "task"))
    if not populate_task_ids(doc, projects, tasks, script_start, pattern):
        logger.debug("no task ids script after %r", script_start)
    return projects, tasks


def _selected_project_task(
    form: Tag,
    projects: Sequence[Project],
    tasks: Sequence[ProjectTask],
) -> Tuple[Project, ProjectTask]:
    project = fields.find_selected_project(html.select_by_name(form, "project"), projects)
    task = fields.find_selected_task(html.select_by_name(form, "task"), project, tasks)
    return project.summary(), task


def _header_row(table: Tag) -> Optional[Tag]:
    for row in html.rows_of(table):
        if row.find("th") is not None:
            return row
    rows = html.rows_of(table)
    return rows[0] if rows else None


def _fill_record(
    record: TimeRecord,
    cells: Sequence[Tag],
    columns: fields.ColumnIndex,
    editor_page: str,
    base_url: Optional[str],
) -> None:
    start = fields.parse_time_cell(record.date, columns.cell(cells, fields.COLUMN_START))
    finish = fields.parse_time_cell(record.date, columns.cell(cells, fields.COLUMN_FINISH))
    record.set_times(start, finish)
    duration = fields.parse_duration_cell(columns.cell(cells, fields.COLUMN_DURATION))
    if duration:
        record.duration = duration
    if columns.has(fields.COLUMN_NOTE):
        record.note = fields.parse_note_cell(columns.cell(cells, fields.COLUMN_NOTE))
    if columns.has(fields.COLUMN_COST):
        record.cost = fields.parse_cost(fields.cell_text(columns.cell(cells, fields.COLUMN_COST)))
    if columns.has(fields.COLUMN_EDIT):
        link = fields.edit_link(columns.cell(cells, fields.COLUMN_EDIT))
        record.id = fields.parse_record_id(link, editor_page, base_url)


# ----------------------------------------------------------------------
# Time list (time.php)
# ----------------------------------------------------------------------


def parse_time_list_page(
    text: str,
    editor_page: str = DEFAULT_EDITOR_PAGE,
    base_url: Optional[str] = None,
) -> TimeListPage:
    doc = html.parse_document(text)
    page = TimeListPage(error_message=html.find_error(doc))
    form = html.find_form(doc, TIME_FORM)
    if form is not None:
        page.projects, page.tasks = _parse_catalogue(doc, form, TIME_SCRIPT_START, TIME_TASK_IDS)
        page.date = fields.input_date(form, "date")
        project, task = _selected_project_task(form, page.projects, page.tasks)
        page.record = TimeRecord(project=project, task=task, date=page.date or dt.date.today())
    if page.date is None:
        logger.debug("time list page has no date, skipping its records")
    else:
        page.records = _parse_time_list_records(doc, page.date, page.projects, editor_page, base_url)
    page.totals = _parse_time_totals(doc)
    return page


def _parse_time_list_records(
    doc: BeautifulSoup,
    date: dt.date,
    projects: Sequence[Project],
    editor_page: str,
    base_url: Optional[str],
) -> List[TimeRecord]:
    table = html.find_table_by_headers(
        html.find_div(doc, RECORD_LIST_CLASS),
        (fields.COLUMN_PROJECT, fields.COLUMN_TASK, fields.COLUMN_START),
    )
    if table is None:
        return []
    columns = fields.ColumnIndex.from_header(_header_row(table))
    catalogue = Catalogue(projects)
    records: List[TimeRecord] = []
    for row in html.rows_of(table):
        cells = html.cells_of(row)
        if not cells or fields.is_header_row(cells):
            continue
        project = catalogue.project(fields.cell_text(columns.cell(cells, fields.COLUMN_PROJECT)))
        task = catalogue.task(project, fields.cell_text(columns.cell(cells, fields.COLUMN_TASK)))
        record = TimeRecord(
            project=project.summary(),
            task=task,
            date=date,
            status=TaskRecordStatus.CURRENT,
        )
        _fill_record(record, cells, columns, editor_page, base_url)
        records.append(record)
    return records


def _parse_time_totals(doc: BeautifulSoup) -> TimeTotals:
    totals = TimeTotals()
    cell = html.find_cell_starting_with(html.find_div(doc, DAY_TOTALS_CLASS), TOTAL_WEEK)
    table = html.find_parent(cell, "table")
    if table is None:
        return totals
    for td in table.find_all("td"):
        if not any(name.startswith(DAY_TOTALS_CLASS) for name in html.class_names(td)):
            continue
        label = html.full_text(td)
        value = label[label.find(":") + 1 :].strip()
        elapsed = parse_duration(value)
        if elapsed is None:
            elapsed = UNKNOWN
        if label.startswith(TOTAL_DAY):
            totals.daily = elapsed
        elif label.startswith(TOTAL_WEEK):
            totals.weekly = elapsed
        elif label.startswith(TOTAL_MONTH):
            totals.monthly = elapsed
        elif label.startswith(TOTAL_REMAINING):
            totals.remaining = elapsed
    totals.status = TaskRecordStatus.CURRENT
    return totals


# ----------------------------------------------------------------------
# Time edit (time_edit.php)
# ----------------------------------------------------------------------


def parse_time_edit_page(text: str) -> TimeEditPage:
    doc = html.parse_document(text)
    page = TimeEditPage(error_message=html.find_error(doc))
    form = html.find_form(doc, TIME_FORM)
    if form is None:
        return page
    page.projects, page.tasks = _parse_catalogue(doc, form, TIME_SCRIPT_START, TIME_TASK_IDS)
    page.date = fields.input_date(form, "date")
    date = page.date or dt.date.today()
    project, task = _selected_project_task(form, page.projects, page.tasks)
    record = TimeRecord(project=project, task=task, date=date)
    if html.select_by_name(form, "id") is not None:
        record.id = fields.input_id(form, "id")
        record.set_times(fields.input_time(form, "start", date), fields.input_time(form, "finish", date))
        duration = fields.input_duration(form, "duration")
        if duration:
            record.duration = duration
        record.note = html.value(html.select_by_name(form, "note"))
        record.location = fields.find_selected_location(html.select_by_name(form, "time_field_5"))
        record.status = TaskRecordStatus.DRAFT if record.id == ID_NONE else TaskRecordStatus.CURRENT
    page.record = record
    return page


# ----------------------------------------------------------------------
# Report form (reports.php)
# ----------------------------------------------------------------------


def _selected_period(select: Optional[Tag]) -> ReportTimePeriod:
    option = html.selected_option(select)
    if option is None:
        return ReportTimePeriod.from_value(None)
    return ReportTimePeriod.from_value(html.value(option))


def parse_report_form_page(text: str, current: Optional[ReportFilter] = None) -> ReportFormPage:
    """Parse the report form on top of ``current``.

    Visibility checkboxes absent from the page keep the value ``current`` has.
    """
    doc = html.parse_document(text)
    report_filter = current.model_copy(deep=True) if current is not None else ReportFilter()
    page = ReportFormPage(record=report_filter, error_message=html.find_error(doc))
    form = html.find_form(doc, REPORT_FORM)
    if form is None:
        return page
    page.projects, page.tasks = _parse_catalogue(doc, form, REPORT_SCRIPT_START, REPORT_TASK_IDS)
    report_filter.project, report_filter.task = _selected_project_task(form, page.projects, page.tasks)
    report_filter.period = _selected_period(html.select_by_name(form, "period"))
    report_filter.start = fields.input_date(form, "start_date")
    report_filter.finish = fields.input_date(form, "end_date")
    report_filter.project_field_visible = fields.checkbox_flag(form, "chproject", report_filter.project_field_visible)
    report_filter.task_field_visible = fields.checkbox_flag(form, "chtask", report_filter.task_field_visible)
    report_filter.start_field_visible = fields.checkbox_flag(form, "chstart", report_filter.start_field_visible)
    report_filter.finish_field_visible = fields.checkbox_flag(form, "chfinish", report_filter.finish_field_visible)
    report_filter.duration_field_visible = fields.checkbox_flag(
        form, "chduration", report_filter.duration_field_visible
    )
    report_filter.note_field_visible = fields.checkbox_flag(form, "chnote", report_filter.note_field_visible)
    report_filter.cost_field_visible = fields.checkbox_flag(form, "chcost", report_filter.cost_field_visible)
    report_filter.location_field_visible = fields.checkbox_flag(
        form, "chtime_field_5", report_filter.location_field_visible
    )
    report_filter.location = fields.find_selected_location(html.select_by_name(form, "time_field_5"))
    report_filter.status = TaskRecordStatus.CURRENT
    return page


# ----------------------------------------------------------------------
# Report (report.php)
# ----------------------------------------------------------------------


def parse_report_page(
    text: str,
    report_filter: ReportFilter,
    catalogue: Iterable[Project] = (),
    editor_page: str = DEFAULT_EDITOR_PAGE,
    base_url: Optional[str] = None,
) -> ReportPage:
    """Parse a generated report.

    ``catalogue`` holds previously cached projects with their tasks. Names the
    report shows that are in neither the catalogue nor the page are added as
    stand-in projects and tasks.
    """
    doc = html.parse_document(text)
    known = Catalogue(catalogue, synthesize=True)
    page = ReportPage(filter=report_filter.model_copy(deep=True), error_message=html.find_error(doc))
    page.records = _parse_report_records(doc, known, editor_page, base_url)
    page.projects = known.projects()
    page.totals = report_totals(page.records)
    return page


def _find_report_table(doc: BeautifulSoup) -> Optional[Tag]:
    form = html.find_form(doc, REPORT_VIEW_FORM)
    if form is None:
        return None
    th = form.find("th")
    if th is None or html.own_text(th) != fields.COLUMN_DATE:
        return None
    return html.find_parent(th, "table")


def _parse_report_records(
    doc: BeautifulSoup,
    catalogue: Catalogue,
    editor_page: str,
    base_url: Optional[str],
) -> List[TimeRecord]:
    table = _find_report_table(doc)
    rows = html.rows_of(table)
    if len(rows) < 2:
        return []
    columns = fields.ColumnIndex.from_header(rows[0])
    records: List[TimeRecord] = []
    # The last two rows are a blank separator and the totals.
    for index, row in enumerate(rows[1 : len(rows) - 2], start=1):
        record = _parse_report_row(index, html.cells_of(row), columns, catalogue, editor_page, base_url)
        if record is not None:
            records.append(record)
    return records


def _parse_report_row(
    index: int,
    cells: Sequence[Tag],
    columns: fields.ColumnIndex,
    catalogue: Catalogue,
    editor_page: str,
    base_url: Optional[str],
) -> Optional[TimeRecord]:
    if not cells or fields.is_header_row(cells):
        return None
    date = fields.parse_date_cell(columns.cell(cells, fields.COLUMN_DATE))
    if date is None:
        logger.debug("skipping report row %d without a date", index)
        return None
    record = TimeRecord(id=index + 1, date=date, status=TaskRecordStatus.CURRENT)
    project = record.project
    project_cell = columns.cell(cells, fields.COLUMN_PROJECT)
    if project_cell is not None:
        if html.has_class(project_cell, fields.HEADER_ROW_CLASS):
            return None
        project = catalogue.project(fields.cell_text(project_cell))
        record.project = project.summary()
    if columns.has(fields.COLUMN_TASK):
        record.task = catalogue.task(project, fields.cell_text(columns.cell(cells, fields.COLUMN_TASK)))
    _fill_record(record, cells, columns, editor_page, base_url)
    return record


def report_totals(records: Iterable[TimeRecord]) -> ReportTotals:
    totals = ReportTotals(duration=0, cost=0.0, status=TaskRecordStatus.CURRENT)
    for record in records:
        totals.duration += max(record.duration, 0)
        totals.cost += record.cost
    return totals


# ----------------------------------------------------------------------
# Catalogue screens
# ----------------------------------------------------------------------


def _name_description_rows(doc: BeautifulSoup, second_label: str) -> List[List[Tag]]:
    table = html.find_table_by_headers(html.body_of(doc), ("Name", second_label))
    rows: List[List[Tag]] = []
    for row in html.rows_of(table)[1:]:
        cells = html.cells_of(row)
        if cells:
            rows.append(cells)
    return rows


def parse_projects_page(text: str, base_url: Optional[str] = None) -> ProjectsPage:
    doc = html.parse_document(text)
    projects: List[Project] = []
    for cells in _name_description_rows(doc, "Description"):
        project = Project(
            name=fields.cell_text(cells[0]),
            description=fields.cell_text(cells[1]) if len(cells) > 1 else "",
        )
        for cell in cells[2:]:
            project_id = fields.parse_record_id(fields.edit_link(cell), "project_edit.php", base_url)
            if project_id != ID_NONE:
                project.id = project_id
                break
        projects.append(project)
    return ProjectsPage(projects=projects)


def parse_project_tasks_page(text: str, base_url: Optional[str] = None) -> ProjectTasksPage:
    doc = html.parse_document(text)
    tasks: List[ProjectTask] = []
    for cells in _name_description_rows(doc, "Description"):
        task = ProjectTask(
            name=fields.cell_text(cells[0]),
            description=fields.cell_text(cells[1]) if len(cells) > 1 else "",
        )
        for cell in cells[2:]:
            task_id = fields.parse_record_id(fields.edit_link(cell), "task_edit.php", base_url)
            if task_id != ID_NONE:
                task.id = task_id
                break
        tasks.append(task)
    return ProjectTasksPage(tasks=tasks)


def parse_users_page(text: str) -> UsersPage:
    doc = html.parse_document(text)
    users: List[User] = []
    for cells in _name_description_rows(doc, "Login"):
        roles_text = fields.cell_text(cells[2]) if len(cells) > 2 else ""
        users.append(
            User(
                id=len(users) + 1,
                display_name=fields.cell_text(cells[0]),
                username=fields.cell_text(cells[1]) if len(cells) > 1 else "",
                roles=[role.strip() for role in roles_text.split(",") if role.strip()],
            )
        )
    return UsersPage(users=users)


PAGE_PARSERS = {
    "time_list": parse_time_list_page,
    "time_edit": parse_time_edit_page,
    "report_form": parse_report_form_page,
    "projects": parse_projects_page,
    "project_tasks": parse_project_tasks_page,
    "users": parse_users_page,
}
