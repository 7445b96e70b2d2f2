"""Typed values out of table rows and form controls.

Malformed values fall back to defaults (``None``, zero or ``ID_NONE``) so one
bad cell never aborts the page.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import Tag

from . import html
from .schemas import ID_NONE, Location, Project, ProjectTask
from .timeutils import parse_duration, parse_system_date, parse_system_time

logger = logging.getLogger(__name__)

HEADER_ROW_CLASS = "tableHeader"

# Report and time list column labels.
COLUMN_DATE = "Date"
COLUMN_PROJECT = "Project"
COLUMN_TASK = "Task"
COLUMN_START = "Start"
COLUMN_FINISH = "Finish"
COLUMN_DURATION = "Duration"
COLUMN_NOTE = "Note"
COLUMN_COST = "Cost"
COLUMN_EDIT = "__edit__"

RECORD_COLUMNS = (
    COLUMN_DATE,
    COLUMN_PROJECT,
    COLUMN_TASK,
    COLUMN_START,
    COLUMN_FINISH,
    COLUMN_DURATION,
    COLUMN_NOTE,
    COLUMN_COST,
)


class ColumnIndex:
    """Positions of the known columns of one table, ``-1`` when absent."""

    def __init__(self, positions: Dict[str, int]) -> None:
        self._positions = dict(positions)

    @classmethod
    def from_header(
        cls,
        header: Optional[Tag],
        labels: Iterable[str] = RECORD_COLUMNS,
        edit_last: bool = True,
    ) -> "ColumnIndex":
        positions: Dict[str, int] = {}
        if header is None:
            return cls(positions)
        cells = html.cells_of(header, ("th", "td"))
        wanted = set(labels)
        for index, cell in enumerate(cells):
            label = html.own_text(cell)
            if label in wanted and label not in positions:
                positions[label] = index
        if edit_last and cells:
            positions[COLUMN_EDIT] = len(cells) - 1
        return cls(positions)

    def index(self, label: str) -> int:
        return self._positions.get(label, -1)

    def has(self, label: str) -> bool:
        return self.index(label) >= 0

    def cell(self, cells: Sequence[Tag], label: str) -> Optional[Tag]:
        index = self.index(label)
        if index < 0 or index >= len(cells):
            return None
        return cells[index]

    def __repr__(self) -> str:
        return f"ColumnIndex({self._positions!r})"


def is_header_row(cells: Sequence[Tag]) -> bool:
    return bool(cells) and html.has_class(cells[0], HEADER_ROW_CLASS)


def cell_text(cell: Optional[Tag]) -> str:
    return html.own_text(cell)


def parse_date_cell(cell: Optional[Tag]) -> Optional[dt.date]:
    return parse_system_date(cell_text(cell))


def parse_time_cell(date: dt.date, cell: Optional[Tag]) -> Optional[dt.datetime]:
    return parse_system_time(date, cell_text(cell))


def parse_duration_cell(cell: Optional[Tag]) -> int:
    return parse_duration(cell_text(cell)) or 0


def parse_note_cell(cell: Optional[Tag]) -> str:
    return html.full_text(cell).strip()


def parse_cost(text: Optional[str]) -> float:
    if text is None or not text.strip():
        return 0.0
    try:
        return float(text.strip())
    except ValueError:
        logger.debug("unparseable cost %r", text)
        return 0.0


def parse_record_id(href: Optional[str], editor_page: str, base_url: Optional[str] = None) -> int:
    """Server identity from an edit link, or ``ID_NONE``.

    The link must target ``editor_page`` and carry a numeric ``id`` query
    parameter.
    """
    if not href or not href.strip():
        return ID_NONE
    url = urljoin(base_url, href.strip()) if base_url else href.strip()
    parsed = urlparse(url)
    segments = [segment for segment in parsed.path.split("/") if segment]
    if not segments or segments[-1] != editor_page:
        return ID_NONE
    values = parse_qs(parsed.query).get("id")
    if not values:
        return ID_NONE
    try:
        return int(values[0])
    except ValueError:
        return ID_NONE


def edit_link(cell: Optional[Tag]) -> Optional[str]:
    if cell is None:
        return None
    anchor = cell.find("a")
    if anchor is None:
        return None
    return anchor.get("href")


# ----------------------------------------------------------------------
# Form controls
# ----------------------------------------------------------------------


def _option_id(option: Tag) -> int:
    text = html.value(option).strip()
    if not text:
        return ID_NONE
    try:
        return int(text)
    except ValueError:
        return ID_NONE


def parse_project_options(select: Optional[Tag]) -> List[Project]:
    """Projects listed in a dropdown; placeholder options are left out."""
    projects: List[Project] = []
    for option in html.options(select):
        project_id = _option_id(option)
        if project_id == ID_NONE:
            continue
        projects.append(Project(id=project_id, name=html.own_text(option)))
    return projects


def parse_task_options(select: Optional[Tag]) -> List[ProjectTask]:
    tasks: List[ProjectTask] = []
    for option in html.options(select):
        task_id = _option_id(option)
        if task_id == ID_NONE:
            continue
        tasks.append(ProjectTask(id=task_id, name=html.own_text(option)))
    return tasks


def selected_id(select: Optional[Tag]) -> int:
    option = html.selected_option(select)
    if option is None:
        return ID_NONE
    return _option_id(option)


def find_selected_project(select: Optional[Tag], projects: Iterable[Project]) -> Project:
    project_id = selected_id(select)
    if project_id != ID_NONE:
        for project in projects:
            if project.id == project_id:
                return project
    return Project()


def find_selected_task(select: Optional[Tag], project: Project, tasks: Iterable[ProjectTask]) -> ProjectTask:
    task_id = selected_id(select)
    if task_id == ID_NONE:
        return ProjectTask()
    return project.find_task_by_id(task_id) or next(
        (task for task in tasks if task.id == task_id),
        ProjectTask(),
    )


def find_selected_location(select: Optional[Tag]) -> Location:
    option = html.selected_option(select)
    if option is None:
        return Location.EMPTY
    location_id = _option_id(option)
    if location_id == ID_NONE:
        return Location.EMPTY
    return Location.value_of(location_id)


def checkbox_flag(form: Optional[Tag], name: str, current: bool) -> bool:
    """Checkbox state, or ``current`` when the page has no such checkbox."""
    checkbox = html.select_by_name(form, name)
    if checkbox is None:
        return current
    return html.is_checked(checkbox)


def input_date(form: Optional[Tag], name: str) -> Optional[dt.date]:
    return parse_system_date(html.value(html.select_by_name(form, name)))


def input_time(form: Optional[Tag], name: str, date: dt.date) -> Optional[dt.datetime]:
    return parse_system_time(date, html.value(html.select_by_name(form, name)))


def input_duration(form: Optional[Tag], name: str) -> int:
    return parse_duration(html.value(html.select_by_name(form, name))) or 0


def input_id(form: Optional[Tag], name: str) -> int:
    text = html.value(html.select_by_name(form, name)).strip()
    if not text:
        return ID_NONE
    try:
        return int(text)
    except ValueError:
        return ID_NONE
