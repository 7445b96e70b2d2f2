from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from . import parsers, services
from .client import TimeTrackerClient
from .database import db_session
from .schemas import (
    ID_NONE,
    ProjectTasksPage,
    ProjectsPage,
    ReportFilter,
    ReportFormPage,
    ReportPage,
    TimeEditPage,
    TimeListPage,
    TimeRecord,
    UsersPage,
)
from .state import RuntimeState

logger = logging.getLogger(__name__)

# Catalogue removals cascade into cached records and report rows.
CATALOGUE_COLLECTIONS = ("project", "project_task", "project_task_key", "record", "report")


class RemoteDataSource:
    """Fetch a page, build its aggregate and bring the local store in line with it.

    Every pass holds the locks of the collections it reconciles, so two fetches
    of the same day never interleave their transactions.
    """

    def __init__(
        self,
        client: TimeTrackerClient,
        session_factory: sessionmaker,
        state: RuntimeState,
        editor_page: str = parsers.DEFAULT_EDITOR_PAGE,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.state = state
        self.editor_page = editor_page

    def time_list_page(self, date: dt.date) -> TimeListPage:
        text = self.client.fetch_times(date)
        page = parsers.parse_time_list_page(text, self.editor_page, self.client.base_url)
        page_date = page.date or date
        with self.state.locked(*CATALOGUE_COLLECTIONS, ("record", page_date)):
            with db_session(self.session_factory) as session:
                services.save_time_list_page(session, page)
        return page

    def edit_page(self, record_id: int) -> Optional[TimeEditPage]:
        if record_id == ID_NONE:
            return None
        page = parsers.parse_time_edit_page(self.client.fetch_time(record_id))
        with self.state.locked(*CATALOGUE_COLLECTIONS):
            with db_session(self.session_factory) as session:
                services.save_time_edit_page(session, page)
        return page

    def save_record(self, record: TimeRecord) -> TimeListPage:
        """Submit ``record`` and reconcile the day list the server answers with."""
        text = self.client.save_time(record)
        page = parsers.parse_time_list_page(text, self.editor_page, self.client.base_url)
        if page.error_message:
            logger.warning("server rejected record %s: %s", record.id, page.error_message)
            return page
        with self.state.locked(*CATALOGUE_COLLECTIONS, ("record", page.date or record.date)):
            with db_session(self.session_factory) as session:
                services.save_time_list_page(session, page)
        return page

    def delete_record(self, record: TimeRecord) -> TimeListPage:
        text = self.client.delete_time(record.id)
        page = parsers.parse_time_list_page(text, self.editor_page, self.client.base_url)
        with self.state.locked(*CATALOGUE_COLLECTIONS, ("record", page.date or record.date)):
            with db_session(self.session_factory) as session:
                services.save_time_list_page(session, page)
        return page

    def report_form_page(self, current: Optional[ReportFilter] = None) -> ReportFormPage:
        page = parsers.parse_report_form_page(self.client.fetch_reports(), current)
        with self.state.locked(*CATALOGUE_COLLECTIONS):
            with db_session(self.session_factory) as session:
                services.save_report_form_page(session, page)
        return page

    def report_page(self, report_filter: ReportFilter) -> ReportPage:
        text = self.client.generate_report(report_filter)
        with self.state.locked("report"):
            with db_session(self.session_factory) as session:
                catalogue = services.load_projects(session)
                page = parsers.parse_report_page(
                    text, report_filter, catalogue, self.editor_page, self.client.base_url
                )
                services.save_report_page(session, page)
        return page

    def projects_page(self) -> ProjectsPage:
        return parsers.parse_projects_page(self.client.fetch_projects(), self.client.base_url)

    def tasks_page(self) -> ProjectTasksPage:
        return parsers.parse_project_tasks_page(self.client.fetch_tasks(), self.client.base_url)

    def users_page(self) -> UsersPage:
        return parsers.parse_users_page(self.client.fetch_users())
