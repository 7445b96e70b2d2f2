"""HTTP access to the time tracker's PHP pages."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, Optional
from urllib.parse import urljoin, urlparse

import requests

from .exceptions import AccessDeniedError, AuthenticationError, ResponseError
from .schemas import ID_NONE, ReportFilter, TimeRecord
from .timeutils import format_duration, format_system_date, format_system_time

logger = logging.getLogger(__name__)

PHP_ACCESS_DENIED = "access_denied.php"
PHP_DELETE = "time_delete.php"
PHP_EDIT = "time_edit.php"
PHP_PROJECTS = "projects.php"
PHP_REPORT = "report.php"
PHP_REPORTS = "reports.php"
PHP_TASKS = "tasks.php"
PHP_TIME = "time.php"
PHP_USERS = "users.php"

# Pages the server may redirect to after a successful submission.
REDIRECT_TARGETS = (PHP_TIME, PHP_REPORT)


def _last_segment(url: str) -> str:
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    return segments[-1] if segments else ""


def validate_response(response: requests.Response) -> None:
    """Raise unless ``response`` is a successful page and not a login redirect."""
    if response.status_code >= 400:
        raise ResponseError(
            f"server error {response.status_code}",
            {"url": response.url},
            response=response,
        )
    if not response.history:
        return
    if response.url == response.history[-1].url:
        return
    page = _last_segment(response.url)
    if page in REDIRECT_TARGETS:
        return
    if page == PHP_ACCESS_DENIED:
        raise AccessDeniedError("access denied", {"url": response.url}, response=response)
    raise AuthenticationError("authentication required", {"url": response.url}, response=response)


class TimeTrackerClient:
    """Fetches the tracker's pages as HTML text.

    Authentication is the caller's business: pass a :class:`requests.Session`
    that already carries the server's session cookie.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.session = session or requests.Session()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, page: str, **kwargs) -> str:
        url = urljoin(self.base_url, page)
        kwargs.setdefault("timeout", self.timeout)
        if method == "POST":
            headers = kwargs.setdefault("headers", {})
            headers.setdefault("Referer", url)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ResponseError(str(exc), {"url": url}) from exc
        validate_response(response)
        logger.debug("%s %s -> %s", method, url, response.status_code)
        return response.text

    # ------------------------------------------------------------------
    # Time records
    # ------------------------------------------------------------------
    def fetch_times(self, date: dt.date) -> str:
        return self._request("GET", PHP_TIME, params={"date": format_system_date(date)})

    def fetch_time(self, record_id: int) -> str:
        return self._request("GET", PHP_EDIT, params={"id": record_id})

    def save_time(self, record: TimeRecord) -> str:
        data: Dict[str, str] = {
            "project": str(record.project.id),
            "task": str(record.task.id),
            "date": format_system_date(record.date),
            "note": record.note,
            "browser_today": format_system_date(dt.date.today()),
        }
        if record.start is not None and record.finish is not None:
            data["start"] = format_system_time(record.start)
            data["finish"] = format_system_time(record.finish)
        else:
            data["duration"] = format_duration(record.duration)
        if record.id == ID_NONE:
            data["btn_submit"] = "Submit"
            return self._request("POST", PHP_TIME, data=data)
        data["id"] = str(record.id)
        data["btn_save"] = "Save"
        return self._request("POST", PHP_EDIT, data=data)

    def delete_time(self, record_id: int) -> str:
        data = {
            "id": str(record_id),
            "delete_button": "Delete",
            "browser_today": format_system_date(dt.date.today()),
        }
        return self._request("POST", PHP_DELETE, data=data)

    # ------------------------------------------------------------------
    # Catalogues
    # ------------------------------------------------------------------
    def fetch_projects(self) -> str:
        return self._request("GET", PHP_PROJECTS)

    def fetch_tasks(self) -> str:
        return self._request("GET", PHP_TASKS)

    def fetch_users(self) -> str:
        return self._request("GET", PHP_USERS)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def fetch_reports(self) -> str:
        return self._request("GET", PHP_REPORTS)

    def generate_report(self, report_filter: ReportFilter) -> str:
        data = report_filter.to_fields()
        data["btn_generate"] = "Generate"
        return self._request("POST", PHP_REPORTS, data=data)
