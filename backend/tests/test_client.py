import datetime as dt
from types import SimpleNamespace

import pytest
import requests

from worktracker.client import TimeTrackerClient, validate_response
from worktracker.exceptions import AccessDeniedError, AuthenticationError, ResponseError
from worktracker.schemas import Project, ProjectTask, ReportFilter, TimeRecord
from worktracker.timeutils import HOUR_MS

BASE_URL = "https://tracker.example.com/timetracker/"


def _response(url, status_code=200, history=(), text=""):
    return SimpleNamespace(
        url=url,
        status_code=status_code,
        history=[SimpleNamespace(url=item) for item in history],
        text=text,
    )


class FakeSession:
    def __init__(self, response=None, error=None):
        self.calls = []
        self.response = response
        self.error = error

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response or _response(url, text="<html></html>")


def test_plain_response_is_accepted() -> None:
    validate_response(_response(BASE_URL + "time.php"))


def test_redirect_to_expected_pages_is_accepted() -> None:
    validate_response(_response(BASE_URL + "time.php?date=2024-03-01", history=[BASE_URL + "time_edit.php"]))
    validate_response(_response(BASE_URL + "report.php", history=[BASE_URL + "reports.php"]))
    validate_response(_response(BASE_URL + "users.php", history=[BASE_URL + "users.php"]))


def test_redirect_to_login_requires_authentication() -> None:
    with pytest.raises(AuthenticationError):
        validate_response(_response(BASE_URL + "login.php", history=[BASE_URL + "time.php"]))


def test_redirect_to_access_denied() -> None:
    with pytest.raises(AccessDeniedError):
        validate_response(_response(BASE_URL + "access_denied.php", history=[BASE_URL + "users.php"]))


def test_error_status_raises() -> None:
    with pytest.raises(ResponseError) as excinfo:
        validate_response(_response(BASE_URL + "time.php", status_code=500))

    assert "500" in str(excinfo.value)


def test_fetch_times_requests_day() -> None:
    session = FakeSession()
    client = TimeTrackerClient(BASE_URL.rstrip("/"), session=session, timeout=3)

    assert client.fetch_times(dt.date(2024, 3, 1)) == "<html></html>"

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", BASE_URL + "time.php")
    assert kwargs["params"] == {"date": "2024-03-01"}
    assert kwargs["timeout"] == 3


def _record(**values) -> TimeRecord:
    return TimeRecord(
        project=Project(id=14, name="Tikal"),
        task=ProjectTask(id=7, name="Army Service"),
        date=dt.date(2024, 3, 1),
        note="Reserve duty",
        **values,
    )


def test_new_record_is_submitted_to_time_page() -> None:
    session = FakeSession()
    client = TimeTrackerClient(BASE_URL, session=session)

    client.save_time(_record(duration=2 * HOUR_MS))

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", BASE_URL + "time.php")
    assert kwargs["headers"]["Referer"] == BASE_URL + "time.php"
    assert kwargs["data"]["duration"] == "02:00"
    assert kwargs["data"]["btn_submit"] == "Submit"
    assert "start" not in kwargs["data"]


def test_existing_record_is_saved_on_edit_page() -> None:
    session = FakeSession()
    client = TimeTrackerClient(BASE_URL, session=session)

    client.save_time(
        _record(id=101, start=dt.datetime(2024, 3, 1, 8, 15), finish=dt.datetime(2024, 3, 1, 10, 45))
    )

    _, url, kwargs = session.calls[0]
    assert url == BASE_URL + "time_edit.php"
    assert kwargs["data"]["id"] == "101"
    assert (kwargs["data"]["start"], kwargs["data"]["finish"]) == ("08:15", "10:45")
    assert kwargs["data"]["project"] == "14"
    assert kwargs["data"]["task"] == "7"


def test_generate_report_posts_filter() -> None:
    session = FakeSession()
    client = TimeTrackerClient(BASE_URL, session=session)

    client.generate_report(ReportFilter(project=Project(id=14, name="Tikal")))

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", BASE_URL + "reports.php")
    assert kwargs["data"]["project"] == "14"
    assert kwargs["data"]["btn_generate"] == "Generate"


def test_transport_errors_are_wrapped() -> None:
    client = TimeTrackerClient(BASE_URL, session=FakeSession(error=requests.ConnectionError("refused")))

    with pytest.raises(ResponseError) as excinfo:
        client.fetch_projects()

    assert excinfo.value.details == {"url": BASE_URL + "projects.php"}


def test_login_redirect_surfaces_from_client() -> None:
    response = _response(BASE_URL + "login.php", history=[BASE_URL + "users.php"])
    client = TimeTrackerClient(BASE_URL, session=FakeSession(response=response))

    with pytest.raises(AuthenticationError):
        client.fetch_users()


def test_redirect_back_to_the_prior_page_is_accepted() -> None:
    validate_response(
        _response(BASE_URL + "users.php", history=[BASE_URL + "projects.php", BASE_URL + "users.php"])
    )
