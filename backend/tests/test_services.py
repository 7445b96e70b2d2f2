import datetime as dt

import pytest
from sqlalchemy.exc import SQLAlchemyError

from worktracker import parsers, services
from worktracker.exceptions import ReconciliationError
from worktracker.models import (
    ProjectEntity,
    ProjectTaskEntity,
    ProjectTaskKeyEntity,
    ReportRecordEntity,
    TimeRecordEntity,
)
from worktracker.schemas import (
    Project,
    ProjectTask,
    ProjectsPage,
    ReportFilter,
    TaskRecordStatus,
)
from worktracker.state import Preferences
from worktracker.timeutils import HOUR_MS


def _record(record_id, project_id, task_id, date, duration=HOUR_MS, **extra) -> TimeRecordEntity:
    return TimeRecordEntity(
        id=record_id,
        project_id=project_id,
        task_id=task_id,
        date=date,
        duration=duration,
        **extra,
    )


def _report_row(record_id, project_id, date, duration=HOUR_MS) -> ReportRecordEntity:
    return ReportRecordEntity(
        id=record_id,
        project_id=project_id,
        project_name="Beta",
        task_id=10,
        task_name="Build",
        date=date,
        duration=duration,
    )


def _ids(session, entity) -> set:
    return {row.id for row in session.query(entity).all()}


def test_project_reconciliation_cascades(session, seed, sample_day) -> None:
    seed(
        projects=[(1, "Alpha"), (2, "Beta")],
        tasks=[(10, "Build")],
        keys=[(1, 10), (2, 10)],
        records=[
            _record(500, 2, 10, sample_day),
            _record(501, 1, 10, sample_day),
            _report_row(600, 2, sample_day),
        ],
    )

    changes = services.save_projects(session, [Project(id=1, name="Alpha"), Project(id=3, name="Gamma")])
    session.commit()

    assert (changes.inserted, changes.updated, changes.deleted) == (1, 0, 1)
    assert _ids(session, ProjectEntity) == {1, 3}
    assert {(key.project_id, key.task_id) for key in session.query(ProjectTaskKeyEntity).all()} == {(1, 10)}
    assert _ids(session, TimeRecordEntity) == {501}
    assert _ids(session, ReportRecordEntity) == set()
    assert session.get(ProjectEntity, 1).version == 0


def test_renamed_project_bumps_version(session, seed) -> None:
    seed(projects=[(1, "Alpha")])

    changes = services.save_projects(session, [Project(id=1, name="Alpha Prime", description="renamed")])
    session.commit()

    row = session.get(ProjectEntity, 1)
    assert changes.updated == 1
    assert (row.name, row.description, row.version) == ("Alpha Prime", "renamed", 1)


def test_task_reconciliation_cascades(session, seed, sample_day) -> None:
    seed(
        projects=[(1, "Alpha")],
        tasks=[(10, "Build"), (11, "Test")],
        keys=[(1, 10), (1, 11)],
        records=[_record(500, 1, 10, sample_day), _record(501, 1, 11, sample_day)],
    )

    changes = services.save_tasks(session, [ProjectTask(id=10, name="Build")])
    session.commit()

    assert changes.deleted == 1
    assert _ids(session, ProjectTaskEntity) == {10}
    assert {key.task_id for key in session.query(ProjectTaskKeyEntity).all()} == {10}
    assert _ids(session, TimeRecordEntity) == {500}


def test_associations_compare_exact_pairs(session, seed) -> None:
    seed(projects=[(1, "Alpha")], tasks=[(10, "Build"), (11, "Test")], keys=[(1, 10)])
    project = Project(id=1, name="Alpha", tasks=[ProjectTask(id=11, name="Test")])

    changes = services.save_project_task_keys(session, [project])
    session.commit()

    assert (changes.inserted, changes.deleted) == (1, 1)
    assert {(key.project_id, key.task_id) for key in session.query(ProjectTaskKeyEntity).all()} == {(1, 11)}


def test_time_list_page_caches_records(session, load_html) -> None:
    page = parsers.parse_time_list_page(load_html("time.html"))

    result = services.save_time_list_page(session, page)

    assert _ids(session, ProjectEntity) == {486, 568, 14}
    assert _ids(session, ProjectTaskEntity) == {1, 5, 7, 20}
    assert len(session.query(ProjectTaskKeyEntity).all()) == 6
    # Record 103 names a project missing from the catalogue.
    assert _ids(session, TimeRecordEntity) == {101, 102}
    assert result.get("record").inserted == 2
    row = session.get(TimeRecordEntity, 101)
    assert (row.project_id, row.task_id, row.note) == (568, 5, "Sprint planning")
    assert row.start == dt.datetime(2024, 3, 1, 9, 0)
    assert row.status == TaskRecordStatus.CURRENT.value


def test_reconciling_twice_changes_nothing(session, load_html) -> None:
    page = parsers.parse_time_list_page(load_html("time.html"))
    services.save_time_list_page(session, page)

    result = services.save_time_list_page(session, parsers.parse_time_list_page(load_html("time.html")))

    assert result.is_empty()
    assert session.get(TimeRecordEntity, 101).version == 0


def test_other_days_are_left_alone(session, seed, load_html, sample_day) -> None:
    seed(
        projects=[(568, "KLA")],
        tasks=[(5, "Development")],
        keys=[(568, 5)],
        records=[
            _record(104, 568, 5, sample_day),
            _record(900, 568, 5, dt.date(2024, 3, 2)),
        ],
    )

    result = services.save_time_list_page(session, parsers.parse_time_list_page(load_html("time.html")))

    assert _ids(session, TimeRecordEntity) == {101, 102, 900}
    assert result.get("record").deleted == 1


def test_merge_keeps_local_fields(session, seed, load_html, sample_day) -> None:
    seed(
        projects=[(568, "KLA")],
        tasks=[(5, "Development")],
        records=[_record(101, 568, 5, sample_day, note="old", cost=9.5, location=11, version=3)],
    )

    result = services.save_time_list_page(session, parsers.parse_time_list_page(load_html("time.html")))

    row = session.get(TimeRecordEntity, 101)
    assert result.get("record").updated == 1
    assert row.note == "Sprint planning"
    assert row.duration == 3.5 * HOUR_MS
    assert (row.cost, row.location, row.version) == (9.5, 11, 4)


def test_failed_batch_rolls_back(session, seed, load_html, monkeypatch) -> None:
    seed(projects=[(2, "Beta")])

    def _fail(session, projects):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(services, "save_project_task_keys", _fail)

    with pytest.raises(ReconciliationError):
        services.save_time_list_page(session, parsers.parse_time_list_page(load_html("time.html")))

    assert _ids(session, ProjectEntity) == {2}
    assert _ids(session, TimeRecordEntity) == set()


def test_edit_page_upserts_record(session, load_html) -> None:
    page = parsers.parse_time_edit_page(load_html("time_edit.html"))

    result = services.save_time_edit_page(session, page)
    record = services.load_time_record(session, 101)

    assert result.get("record").inserted == 1
    assert record is not None
    assert (record.project.name, record.task.name) == ("Tikal", "Army Service")
    assert record.duration == 9000000
    assert record.note == "Reserve duty"
    assert record.location.value == 11


def test_edit_page_updates_record_of_another_day(session, seed, load_html) -> None:
    seed(projects=[(14, "Tikal")], tasks=[(7, "Army Service")], records=[_record(101, 14, 7, dt.date(2024, 2, 1))])

    result = services.save_time_edit_page(session, parsers.parse_time_edit_page(load_html("time_edit.html")))

    row = session.get(TimeRecordEntity, 101)
    assert result.get("record").updated == 1
    assert row.date == dt.date(2024, 3, 1)
    assert row.version == 1


def _report_page(load_html):
    report_filter = ReportFilter(start=dt.date(2024, 2, 18), finish=dt.date(2024, 2, 24))
    return parsers.parse_report_page(load_html("report.html"), report_filter)


def test_report_rows_are_cached_within_range(session, seed, load_html) -> None:
    seed(records=[_report_row(150, 14, dt.date(2024, 1, 10)), _report_row(160, 14, dt.date(2024, 2, 22))])

    result = services.save_report_page(session, _report_page(load_html))

    change = result.get("report")
    assert (change.inserted, change.deleted) == (2, 1)
    assert _ids(session, ReportRecordEntity) == {150, 201, 202}
    row = session.get(ReportRecordEntity, 202)
    assert (row.project_name, row.task_name, row.duration) == ("Legacy", "Migration", 2 * HOUR_MS)


def test_cached_report_is_loaded(session, load_html) -> None:
    services.save_report_page(session, _report_page(load_html))

    page = services.load_report_page(
        session, ReportFilter(start=dt.date(2024, 2, 18), finish=dt.date(2024, 2, 24))
    )

    assert [record.id for record in page.records] == [201, 202]
    assert [record.project.name for record in page.records] == ["Tikal", "Legacy"]
    assert page.records[0].cost == 120.5
    assert page.totals.duration == 10 * HOUR_MS
    assert page.totals.cost == 120.5


def test_local_time_list_totals(session, seed) -> None:
    seed(
        projects=[(1, "Alpha")],
        tasks=[(10, "Build")],
        keys=[(1, 10)],
        records=[
            _record(1, 1, 10, dt.date(2024, 3, 6), 2 * HOUR_MS),
            _record(2, 1, 10, dt.date(2024, 3, 4), HOUR_MS),
            _record(3, 1, 10, dt.date(2024, 3, 1), 3 * HOUR_MS),
            _record(4, 1, 10, dt.date(2024, 2, 29), 4 * HOUR_MS),
        ],
    )
    preferences = Preferences(work_hours_per_day=8, work_days=[7, 1, 2, 3, 4], first_weekday=7)

    page = services.load_time_list_page(session, dt.date(2024, 3, 6), preferences)

    assert [record.id for record in page.records] == [1]
    assert page.records[0].project.name == "Alpha"
    assert page.records[0].task.name == "Build"
    assert page.totals.daily == 2 * HOUR_MS
    assert page.totals.weekly == 3 * HOUR_MS
    assert page.totals.monthly == 6 * HOUR_MS
    # March 2024 has 21 days from Sunday to Thursday.
    assert page.totals.remaining == (21 * 8 - 6) * HOUR_MS


def test_uncached_pages_are_ignored(session) -> None:
    result = services.save_page(session, ProjectsPage(projects=[Project(id=1, name="Alpha")]))

    assert result.is_empty()
    assert _ids(session, ProjectEntity) == set()


def test_report_for_one_project_keeps_other_projects_rows(session, seed, load_html) -> None:
    seed(records=[_report_row(777, 486, dt.date(2024, 2, 20)), _report_row(778, 14, dt.date(2024, 2, 20))])
    report_filter = ReportFilter(
        project=Project(id=14, name="Tikal"),
        start=dt.date(2024, 2, 18),
        finish=dt.date(2024, 2, 24),
    )
    catalogue = [Project(id=14, name="Tikal", tasks=[ProjectTask(id=5, name="Development")])]
    page = parsers.parse_report_page(load_html("report.html"), report_filter, catalogue)

    result = services.save_report_page(session, page)

    assert result.get("report").deleted == 1
    assert _ids(session, ReportRecordEntity) == {201, 202, 777}
    other_filter = ReportFilter(
        project=Project(id=486, name="HumanEyes"),
        start=dt.date(2024, 2, 18),
        finish=dt.date(2024, 2, 24),
    )
    other = services.load_report_page(session, other_filter)
    assert [record.id for record in other.records] == [777]
