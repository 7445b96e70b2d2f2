from worktracker import html
from worktracker.schemas import Project, ProjectTask
from worktracker.scripts import (
    REPORT_SCRIPT_START,
    REPORT_TASK_IDS,
    SCRIPT_END,
    TIME_SCRIPT_START,
    TIME_TASK_IDS,
    assign_tasks,
    find_script,
    mine_task_ids,
    populate_task_ids,
)


def _doc(*scripts: str):
    return html.parse_document("".join(f"<script>{script}</script>" for script in scripts))


def test_find_script_returns_text_between_markers() -> None:
    doc = _doc("var a = 1;", "var x; START body END tail")

    assert find_script(doc, "START", "END") == " body "


def test_find_script_without_end_marker_returns_rest() -> None:
    doc = _doc("START rest of script")

    assert find_script(doc, "START", "END") == " rest of script"


def test_find_script_without_start_marker_is_empty() -> None:
    assert find_script(_doc("nothing here"), "START", "END") == ""
    assert find_script(html.parse_document("<p>no scripts</p>"), "START", "END") == ""


def test_time_script_task_ids(load_html) -> None:
    doc = html.parse_document(load_html("time.html"))

    text = find_script(doc, TIME_SCRIPT_START, SCRIPT_END)
    mined = mine_task_ids(text, TIME_TASK_IDS)

    # The commented example above the start marker is not mined.
    assert 325 not in mined
    assert mined[486] == [1, 5]
    assert mined[14] == [20, 7, 5]


def test_report_script_task_ids(load_html) -> None:
    doc = html.parse_document(load_html("reports.html"))

    mined = mine_task_ids(find_script(doc, REPORT_SCRIPT_START, SCRIPT_END), REPORT_TASK_IDS)

    assert mined == {486: [1, 5], 14: [20, 7, 5, 4], 7: [101, 102, 103]}


def test_association_for_unknown_project_is_dropped() -> None:
    text = 'project_property = project_prefix + 7; obj_tasks[project_property] = "101,102,103";'
    projects = [Project(id=1, name="Alpha")]
    tasks = [ProjectTask(id=101, name="Design")]

    assign_tasks(projects, tasks, mine_task_ids(text, REPORT_TASK_IDS))

    assert projects[0].tasks == []


def test_assign_tasks_filters_unknown_task_ids() -> None:
    projects = [Project(id=1, name="Alpha", tasks=[ProjectTask(id=9, name="Stale")])]
    tasks = [ProjectTask(id=2, name="Build"), ProjectTask(id=1, name="Analyse")]

    assign_tasks(projects, tasks, {1: [1, 2, 3]})

    assert [task.name for task in projects[0].tasks] == ["Analyse", "Build"]


def test_populate_without_script_keeps_projects() -> None:
    projects = [Project(id=1, name="Alpha", tasks=[ProjectTask(id=2, name="Build")])]

    assert not populate_task_ids(_doc("var other;"), projects, [], TIME_SCRIPT_START, TIME_TASK_IDS)
    assert [task.id for task in projects[0].tasks] == [2]
