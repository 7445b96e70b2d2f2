"""Recover project to task associations from the pages' inline scripts.

The dropdown markup lists projects and tasks separately; which tasks belong to
which project is only written out as JavaScript array assignments.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Pattern

from bs4 import BeautifulSoup

from .html import script_texts
from .schemas import Project, ProjectTask

logger = logging.getLogger(__name__)

TIME_SCRIPT_START = "var task_ids = new Array();"
REPORT_SCRIPT_START = "// Populate obj_tasks with task ids for each relevant project."
SCRIPT_END = "// Prepare an array of task names."

TIME_TASK_IDS = re.compile(r'task_ids\[(\d+)\] = "(.+)";')
REPORT_TASK_IDS = re.compile(
    r'project_property = project_prefix [+] (\d+);\s+obj_tasks\[project_property\] = "(.+)";'
)


def find_script(doc: BeautifulSoup, start: str, end: str) -> str:
    """Text between ``start`` and ``end`` in the first script containing ``start``.

    A missing end marker yields the rest of that script. Without any script
    holding the start marker the result is an empty string.
    """
    for text in script_texts(doc):
        index_start = text.find(start)
        if index_start < 0:
            continue
        index_start += len(start)
        index_end = text.find(end, index_start)
        if index_end < 0:
            return text[index_start:]
        return text[index_start:index_end]
    return ""


def mine_task_ids(text: str, pattern: Pattern[str]) -> Dict[int, List[int]]:
    """Map each project id found by ``pattern`` to its listed task ids."""
    mined: Dict[int, List[int]] = {}
    for match in pattern.finditer(text):
        project_id = int(match.group(1))
        task_ids: List[int] = []
        for token in match.group(2).split(","):
            token = token.strip()
            if token.isdigit():
                task_ids.append(int(token))
        mined[project_id] = task_ids
    return mined


def assign_tasks(
    projects: Iterable[Project],
    tasks: Iterable[ProjectTask],
    mined: Dict[int, List[int]],
) -> None:
    """Replace each project's tasks with the ones the script associates with it.

    Associations for projects missing from ``projects`` are dropped.
    """
    projects_by_id = {project.id: project for project in projects}
    task_list = list(tasks)
    for project in projects_by_id.values():
        project.clear_tasks()
    for project_id, task_ids in mined.items():
        project = projects_by_id.get(project_id)
        if project is None:
            logger.debug("dropping tasks %s of unknown project %s", task_ids, project_id)
            continue
        wanted = set(task_ids)
        project.add_tasks(task for task in task_list if task.id in wanted)


def populate_task_ids(
    doc: BeautifulSoup,
    projects: Iterable[Project],
    tasks: Iterable[ProjectTask],
    start: str,
    pattern: Pattern[str],
    end: str = SCRIPT_END,
) -> bool:
    """Mine the script between ``start`` and ``end`` and assign tasks.

    Returns ``False`` and leaves the projects untouched when no script holds
    the start marker.
    """
    text = find_script(doc, start, end)
    if not text:
        return False
    assign_tasks(projects, tasks, mine_task_ids(text, pattern))
    return True
