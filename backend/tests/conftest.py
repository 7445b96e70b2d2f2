from __future__ import annotations

import datetime as dt
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from worktracker import models
from worktracker.database import build_engine, build_session_factory, init_db

DATA_DIR = Path(__file__).parent / "data"


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="function")
def engine(temp_db_path: Path):
    engine = build_engine(f"sqlite:///{temp_db_path}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def sample_day() -> dt.date:
    return dt.date(2024, 3, 1)


@pytest.fixture()
def load_html() -> Callable[[str], str]:
    def _load(name: str) -> str:
        return (DATA_DIR / name).read_text(encoding="utf-8")

    return _load


@pytest.fixture()
def seed(session: Session) -> Callable[..., None]:
    """Insert projects, tasks, keys and records straight into the store."""

    def _seed(projects=(), tasks=(), keys=(), records=()) -> None:
        for project_id, name in projects:
            session.add(models.ProjectEntity(id=project_id, name=name, description=""))
        for task_id, name in tasks:
            session.add(models.ProjectTaskEntity(id=task_id, name=name, description=""))
        session.flush()
        for project_id, task_id in keys:
            session.add(models.ProjectTaskKeyEntity(project_id=project_id, task_id=task_id))
        for record in records:
            session.add(record)
        session.commit()

    return _seed
