"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from taskledger.domain.models import CreateProjectInput, Project
from taskledger.infrastructure.database import Database
from taskledger.services import ProjectService, SubtaskService, TaskService


# Database fixtures
@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Temporary database file path (WAL side files live next to it)."""
    return tmp_path / "taskledger.db"


@pytest.fixture
async def memory_db() -> AsyncGenerator[Database, None]:
    """Create in-memory database for fast tests."""
    db = Database(Path(":memory:"))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def file_db(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create file-based database for persistence tests."""
    db = Database(temp_db_path)
    await db.initialize()
    yield db
    await db.close()


# Service fixtures
@pytest.fixture
async def task_service(memory_db: Database) -> TaskService:
    """Create TaskService with in-memory database."""
    return TaskService(memory_db)


@pytest.fixture
async def subtask_service(memory_db: Database) -> SubtaskService:
    """Create SubtaskService with in-memory database."""
    return SubtaskService(memory_db)


@pytest.fixture
async def project_service(memory_db: Database) -> ProjectService:
    """Create ProjectService with in-memory database."""
    return ProjectService(memory_db)


# Test data fixtures
@pytest.fixture
async def sample_project(project_service: ProjectService) -> Project:
    """Create a project to attach tasks to."""
    return await project_service.create(
        CreateProjectInput(name="ledger", path="/tmp/ledger", description="Sample project")
    )


# CLI Testing Fixtures
@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Isolate CLI runs: database, data dir and home all live under tmp_path.

    Yields:
        Path of the database file the CLI will use
    """
    db_path = tmp_path / "cli" / "taskledger.db"
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("TASKLEDGER_DB_PATH", str(db_path))
    monkeypatch.setenv("TASKLEDGER_LOG_LEVEL", "WARNING")
    monkeypatch.chdir(tmp_path)
    yield db_path
