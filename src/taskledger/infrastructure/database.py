"""SQLite connection management for the task store."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
from aiosqlite import Connection

from taskledger.domain.models import MigrationResult
from taskledger.infrastructure.exceptions import MigrationError
from taskledger.infrastructure.logger import get_logger
from taskledger.infrastructure.migrations import SchemaMigrator

if TYPE_CHECKING:
    from taskledger.services.project_service import ProjectService
    from taskledger.services.subtask_service import SubtaskService
    from taskledger.services.task_service import TaskService

logger = get_logger(__name__)

DB_FILENAME = "taskledger.db"

# Milliseconds a statement waits on a locked database before failing
BUSY_TIMEOUT_MS = 5000


def get_data_dir() -> Path:
    """Per-user data directory, honouring XDG_DATA_HOME."""
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "taskledger"


def get_default_db_path() -> Path:
    """Default database location; the containing directory is created if absent."""
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / DB_FILENAME


class Database:
    """Process-wide SQLite store behind a single shared connection.

    The connection is opened lazily and reused by every service until
    ``close()``; opening it also runs the schema migrations. There is no
    in-process locking: callers must not race writes to the same rows.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file, ``:memory:`` for a private
                in-memory store (default: per-user data directory)
        """
        self.db_path = db_path if db_path is not None else get_default_db_path()
        self.migration_results: list[MigrationResult] = []
        self._initialized = False
        self._conn: Connection | None = None
        self._task_service: TaskService | None = None
        self._subtask_service: SubtaskService | None = None
        self._project_service: ProjectService | None = None

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    async def initialize(self) -> list[MigrationResult]:
        """Open the connection and bring the schema up to date.

        Safe to call repeatedly; only the first call does any work.

        Returns:
            The migration report of the first call

        Raises:
            MigrationError: If a migration step failed. Steps before it
                remain applied and the connection is closed again.
            aiosqlite.DatabaseError: If the file is not a usable SQLite
                database; the connection is closed before re-raising
        """
        if self._initialized:
            return self.migration_results

        if not self.is_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(self.db_path))
        try:
            conn.row_factory = aiosqlite.Row

            if not self.is_memory:
                # WAL lets external readers see the store while we write
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")

            results = await SchemaMigrator(conn).run()
            self.migration_results = results

            if results and not results[-1].success:
                raise MigrationError(results)
        except BaseException:
            # The connection's worker thread keeps the process alive until closed
            await conn.close()
            raise

        self._conn = conn
        self._initialized = True
        logger.info(
            "database_initialized",
            db_path=str(self.db_path),
            migration_steps=len(results),
        )
        return results

    async def close(self) -> None:
        """Close the shared connection. The store can be reopened afterwards."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("database_closed", db_path=str(self.db_path))
        self._initialized = False

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[Connection]:
        """Yield the shared connection, opening it on first use."""
        if self._conn is None:
            await self.initialize()
        assert self._conn is not None
        yield self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[Connection]:
        """Yield the connection for a unit of writes.

        Commits when the block exits normally. On any exception the pending
        changes are rolled back and the exception propagates unchanged.
        """
        async with self._get_connection() as conn:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def validate_foreign_keys(self) -> list[tuple[str, ...]]:
        """Run PRAGMA foreign_key_check and return violations.

        Returns:
            List of foreign key violations (empty if valid)
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute("PRAGMA foreign_key_check")
            violations = await cursor.fetchall()
            return [tuple(row) for row in violations]

    async def get_index_usage(self) -> dict[str, Any]:
        """Report which indexes exist.

        Returns:
            Dictionary with index information
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT name, tbl_name FROM sqlite_master "
                "WHERE type='index' AND name NOT LIKE 'sqlite_%' ORDER BY tbl_name, name"
            )
            indexes = list(await cursor.fetchall())
            return {
                "index_count": len(indexes),
                "indexes": [{"name": row[0], "table": row[1]} for row in indexes],
            }

    # Service properties (lazy-loaded)
    @property
    def tasks(self) -> "TaskService":
        """Get task service instance."""
        if self._task_service is None:
            from taskledger.services.task_service import TaskService

            self._task_service = TaskService(self)
        return self._task_service

    @property
    def subtasks(self) -> "SubtaskService":
        """Get subtask service instance."""
        if self._subtask_service is None:
            from taskledger.services.subtask_service import SubtaskService

            self._subtask_service = SubtaskService(self)
        return self._subtask_service

    @property
    def projects(self) -> "ProjectService":
        """Get project service instance."""
        if self._project_service is None:
            from taskledger.services.project_service import ProjectService

            self._project_service = ProjectService(self)
        return self._project_service
