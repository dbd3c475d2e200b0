"""Tests for Database connection lifecycle and store placement."""

import asyncio
import threading
from pathlib import Path

import aiosqlite
import pytest
from taskledger.domain.models import CreateTaskInput
from taskledger.infrastructure.database import (
    Database,
    get_data_dir,
    get_default_db_path,
)


class TestDefaultPath:
    def test_honours_xdg_data_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))

        path = get_default_db_path()

        assert path == tmp_path / "xdg" / "taskledger" / "taskledger.db"
        assert path.parent.is_dir()

    def test_falls_back_to_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        assert get_data_dir() == tmp_path / ".local" / "share" / "taskledger"

    @pytest.mark.asyncio
    async def test_database_without_path_uses_default(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))

        db = Database()

        assert db.db_path == tmp_path / "taskledger" / "taskledger.db"
        assert not db.is_memory


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_file_store_uses_wal(self, file_db: Database) -> None:
        async with file_db._get_connection() as conn:
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()

        assert row[0].lower() == "wal"

    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self, memory_db: Database) -> None:
        async with memory_db._get_connection() as conn:
            cursor = await conn.execute("PRAGMA foreign_keys")
            row = await cursor.fetchone()

        assert row[0] == 1
        assert await memory_db.validate_foreign_keys() == []

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, memory_db: Database) -> None:
        first = memory_db.migration_results
        again = await memory_db.initialize()

        assert again is first

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "taskledger.db"

        async with Database(db_path):
            pass

        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, temp_db_path: Path) -> None:
        async with Database(temp_db_path) as db:
            task = await db.tasks.create(CreateTaskInput(title="persisted"))

        async with Database(temp_db_path) as reopened:
            found = await reopened.tasks.find_by_id(task.id)
            results = reopened.migration_results

        assert found is not None
        assert found.title == "persisted"
        assert all(r.name != "create_tasks_table" for r in results)

    @pytest.mark.asyncio
    async def test_close_then_lazy_reopen(self, temp_db_path: Path) -> None:
        db = Database(temp_db_path)
        await db.initialize()
        await db.close()

        # First use after close opens the connection again
        tasks = await db.tasks.find_all()
        await db.close()

        assert tasks == []

    @pytest.mark.asyncio
    async def test_corrupt_file_releases_connection(self, temp_db_path: Path) -> None:
        temp_db_path.write_bytes(b"this is not a sqlite database" * 64)
        threads_before = threading.active_count()
        db = Database(temp_db_path)

        with pytest.raises(aiosqlite.DatabaseError):
            await db.initialize()

        # The worker thread exits shortly after its connection is closed
        for _ in range(100):
            if threading.active_count() <= threads_before:
                break
            await asyncio.sleep(0.01)

        assert threading.active_count() <= threads_before
        assert db._conn is None

    @pytest.mark.asyncio
    async def test_close_without_open(self, temp_db_path: Path) -> None:
        db = Database(temp_db_path)
        await db.close()


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_index_usage_lists_named_indexes(self, memory_db: Database) -> None:
        usage = await memory_db.get_index_usage()
        names = {index["name"] for index in usage["indexes"]}

        assert usage["index_count"] == len(usage["indexes"])
        assert "idx_subtasks_task_id" in names
        assert not any(name.startswith("sqlite_") for name in names)

    @pytest.mark.asyncio
    async def test_service_properties_are_cached(self, memory_db: Database) -> None:
        assert memory_db.tasks is memory_db.tasks
        assert memory_db.subtasks is memory_db.subtasks
        assert memory_db.projects is memory_db.projects
