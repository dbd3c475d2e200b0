"""Idempotent schema migrations run when the database is opened.

Every step inspects ``sqlite_master`` / ``PRAGMA table_info`` before issuing
DDL, so running the whole sequence against an up-to-date store changes
nothing. Steps are hand-ordered: later steps may rely on tables created by
earlier ones. Each step commits on its own; there is no rollback across
steps.
"""

from collections.abc import Awaitable, Callable, Sequence

from aiosqlite import Connection

from taskledger.domain.models import MigrationResult
from taskledger.infrastructure.logger import get_logger

logger = get_logger(__name__)

MigrationStep = Callable[[Connection], Awaitable[MigrationResult]]

# Name of the terminal report entry appended when a step raises
MIGRATION_ERROR = "migration_error"

# settings key marking that the v2 status/context rewrite has run
TASKS_SCHEMA_V2_MARKER = "migration_tasks_schema_v2"

# Retired task status values and their current equivalents
LEGACY_STATUS_MAP: dict[str, tuple[str, ...]] = {
    "in_progress": ("structuring", "working"),
    "pending": ("structured", "standby", "ready_to_review"),
    "done": ("completed",),
}


async def table_exists(conn: Connection, table: str) -> bool:
    cursor = await conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,),
    )
    return await cursor.fetchone() is not None


async def column_exists(conn: Connection, table: str, column: str) -> bool:
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    columns = await cursor.fetchall()
    return any(col[1] == column for col in columns)


async def _add_missing_columns(
    conn: Connection, table: str, columns: Sequence[tuple[str, str]]
) -> list[str]:
    """ALTER TABLE ADD COLUMN for each (name, type) not present yet."""
    added = []
    for name, column_type in columns:
        if not await column_exists(conn, table, name):
            await conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {column_type}")
            added.append(name)
    return added


async def ensure_projects_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "projects"):
        if not await column_exists(conn, "projects", "display_order"):
            await conn.execute("ALTER TABLE projects ADD COLUMN display_order INTEGER DEFAULT 0")
            return MigrationResult(
                name="add_projects_display_order",
                success=True,
                message="Added display_order column",
            )
        return MigrationResult(
            name="ensure_projects_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            path TEXT NOT NULL,
            description TEXT,
            routes TEXT DEFAULT '[]',
            tmux_config TEXT DEFAULT '{"session_name":"","tabs":[]}',
            business_rules TEXT DEFAULT '',
            tmux_configured INTEGER DEFAULT 0,
            display_order INTEGER DEFAULT 0,
            color TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    return MigrationResult(name="create_projects_table", success=True, message="Table created")


async def _create_task_indexes(conn: Connection) -> None:
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id)")
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_tasks_scheduled_date ON tasks(scheduled_date)"
    )


async def ensure_tasks_table(conn: Connection) -> MigrationResult:
    if not await table_exists(conn, "tasks"):
        await conn.execute(
            """
            CREATE TABLE tasks (
                id TEXT PRIMARY KEY,
                project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
                title TEXT NOT NULL,
                description TEXT,
                priority INTEGER NOT NULL DEFAULT 2,
                category TEXT NOT NULL DEFAULT 'feature',
                status TEXT NOT NULL DEFAULT 'pending',
                complexity TEXT,
                due_date TEXT,
                scheduled_date TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                completed_at TEXT,
                business_rules TEXT,
                technical_notes TEXT,
                acceptance_criteria TEXT,
                ai_metadata TEXT,
                timestamps_started_at TEXT,
                modified_at TEXT,
                modified_by TEXT
            )
            """
        )
        await _create_task_indexes(conn)
        return MigrationResult(
            name="create_tasks_table", success=True, message="Table created with indexes"
        )

    # Older stores predate these columns; context columns are handled by
    # migrate_tasks_schema_v2 so their legacy data can be copied over.
    added = await _add_missing_columns(
        conn,
        "tasks",
        [
            ("project_id", "TEXT"),
            ("description", "TEXT"),
            ("priority", "INTEGER DEFAULT 2"),
            ("category", "TEXT DEFAULT 'feature'"),
            ("complexity", "TEXT"),
            ("due_date", "TEXT"),
            ("scheduled_date", "TEXT"),
            ("completed_at", "TEXT"),
            ("ai_metadata", "TEXT"),
            ("timestamps_started_at", "TEXT"),
            ("modified_at", "TEXT"),
            ("modified_by", "TEXT"),
        ],
    )
    await _create_task_indexes(conn)

    return MigrationResult(
        name="migrate_tasks_table",
        success=True,
        message=f"Added columns: {', '.join(added)}" if added else "No changes needed",
    )


async def ensure_subtasks_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "subtasks"):
        return MigrationResult(
            name="ensure_subtasks_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE subtasks (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            "order" INTEGER NOT NULL DEFAULT 0,
            description TEXT,
            acceptance_criteria TEXT,
            technical_notes TEXT,
            prompt_context TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            completed_at TEXT
        )
        """
    )
    await conn.execute("CREATE INDEX idx_subtasks_task_id ON subtasks(task_id)")

    return MigrationResult(
        name="create_subtasks_table", success=True, message="Table created with index"
    )


async def ensure_logs_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "logs"):
        return MigrationResult(name="ensure_logs_table", success=True, message="Table already exists")

    await conn.execute(
        """
        CREATE TABLE logs (
            id TEXT PRIMARY KEY,
            project_id TEXT REFERENCES projects(id),
            project_name TEXT,
            session_id TEXT,
            summary TEXT,
            files_modified TEXT,
            tokens_input INTEGER DEFAULT 0,
            tokens_output INTEGER DEFAULT 0,
            tokens_total INTEGER DEFAULT 0,
            raw_json TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    return MigrationResult(name="create_logs_table", success=True, message="Table created")


async def ensure_settings_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "settings"):
        return MigrationResult(
            name="ensure_settings_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )
    return MigrationResult(name="create_settings_table", success=True, message="Table created")


async def ensure_operation_logs_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "operation_logs"):
        return MigrationResult(
            name="ensure_operation_logs_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE operation_logs (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            operation TEXT NOT NULL,
            old_data TEXT,
            new_data TEXT,
            source TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    await conn.execute(
        "CREATE INDEX idx_operation_logs_entity ON operation_logs(entity_type, entity_id)"
    )
    await conn.execute("CREATE INDEX idx_operation_logs_created ON operation_logs(created_at)")

    return MigrationResult(
        name="create_operation_logs_table", success=True, message="Table created with indexes"
    )


async def ensure_task_executions_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "task_executions"):
        return MigrationResult(
            name="ensure_task_executions_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE task_executions (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            subtask_id TEXT REFERENCES subtasks(id) ON DELETE CASCADE,
            execution_type TEXT NOT NULL DEFAULT 'full',
            status TEXT NOT NULL DEFAULT 'running',
            current_step INTEGER DEFAULT 0,
            total_steps INTEGER DEFAULT 0,
            current_step_description TEXT,
            waiting_for_input INTEGER DEFAULT 0,
            tmux_session TEXT,
            pid INTEGER,
            last_heartbeat TEXT DEFAULT CURRENT_TIMESTAMP,
            error_message TEXT,
            started_at TEXT DEFAULT CURRENT_TIMESTAMP,
            ended_at TEXT
        )
        """
    )
    await conn.execute("CREATE INDEX idx_task_executions_task_id ON task_executions(task_id)")
    await conn.execute("CREATE INDEX idx_task_executions_status ON task_executions(status)")
    # At most one running execution per task
    await conn.execute(
        """
        CREATE UNIQUE INDEX idx_task_executions_running
        ON task_executions(task_id) WHERE status = 'running'
        """
    )

    return MigrationResult(
        name="create_task_executions_table", success=True, message="Table created with indexes"
    )


async def ensure_task_terminals_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "task_terminals"):
        return MigrationResult(
            name="ensure_task_terminals_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE task_terminals (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            tmux_session TEXT NOT NULL,
            last_subtask_id TEXT REFERENCES subtasks(id) ON DELETE SET NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    await conn.execute("CREATE UNIQUE INDEX idx_task_terminals_task_id ON task_terminals(task_id)")
    await conn.execute(
        "CREATE INDEX idx_task_terminals_tmux_session ON task_terminals(tmux_session)"
    )

    return MigrationResult(
        name="create_task_terminals_table", success=True, message="Table created with indexes"
    )


async def ensure_task_images_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "task_images"):
        return MigrationResult(
            name="ensure_task_images_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE task_images (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            data BLOB NOT NULL,
            mime_type TEXT NOT NULL,
            file_name TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    await conn.execute("CREATE INDEX idx_task_images_task_id ON task_images(task_id)")

    return MigrationResult(
        name="create_task_images_table", success=True, message="Table created with index"
    )


async def ensure_activity_logs_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "activity_logs"):
        return MigrationResult(
            name="ensure_activity_logs_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE activity_logs (
            id TEXT PRIMARY KEY,
            event_type TEXT NOT NULL,
            entity_type TEXT,
            entity_id TEXT,
            project_id TEXT REFERENCES projects(id),
            metadata TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    for index_sql in (
        "CREATE INDEX idx_activity_logs_event_type ON activity_logs(event_type)",
        "CREATE INDEX idx_activity_logs_entity ON activity_logs(entity_type, entity_id)",
        "CREATE INDEX idx_activity_logs_project_id ON activity_logs(project_id)",
        "CREATE INDEX idx_activity_logs_created_at ON activity_logs(created_at)",
    ):
        await conn.execute(index_sql)

    return MigrationResult(
        name="create_activity_logs_table", success=True, message="Table created with indexes"
    )


async def ensure_user_sessions_table(conn: Connection) -> MigrationResult:
    if await table_exists(conn, "user_sessions"):
        return MigrationResult(
            name="ensure_user_sessions_table", success=True, message="Table already exists"
        )

    await conn.execute(
        """
        CREATE TABLE user_sessions (
            id TEXT PRIMARY KEY,
            started_at TEXT NOT NULL,
            ended_at TEXT,
            duration_seconds INTEGER,
            app_version TEXT
        )
        """
    )
    return MigrationResult(name="create_user_sessions_table", success=True, message="Table created")


async def migrate_tasks_schema_v2(conn: Connection) -> MigrationResult:
    """Collapse the legacy status vocabulary and flatten the context columns.

    Status mapping:
        structuring, working                  -> in_progress
        structured, standby, ready_to_review  -> pending
        completed                             -> done

    ``context_business_rules``, ``context_technical_notes`` and
    ``context_acceptance_criteria`` are copied into their unprefixed
    successors when those are added; ``context_description`` fills an empty
    ``description``. Legacy columns are left in place.
    """
    cursor = await conn.execute(
        "SELECT value FROM settings WHERE key = ?", (TASKS_SCHEMA_V2_MARKER,)
    )
    row = await cursor.fetchone()
    if row is not None and row[0] == "applied":
        return MigrationResult(
            name="migrate_tasks_schema_v2", success=True, message="Already applied"
        )

    changes: list[str] = []

    for new_status, legacy_statuses in LEGACY_STATUS_MAP.items():
        placeholders = ",".join("?" * len(legacy_statuses))
        cursor = await conn.execute(
            f"UPDATE tasks SET status = ? WHERE status IN ({placeholders})",
            (new_status, *legacy_statuses),
        )
        changes.append(f"{cursor.rowcount} tasks -> {new_status}")

    for column in ("business_rules", "technical_notes", "acceptance_criteria"):
        if await column_exists(conn, "tasks", column):
            continue
        await conn.execute(f"ALTER TABLE tasks ADD COLUMN {column} TEXT")
        legacy_column = f"context_{column}"
        if await column_exists(conn, "tasks", legacy_column):
            await conn.execute(
                f"UPDATE tasks SET {column} = {legacy_column} WHERE {legacy_column} IS NOT NULL"
            )
        changes.append(f"Added {column} column")

    if await column_exists(conn, "tasks", "context_description"):
        cursor = await conn.execute(
            """
            UPDATE tasks
            SET description = context_description
            WHERE (description IS NULL OR description = '') AND context_description IS NOT NULL
            """
        )
        changes.append(f"Merged context_description into description ({cursor.rowcount} tasks)")

    await conn.execute(
        "INSERT OR REPLACE INTO settings (key, value) VALUES (?, 'applied')",
        (TASKS_SCHEMA_V2_MARKER,),
    )

    return MigrationResult(name="migrate_tasks_schema_v2", success=True, message="; ".join(changes))


async def migrate_projects_color(conn: Connection) -> MigrationResult:
    if await column_exists(conn, "projects", "color"):
        return MigrationResult(
            name="migrate_projects_color", success=True, message="Column already exists"
        )

    await conn.execute("ALTER TABLE projects ADD COLUMN color TEXT")
    return MigrationResult(name="migrate_projects_color", success=True, message="Added color column")


DEFAULT_STEPS: tuple[MigrationStep, ...] = (
    ensure_projects_table,
    ensure_tasks_table,
    ensure_subtasks_table,
    ensure_logs_table,
    ensure_settings_table,
    ensure_operation_logs_table,
    ensure_task_executions_table,
    ensure_task_terminals_table,
    ensure_task_images_table,
    ensure_activity_logs_table,
    ensure_user_sessions_table,
    migrate_tasks_schema_v2,
    migrate_projects_color,
)


class SchemaMigrator:
    """Run the ordered migration steps against an open connection.

    Usage:
        results = await SchemaMigrator(conn).run()
        if not results[-1].success:
            ...
    """

    def __init__(self, conn: Connection, steps: Sequence[MigrationStep] = DEFAULT_STEPS) -> None:
        self.conn = conn
        self.steps = tuple(steps)

    async def run(self) -> list[MigrationResult]:
        """Apply every step in order and report per-step outcome.

        Each step is committed as soon as it succeeds. If a step raises, its
        own uncommitted changes are rolled back, the remaining steps are
        skipped and a terminal ``migration_error`` entry is appended. This
        method does not raise for step failures.

        Returns:
            One MigrationResult per step attempted
        """
        results: list[MigrationResult] = []

        for step in self.steps:
            try:
                result = await step(self.conn)
                await self.conn.commit()
            except Exception as e:
                await self.conn.rollback()
                logger.error("migration_failed", step=step.__name__, error=str(e))
                results.append(MigrationResult(name=MIGRATION_ERROR, success=False, message=str(e)))
                break

            logger.debug("migration_step", name=result.name, message=result.message)
            results.append(result)

        return results
