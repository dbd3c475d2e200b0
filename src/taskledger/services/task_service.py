"""Task persistence and the paginated task listing.

Mutations are silent no-ops for unknown ids: the UPDATE affects zero rows and
the read-back returns ``None``. Constraint violations (for example an unknown
``project_id``) surface as ``aiosqlite.IntegrityError`` after the pending
statement has been rolled back.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import aiosqlite

from taskledger.domain.models import (
    AIMetadata,
    CreateTaskInput,
    ModifiedBy,
    PaginatedResult,
    SortOrder,
    Subtask,
    Task,
    TaskFull,
    TaskListFilters,
    TaskSortField,
    TaskStatus,
    UpdateTaskInput,
)
from taskledger.services.progress_ranker import (
    compute_progress_state,
    progress_rank_sql,
    sort_by_progress,
)
from taskledger.services.row_mapping import (
    dump_json_list,
    parse_ai_metadata,
    row_to_context,
    row_to_subtask,
    row_to_task,
    row_to_task_full,
    to_db_value,
    utc_now,
)

if TYPE_CHECKING:
    from taskledger.infrastructure.database import Database

logger = logging.getLogger(__name__)

# Columns of UpdateTaskInput written as-is
_PLAIN_UPDATE_COLUMNS = (
    "title",
    "description",
    "priority",
    "category",
    "status",
    "complexity",
    "due_date",
    "scheduled_date",
    "modified_by",
)

# Per-task subtask completion aggregate, joined into the page query
_SUBTASK_AGGREGATE_SQL = """
    SELECT task_id,
           COUNT(*) AS subtask_count,
           SUM(CASE WHEN status = 'done' THEN 1 ELSE 0 END) AS done_count
    FROM subtasks
    GROUP BY task_id
"""


class TaskService:
    """Service for task CRUD, scheduling and progress-ordered listing."""

    def __init__(self, db: "Database") -> None:
        """Initialize task service.

        Args:
            db: Database instance for storage operations
        """
        self.db = db

    # Reads

    async def find_by_id(self, task_id: UUID) -> Task | None:
        async with self.db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = await cursor.fetchone()
            return row_to_task(row) if row else None

    async def find_full_by_id(self, task_id: UUID) -> TaskFull | None:
        """Load the hydrated aggregate, subtasks in ascending order.

        Returns:
            The task with context, AI metadata, subtasks and progress state,
            or None if no such task exists
        """
        async with self.db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = await cursor.fetchone()
            if row is None:
                return None

            cursor = await conn.execute(
                'SELECT * FROM subtasks WHERE task_id = ? ORDER BY "order" ASC',
                (str(task_id),),
            )
            subtasks = [row_to_subtask(r) for r in await cursor.fetchall()]

        task = row_to_task_full(row, subtasks)
        task.progress_state = compute_progress_state(task, subtasks)
        return task

    async def find_all(self, filters: TaskListFilters | None = None) -> list[Task]:
        """List task summaries matching ``filters``.

        Ordered by ascending priority, newest first within a priority. Paging
        fields of the filters are ignored; ``limit`` caps the row count.
        """
        filters = filters or TaskListFilters()
        where_sql, params = filters.build_where_clause()

        query = f"SELECT * FROM tasks WHERE {where_sql} ORDER BY priority ASC, created_at DESC"
        if filters.limit is not None:
            query += " LIMIT ?"
            params.append(filters.limit)

        return await self._fetch_tasks(query, params)

    async def find_urgent(self) -> list[Task]:
        """Open priority-1 tasks, earliest due date first (undated last)."""
        return await self._fetch_tasks(
            """
            SELECT * FROM tasks
            WHERE status != ? AND priority = 1
            ORDER BY due_date IS NULL, due_date ASC
            """,
            [TaskStatus.DONE.value],
        )

    async def find_active(self) -> list[Task]:
        """In-progress tasks, most recently modified first."""
        return await self._fetch_tasks(
            "SELECT * FROM tasks WHERE status = ? ORDER BY modified_at DESC",
            [TaskStatus.IN_PROGRESS.value],
        )

    async def find_for_date(self, day: date) -> list[Task]:
        return await self._fetch_tasks(
            "SELECT * FROM tasks WHERE scheduled_date = ? ORDER BY priority ASC",
            [day.isoformat()],
        )

    async def find_for_month(self, year: int, month: int) -> list[Task]:
        """Tasks scheduled within the given calendar month, by date."""
        if not 1 <= month <= 12:
            raise ValueError(f"month must be in range [1, 12], got {month}")

        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)

        return await self._fetch_tasks(
            """
            SELECT * FROM tasks
            WHERE scheduled_date >= ? AND scheduled_date < ?
            ORDER BY scheduled_date ASC, priority ASC
            """,
            [start.isoformat(), end.isoformat()],
        )

    async def find_unscheduled(self, project_id: UUID | None = None) -> list[Task]:
        """Open tasks without a scheduled date, optionally for one project."""
        query = "SELECT * FROM tasks WHERE scheduled_date IS NULL AND status != ?"
        params: list[Any] = [TaskStatus.DONE.value]

        if project_id is not None:
            query += " AND project_id = ?"
            params.append(str(project_id))

        query += " ORDER BY priority ASC"
        return await self._fetch_tasks(query, params)

    async def find_all_full_paginated(
        self, filters: TaskListFilters | None = None
    ) -> PaginatedResult[TaskFull]:
        """One page of hydrated tasks matching ``filters``.

        The page query joins a grouped per-task subtask aggregate so that the
        storage-level ORDER BY evaluates the exact progress rank; the same rank
        is then recomputed from the hydrated subtasks to re-sort the page and
        set ``progress_state``. Pages therefore partition one global order.

        Args:
            filters: Filters, page number, page size and sort (default: first
                page of everything, by progress state)

        Returns:
            PaginatedResult whose ``total`` counts every matching task
        """
        filters = filters or TaskListFilters()
        where_sql, where_params = filters.build_where_clause(alias="t")

        async with self.db._get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT COUNT(*) FROM tasks t WHERE {where_sql}", where_params
            )
            count_row = await cursor.fetchone()
            total = count_row[0] if count_row else 0

            if total == 0:
                return PaginatedResult[TaskFull](
                    items=[], total=0, page=filters.page, per_page=filters.per_page, total_pages=0
                )

            order_sql = self._order_by_clause(filters)
            cursor = await conn.execute(
                f"""
                SELECT t.*,
                       COALESCE(agg.subtask_count, 0) AS subtask_count,
                       COALESCE(agg.done_count, 0) AS done_count
                FROM tasks t
                LEFT JOIN ({_SUBTASK_AGGREGATE_SQL}) agg ON agg.task_id = t.id
                WHERE {where_sql}
                ORDER BY {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*where_params, filters.per_page, filters.offset],
            )
            task_rows = list(await cursor.fetchall())
            subtasks_by_task = await self._load_subtasks(conn, [row["id"] for row in task_rows])

        items = []
        for row in task_rows:
            task = row_to_task_full(row, subtasks_by_task.get(row["id"], []))
            task.progress_state = compute_progress_state(task, task.subtasks)
            items.append(task)

        if filters.sort_by == TaskSortField.PROGRESS_STATE:
            items = sort_by_progress(items, descending=filters.sort_order == SortOrder.DESC)

        return PaginatedResult[TaskFull](
            items=items,
            total=total,
            page=filters.page,
            per_page=filters.per_page,
            total_pages=PaginatedResult.page_count(total, filters.per_page),
        )

    # Writes

    async def create(self, task_input: CreateTaskInput) -> TaskFull:
        """Insert a new pending task with default AI metadata.

        Returns:
            The stored aggregate, read back after the insert
        """
        task_id = uuid4()
        now = utc_now().isoformat()

        async with self.db._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO tasks (
                    id, project_id, title, description, priority, category, status,
                    complexity, due_date, scheduled_date, created_at, business_rules,
                    ai_metadata, modified_at, modified_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(task_id),
                    to_db_value(task_input.project_id),
                    task_input.title,
                    task_input.description,
                    task_input.priority,
                    task_input.category.value,
                    TaskStatus.PENDING.value,
                    to_db_value(task_input.complexity),
                    to_db_value(task_input.due_date),
                    to_db_value(task_input.scheduled_date),
                    now,
                    dump_json_list([]),
                    AIMetadata().model_dump_json(),
                    now,
                    ModifiedBy.USER.value,
                ),
            )

        logger.info(f"Created task {task_id}")
        task = await self.find_full_by_id(task_id)
        assert task is not None
        return task

    async def update(self, task_id: UUID, changes: UpdateTaskInput) -> TaskFull | None:
        """Apply a sparse update.

        Only fields explicitly set on ``changes`` are written. ``context`` and
        ``ai_metadata`` are merged into the stored values, read inside the
        same transaction. Setting status to done stamps completed_at.

        Returns:
            The task after the update, or None if it does not exist
        """
        supplied = changes.supplied()
        now = utc_now().isoformat()
        updates: dict[str, Any] = {"modified_at": now}

        for column in _PLAIN_UPDATE_COLUMNS:
            if column in supplied:
                updates[column] = to_db_value(supplied[column])

        if supplied.get("status") == TaskStatus.DONE:
            updates["completed_at"] = now

        async with self.db._transaction() as conn:
            if changes.context is not None or changes.ai_metadata is not None:
                cursor = await conn.execute(
                    """
                    SELECT business_rules, technical_notes, acceptance_criteria, ai_metadata
                    FROM tasks WHERE id = ?
                    """,
                    (str(task_id),),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None

                if changes.context is not None:
                    context = row_to_context(row).merge(changes.context)
                    updates["business_rules"] = dump_json_list(context.business_rules)
                    updates["technical_notes"] = context.technical_notes
                    updates["acceptance_criteria"] = dump_json_list(context.acceptance_criteria)

                if changes.ai_metadata is not None:
                    merged = parse_ai_metadata(row["ai_metadata"]).merge(changes.ai_metadata)
                    updates["ai_metadata"] = merged.model_dump_json()

            await self._update_columns(conn, task_id, updates)

        return await self.find_full_by_id(task_id)

    async def update_status(
        self,
        task_id: UUID,
        status: TaskStatus,
        actor: ModifiedBy = ModifiedBy.USER,
    ) -> TaskFull | None:
        """Change status and record who did it.

        Moving to in_progress stamps the start time only if none is recorded
        yet. Moving to done stamps completed_at; leaving done keeps it.

        Returns:
            The task after the update, or None if it does not exist
        """
        now = utc_now().isoformat()
        updates: dict[str, Any] = {
            "status": status.value,
            "modified_at": now,
            "modified_by": actor.value,
        }

        if status == TaskStatus.DONE:
            updates["completed_at"] = now

        async with self.db._transaction() as conn:
            if status == TaskStatus.IN_PROGRESS:
                cursor = await conn.execute(
                    "SELECT timestamps_started_at FROM tasks WHERE id = ?", (str(task_id),)
                )
                row = await cursor.fetchone()
                if row is not None and not row["timestamps_started_at"]:
                    updates["timestamps_started_at"] = now

            await self._update_columns(conn, task_id, updates)

        logger.debug(f"Task {task_id} status -> {status.value} by {actor.value}")
        return await self.find_full_by_id(task_id)

    async def schedule(self, task_id: UUID, day: date) -> TaskFull | None:
        async with self.db._transaction() as conn:
            await self._update_columns(
                conn,
                task_id,
                {"scheduled_date": day.isoformat(), "modified_at": utc_now().isoformat()},
            )
        return await self.find_full_by_id(task_id)

    async def unschedule(self, task_id: UUID) -> TaskFull | None:
        async with self.db._transaction() as conn:
            await self._update_columns(
                conn, task_id, {"scheduled_date": None, "modified_at": utc_now().isoformat()}
            )
        return await self.find_full_by_id(task_id)

    async def save_full(self, task: TaskFull) -> TaskFull | None:
        """Write a whole aggregate back, replacing all of its subtasks.

        Runs in one transaction. Nothing is written for a task id that is
        not stored.

        Returns:
            The stored aggregate, or None if the task does not exist
        """
        task_id = str(task.id)
        context = task.context

        async with self.db._transaction() as conn:
            updated = await self._update_columns(
                conn,
                task.id,
                {
                    "project_id": to_db_value(task.project_id),
                    "title": task.title,
                    "description": task.description,
                    "status": task.status.value,
                    "priority": task.priority,
                    "category": task.category.value,
                    "complexity": to_db_value(task.complexity),
                    "business_rules": dump_json_list(context.business_rules),
                    "technical_notes": context.technical_notes,
                    "acceptance_criteria": dump_json_list(context.acceptance_criteria),
                    "ai_metadata": task.ai_metadata.model_dump_json(),
                    "timestamps_started_at": to_db_value(task.started_at),
                    "completed_at": to_db_value(task.completed_at),
                    "due_date": to_db_value(task.due_date),
                    "scheduled_date": to_db_value(task.scheduled_date),
                    "modified_at": utc_now().isoformat(),
                    "modified_by": to_db_value(task.modified_by),
                },
            )
            if not updated:
                return None

            await conn.execute("DELETE FROM subtasks WHERE task_id = ?", (task_id,))
            await conn.executemany(
                """
                INSERT INTO subtasks (
                    id, task_id, title, status, "order", description,
                    acceptance_criteria, technical_notes, prompt_context,
                    created_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [self._subtask_params(task_id, subtask) for subtask in task.subtasks],
            )

        return await self.find_full_by_id(task.id)

    async def delete(self, task_id: UUID) -> bool:
        """Delete a task and its subtasks. Not reversible.

        Returns:
            True if the task existed
        """
        async with self.db._transaction() as conn:
            await conn.execute("DELETE FROM subtasks WHERE task_id = ?", (str(task_id),))
            cursor = await conn.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted task {task_id}")
        return deleted

    # Helpers

    async def _fetch_tasks(self, query: str, params: list[Any]) -> list[Task]:
        async with self.db._get_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return [row_to_task(row) for row in rows]

    async def _update_columns(
        self, conn: aiosqlite.Connection, task_id: UUID, updates: dict[str, Any]
    ) -> bool:
        set_sql = ", ".join(f"{column} = ?" for column in updates)
        cursor = await conn.execute(
            f"UPDATE tasks SET {set_sql} WHERE id = ?",
            [*updates.values(), str(task_id)],
        )
        return cursor.rowcount > 0

    async def _load_subtasks(
        self, conn: aiosqlite.Connection, task_ids: list[str]
    ) -> dict[str, list[Subtask]]:
        """Subtasks of exactly ``task_ids`` in one query, grouped per task."""
        grouped: dict[str, list[Subtask]] = defaultdict(list)
        if not task_ids:
            return grouped

        placeholders = ",".join("?" * len(task_ids))
        cursor = await conn.execute(
            f'SELECT * FROM subtasks WHERE task_id IN ({placeholders}) ORDER BY task_id, "order" ASC',
            task_ids,
        )
        for row in await cursor.fetchall():
            grouped[row["task_id"]].append(row_to_subtask(row))
        return grouped

    @staticmethod
    def _order_by_clause(filters: TaskListFilters) -> str:
        direction = "DESC" if filters.sort_order == SortOrder.DESC else "ASC"

        if filters.sort_by == TaskSortField.PROGRESS_STATE:
            rank_sql = progress_rank_sql(
                status_col="t.status",
                description_col="t.description",
                count_expr="COALESCE(agg.subtask_count, 0)",
                done_expr="COALESCE(agg.done_count, 0)",
            )
            return f"{rank_sql} {direction}, t.priority ASC, t.created_at DESC, t.id ASC"
        if filters.sort_by == TaskSortField.PRIORITY:
            return f"t.priority {direction}, t.created_at DESC, t.id ASC"
        if filters.sort_by == TaskSortField.TITLE:
            return f"t.title COLLATE NOCASE {direction}, t.id ASC"
        return f"t.created_at {direction}, t.id ASC"

    @staticmethod
    def _subtask_params(task_id: str, subtask: Subtask) -> tuple[Any, ...]:
        return (
            str(subtask.id),
            task_id,
            subtask.title,
            subtask.status.value,
            subtask.order,
            subtask.description,
            dump_json_list(subtask.acceptance_criteria),
            subtask.technical_notes,
            subtask.prompt_context,
            subtask.created_at.isoformat(),
            to_db_value(subtask.completed_at),
        )
