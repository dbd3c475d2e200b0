"""Subtask persistence with dense per-task ordering."""

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from taskledger.domain.models import (
    CreateSubtaskInput,
    Subtask,
    SubtaskStatus,
    UpdateSubtaskInput,
)
from taskledger.services.row_mapping import (
    dump_json_list,
    row_to_subtask,
    to_db_value,
    utc_now,
)

if TYPE_CHECKING:
    from taskledger.infrastructure.database import Database

logger = logging.getLogger(__name__)


class SubtaskService:
    """Service for the ordered subtasks of a task.

    ``order`` is kept dense (0..n-1) by ``reorder`` and ``delete``. Becoming
    done stamps completed_at; moving away from done leaves it in place.
    """

    def __init__(self, db: "Database") -> None:
        """Initialize subtask service.

        Args:
            db: Database instance for storage operations
        """
        self.db = db

    async def find_by_id(self, subtask_id: UUID) -> Subtask | None:
        async with self.db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM subtasks WHERE id = ?", (str(subtask_id),))
            row = await cursor.fetchone()
            return row_to_subtask(row) if row else None

    async def find_by_task_id(self, task_id: UUID) -> list[Subtask]:
        async with self.db._get_connection() as conn:
            cursor = await conn.execute(
                'SELECT * FROM subtasks WHERE task_id = ? ORDER BY "order" ASC',
                (str(task_id),),
            )
            return [row_to_subtask(row) for row in await cursor.fetchall()]

    async def create(self, subtask_input: CreateSubtaskInput) -> Subtask:
        """Append a subtask to its task.

        Without an explicit ``order`` the subtask goes after the current
        last one (max order + 1, or 0 for the first).

        Raises:
            aiosqlite.IntegrityError: If the task does not exist
        """
        subtask_id = uuid4()
        task_id = str(subtask_input.task_id)

        async with self.db._transaction() as conn:
            order = subtask_input.order
            if order is None:
                cursor = await conn.execute(
                    'SELECT MAX("order") FROM subtasks WHERE task_id = ?', (task_id,)
                )
                row = await cursor.fetchone()
                order = 0 if row is None or row[0] is None else row[0] + 1

            await conn.execute(
                """
                INSERT INTO subtasks (
                    id, task_id, title, status, "order", description,
                    acceptance_criteria, technical_notes, prompt_context, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(subtask_id),
                    task_id,
                    subtask_input.title,
                    SubtaskStatus.PENDING.value,
                    order,
                    subtask_input.description,
                    dump_json_list(subtask_input.acceptance_criteria),
                    subtask_input.technical_notes,
                    subtask_input.prompt_context,
                    utc_now().isoformat(),
                ),
            )

        subtask = await self.find_by_id(subtask_id)
        assert subtask is not None
        return subtask

    async def update(self, subtask_id: UUID, changes: UpdateSubtaskInput) -> Subtask | None:
        """Apply a sparse update; returns None for an unknown id."""
        updates: dict[str, Any] = {}
        for column, value in changes.supplied().items():
            if column == "acceptance_criteria":
                updates[column] = dump_json_list(value)
            else:
                updates[column] = to_db_value(value)

        if updates.get("status") == SubtaskStatus.DONE.value:
            updates["completed_at"] = utc_now().isoformat()

        if updates:
            set_sql = ", ".join(f'"{column}" = ?' for column in updates)
            async with self.db._transaction() as conn:
                await conn.execute(
                    f"UPDATE subtasks SET {set_sql} WHERE id = ?",
                    [*updates.values(), str(subtask_id)],
                )

        return await self.find_by_id(subtask_id)

    async def update_status(self, subtask_id: UUID, status: SubtaskStatus) -> Subtask | None:
        return await self.update(subtask_id, UpdateSubtaskInput(status=status))

    async def reorder(self, task_id: UUID, ordered_ids: Sequence[UUID]) -> list[Subtask]:
        """Give ``ordered_ids`` the orders 0..n-1 in the listed sequence.

        All updates are applied in one transaction. Ids that do not belong to
        ``task_id`` are not touched.

        Returns:
            The task's subtasks in their new order
        """
        async with self.db._transaction() as conn:
            await conn.executemany(
                'UPDATE subtasks SET "order" = ? WHERE id = ? AND task_id = ?',
                [
                    (position, str(subtask_id), str(task_id))
                    for position, subtask_id in enumerate(ordered_ids)
                ],
            )

        logger.debug(f"Reordered {len(ordered_ids)} subtasks of task {task_id}")
        return await self.find_by_task_id(task_id)

    async def delete(self, subtask_id: UUID) -> bool:
        """Delete one subtask and close the gap in its task's order.

        Returns:
            True if the subtask existed
        """
        async with self.db._transaction() as conn:
            cursor = await conn.execute(
                "SELECT task_id FROM subtasks WHERE id = ?", (str(subtask_id),)
            )
            row = await cursor.fetchone()
            if row is None:
                return False
            task_id = row["task_id"]

            await conn.execute("DELETE FROM subtasks WHERE id = ?", (str(subtask_id),))

            cursor = await conn.execute(
                'SELECT id FROM subtasks WHERE task_id = ? ORDER BY "order" ASC, created_at ASC',
                (task_id,),
            )
            remaining = [r["id"] for r in await cursor.fetchall()]
            await conn.executemany(
                'UPDATE subtasks SET "order" = ? WHERE id = ?',
                [(position, remaining_id) for position, remaining_id in enumerate(remaining)],
            )

        return True

    async def delete_by_task_id(self, task_id: UUID) -> int:
        """Delete every subtask of a task; returns how many were removed."""
        async with self.db._transaction() as conn:
            cursor = await conn.execute("DELETE FROM subtasks WHERE task_id = ?", (str(task_id),))
            return cursor.rowcount
