"""Integration tests for TaskService against a real SQLite store."""

from datetime import date
from uuid import uuid4

import aiosqlite
import pytest
from taskledger.domain.models import (
    AIMetadata,
    AIMetadataUpdate,
    CreateSubtaskInput,
    CreateTaskInput,
    ModifiedBy,
    Project,
    Subtask,
    SubtaskStatus,
    TaskCategory,
    TaskComplexity,
    TaskContextUpdate,
    TaskListFilters,
    TaskProgressState,
    TaskStatus,
    UpdateTaskInput,
)
from taskledger.infrastructure.database import Database
from taskledger.services import SubtaskService, TaskService


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="Write the changelog"))

        assert task.title == "Write the changelog"
        assert task.status == TaskStatus.PENDING
        assert task.priority == 2
        assert task.category == TaskCategory.FEATURE
        assert task.ai_metadata == AIMetadata()
        assert task.context.business_rules == []
        assert task.context.acceptance_criteria is None
        assert task.modified_at is not None
        assert task.modified_by == ModifiedBy.USER
        assert task.subtasks == []
        assert task.progress_state == TaskProgressState.IDLE

    @pytest.mark.asyncio
    async def test_create_with_project_and_dates(
        self, task_service: TaskService, sample_project: Project
    ) -> None:
        task = await task_service.create(
            CreateTaskInput(
                project_id=sample_project.id,
                title="Ship it",
                priority=1,
                category=TaskCategory.BUG,
                complexity=TaskComplexity.SIMPLE,
                due_date=date(2024, 6, 30),
                scheduled_date=date(2024, 6, 1),
            )
        )

        assert task.project_id == sample_project.id
        assert task.complexity == TaskComplexity.SIMPLE
        assert task.due_date == date(2024, 6, 30)
        assert task.scheduled_date == date(2024, 6, 1)

    @pytest.mark.asyncio
    async def test_create_with_unknown_project_fails(self, task_service: TaskService) -> None:
        with pytest.raises(aiosqlite.IntegrityError):
            await task_service.create(CreateTaskInput(project_id=uuid4(), title="Orphan"))

        # Rolled back: nothing half-written
        assert await task_service.find_all() == []


class TestReads:
    @pytest.mark.asyncio
    async def test_read_misses_return_empty(self, task_service: TaskService) -> None:
        assert await task_service.find_by_id(uuid4()) is None
        assert await task_service.find_full_by_id(uuid4()) is None
        assert await task_service.find_all() == []
        assert await task_service.find_active() == []

    @pytest.mark.asyncio
    async def test_find_all_orders_by_priority(self, task_service: TaskService) -> None:
        await task_service.create(CreateTaskInput(title="low", priority=3))
        await task_service.create(CreateTaskInput(title="high", priority=1))
        await task_service.create(CreateTaskInput(title="mid", priority=2))

        tasks = await task_service.find_all()

        assert [task.title for task in tasks] == ["high", "mid", "low"]

    @pytest.mark.asyncio
    async def test_find_all_with_filters_and_limit(self, task_service: TaskService) -> None:
        for i in range(5):
            await task_service.create(CreateTaskInput(title=f"bug {i}", category=TaskCategory.BUG))
        await task_service.create(CreateTaskInput(title="feature"))

        bugs = await task_service.find_all(TaskListFilters(category=TaskCategory.BUG, limit=3))

        assert len(bugs) == 3
        assert all(task.category == TaskCategory.BUG for task in bugs)

    @pytest.mark.asyncio
    async def test_find_urgent(self, task_service: TaskService) -> None:
        late = await task_service.create(
            CreateTaskInput(title="late", priority=1, due_date=date(2024, 1, 10))
        )
        early = await task_service.create(
            CreateTaskInput(title="early", priority=1, due_date=date(2024, 1, 5))
        )
        undated = await task_service.create(CreateTaskInput(title="undated", priority=1))
        finished = await task_service.create(CreateTaskInput(title="finished", priority=1))
        await task_service.update_status(finished.id, TaskStatus.DONE)
        await task_service.create(CreateTaskInput(title="normal", priority=2))

        urgent = await task_service.find_urgent()

        assert [task.id for task in urgent] == [early.id, late.id, undated.id]

    @pytest.mark.asyncio
    async def test_find_active(self, task_service: TaskService) -> None:
        first = await task_service.create(CreateTaskInput(title="first"))
        second = await task_service.create(CreateTaskInput(title="second"))
        await task_service.create(CreateTaskInput(title="idle"))
        await task_service.update_status(first.id, TaskStatus.IN_PROGRESS)
        await task_service.update_status(second.id, TaskStatus.IN_PROGRESS)

        active = await task_service.find_active()

        assert [task.id for task in active] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_calendar_queries(self, task_service: TaskService) -> None:
        may_31 = await task_service.create(
            CreateTaskInput(title="may 31", scheduled_date=date(2024, 5, 31))
        )
        june_1 = await task_service.create(
            CreateTaskInput(title="june 1", scheduled_date=date(2024, 6, 1))
        )
        june_30 = await task_service.create(
            CreateTaskInput(title="june 30", scheduled_date=date(2024, 6, 30))
        )
        unscheduled = await task_service.create(CreateTaskInput(title="someday"))

        assert [t.id for t in await task_service.find_for_date(date(2024, 6, 1))] == [june_1.id]
        assert [t.id for t in await task_service.find_for_month(2024, 6)] == [june_1.id, june_30.id]
        assert [t.id for t in await task_service.find_for_month(2024, 5)] == [may_31.id]
        assert [t.id for t in await task_service.find_unscheduled()] == [unscheduled.id]

    @pytest.mark.asyncio
    async def test_find_for_month_december(self, task_service: TaskService) -> None:
        task = await task_service.create(
            CreateTaskInput(title="nye", scheduled_date=date(2024, 12, 31))
        )

        assert [t.id for t in await task_service.find_for_month(2024, 12)] == [task.id]

    @pytest.mark.asyncio
    async def test_find_for_month_rejects_bad_month(self, task_service: TaskService) -> None:
        with pytest.raises(ValueError):
            await task_service.find_for_month(2024, 13)

    @pytest.mark.asyncio
    async def test_find_unscheduled_by_project(
        self, task_service: TaskService, sample_project: Project
    ) -> None:
        mine = await task_service.create(
            CreateTaskInput(title="mine", project_id=sample_project.id)
        )
        await task_service.create(CreateTaskInput(title="other"))

        tasks = await task_service.find_unscheduled(project_id=sample_project.id)

        assert [task.id for task in tasks] == [mine.id]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_sparse_update_leaves_other_fields(self, task_service: TaskService) -> None:
        task = await task_service.create(
            CreateTaskInput(title="Original", description="keep me", priority=3)
        )

        updated = await task_service.update(task.id, UpdateTaskInput(title="Renamed"))

        assert updated is not None
        assert updated.title == "Renamed"
        assert updated.description == "keep me"
        assert updated.priority == 3

    @pytest.mark.asyncio
    async def test_explicit_none_clears_nullable_field(self, task_service: TaskService) -> None:
        task = await task_service.create(
            CreateTaskInput(title="t", scheduled_date=date(2024, 1, 1))
        )

        updated = await task_service.update(task.id, UpdateTaskInput(scheduled_date=None))

        assert updated is not None
        assert updated.scheduled_date is None

    @pytest.mark.asyncio
    async def test_context_fields_map_to_columns(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        await task_service.update(
            task.id,
            UpdateTaskInput(context=TaskContextUpdate(business_rules=["no downtime"])),
        )

        updated = await task_service.update(
            task.id,
            UpdateTaskInput(context=TaskContextUpdate(technical_notes="use WAL")),
        )

        assert updated is not None
        assert updated.context.business_rules == ["no downtime"]
        assert updated.context.technical_notes == "use WAL"

    @pytest.mark.asyncio
    async def test_context_merge_over_malformed_and_cleared_columns(
        self, memory_db: Database, task_service: TaskService
    ) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        async with memory_db._transaction() as conn:
            await conn.execute(
                "UPDATE tasks SET business_rules = ?, acceptance_criteria = ? WHERE id = ?",
                ("{not json", '["ship it"]', str(task.id)),
            )

        updated = await task_service.update(
            task.id,
            UpdateTaskInput(
                context=TaskContextUpdate(technical_notes="notes", acceptance_criteria=None)
            ),
        )

        assert updated is not None
        assert updated.context.business_rules == []
        assert updated.context.technical_notes == "notes"
        assert updated.context.acceptance_criteria is None

    @pytest.mark.asyncio
    async def test_context_update_unknown_task(self, task_service: TaskService) -> None:
        result = await task_service.update(
            uuid4(), UpdateTaskInput(context=TaskContextUpdate(technical_notes="x"))
        )

        assert result is None

    @pytest.mark.asyncio
    async def test_ai_metadata_is_merged(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        await task_service.update(
            task.id,
            UpdateTaskInput(ai_metadata=AIMetadataUpdate(session_ids=["s1"], tokens_used=10)),
        )

        updated = await task_service.update(
            task.id, UpdateTaskInput(ai_metadata=AIMetadataUpdate(tokens_used=99))
        )

        assert updated is not None
        assert updated.ai_metadata.session_ids == ["s1"]
        assert updated.ai_metadata.tokens_used == 99

    @pytest.mark.asyncio
    async def test_done_stamps_completed_at(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))

        updated = await task_service.update(task.id, UpdateTaskInput(status=TaskStatus.DONE))

        assert updated is not None
        assert updated.completed_at is not None

    @pytest.mark.asyncio
    async def test_update_unknown_id_is_a_no_op(self, task_service: TaskService) -> None:
        assert await task_service.update(uuid4(), UpdateTaskInput(title="x")) is None
        assert (
            await task_service.update(uuid4(), UpdateTaskInput(ai_metadata=AIMetadataUpdate()))
            is None
        )

    @pytest.mark.asyncio
    async def test_modified_at_advances(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))

        updated = await task_service.update(task.id, UpdateTaskInput(description="d"))

        assert updated is not None and task.modified_at is not None
        assert updated.modified_at is not None
        assert updated.modified_at >= task.modified_at


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_started_at_stamped_once(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))

        first = await task_service.update_status(task.id, TaskStatus.IN_PROGRESS, ModifiedBy.AI)
        await task_service.update_status(task.id, TaskStatus.PENDING)
        second = await task_service.update_status(task.id, TaskStatus.IN_PROGRESS)

        assert first is not None and second is not None
        assert first.started_at is not None
        assert second.started_at == first.started_at

    @pytest.mark.asyncio
    async def test_records_actor(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))

        updated = await task_service.update_status(task.id, TaskStatus.IN_PROGRESS, ModifiedBy.AI)

        assert updated is not None
        assert updated.modified_by == ModifiedBy.AI
        assert updated.progress_state == TaskProgressState.AI_WORKING

    @pytest.mark.asyncio
    async def test_leaving_done_keeps_completed_at(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        done = await task_service.update_status(task.id, TaskStatus.DONE)

        reopened = await task_service.update_status(task.id, TaskStatus.PENDING)

        assert done is not None and reopened is not None
        assert reopened.completed_at == done.completed_at

    @pytest.mark.asyncio
    async def test_unknown_id(self, task_service: TaskService) -> None:
        assert await task_service.update_status(uuid4(), TaskStatus.IN_PROGRESS) is None


class TestScheduling:
    @pytest.mark.asyncio
    async def test_schedule_and_unschedule(self, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))

        scheduled = await task_service.schedule(task.id, date(2024, 7, 4))
        assert scheduled is not None
        assert scheduled.scheduled_date == date(2024, 7, 4)

        unscheduled = await task_service.unschedule(task.id)
        assert unscheduled is not None
        assert unscheduled.scheduled_date is None


class TestSaveFull:
    @pytest.mark.asyncio
    async def test_replaces_subtasks(
        self, task_service: TaskService, subtask_service: SubtaskService
    ) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        await subtask_service.create(CreateSubtaskInput(task_id=task.id, title="old"))
        loaded = await task_service.find_full_by_id(task.id)
        assert loaded is not None

        loaded.title = "rewritten"
        loaded.context.business_rules = ["rule"]
        loaded.subtasks = [
            Subtask(task_id=task.id, title="new a", order=0, status=SubtaskStatus.DONE),
            Subtask(task_id=task.id, title="new b", order=1),
        ]

        saved = await task_service.save_full(loaded)

        assert saved is not None
        assert saved.title == "rewritten"
        assert saved.context.business_rules == ["rule"]
        assert [s.title for s in saved.subtasks] == ["new a", "new b"]
        assert saved.progress_state == TaskProgressState.IN_EXECUTION

    @pytest.mark.asyncio
    async def test_unknown_task_writes_nothing(
        self, task_service: TaskService, subtask_service: SubtaskService
    ) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        ghost = task.model_copy(update={"id": uuid4(), "subtasks": []})

        assert await task_service.save_full(ghost) is None
        assert await subtask_service.find_by_task_id(ghost.id) == []


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_cascades_to_subtasks(
        self, task_service: TaskService, subtask_service: SubtaskService
    ) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        await subtask_service.create(CreateSubtaskInput(task_id=task.id, title="a"))
        await subtask_service.create(CreateSubtaskInput(task_id=task.id, title="b"))

        assert await task_service.delete(task.id) is True

        assert await task_service.find_full_by_id(task.id) is None
        assert await subtask_service.find_by_task_id(task.id) == []

    @pytest.mark.asyncio
    async def test_delete_unknown(self, task_service: TaskService) -> None:
        assert await task_service.delete(uuid4()) is False


class TestDecodeDefaults:
    """Malformed stored values decode to defaults instead of failing."""

    @pytest.mark.asyncio
    async def test_malformed_columns(self, memory_db: Database, task_service: TaskService) -> None:
        task = await task_service.create(CreateTaskInput(title="t"))
        async with memory_db._get_connection() as conn:
            await conn.execute(
                """
                UPDATE tasks
                SET business_rules = 'not json', acceptance_criteria = '{',
                    ai_metadata = '[1, 2]', category = 'chore', status = 'structuring',
                    priority = 9, modified_at = 'sometime'
                WHERE id = ?
                """,
                (str(task.id),),
            )
            await conn.commit()

        loaded = await task_service.find_full_by_id(task.id)

        assert loaded is not None
        assert loaded.context.business_rules == []
        assert loaded.context.acceptance_criteria is None
        assert loaded.ai_metadata == AIMetadata()
        assert loaded.category == TaskCategory.FEATURE
        assert loaded.status == TaskStatus.PENDING
        assert loaded.priority == 2
        assert loaded.modified_at is None
