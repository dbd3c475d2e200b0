"""Domain models for taskledger."""

from taskledger.domain.models import (
    AIMetadata,
    MigrationResult,
    ModifiedBy,
    PaginatedResult,
    Project,
    Subtask,
    SubtaskStatus,
    Task,
    TaskCategory,
    TaskContext,
    TaskFull,
    TaskListFilters,
    TaskProgressState,
    TaskStatus,
)

__all__ = [
    "AIMetadata",
    "MigrationResult",
    "ModifiedBy",
    "PaginatedResult",
    "Project",
    "Subtask",
    "SubtaskStatus",
    "Task",
    "TaskCategory",
    "TaskContext",
    "TaskFull",
    "TaskListFilters",
    "TaskProgressState",
    "TaskStatus",
]
