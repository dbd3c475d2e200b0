"""Service layer for tasks, subtasks, projects and progress ranking."""

from taskledger.services.progress_ranker import (
    compute_progress_state,
    progress_rank,
    sort_by_progress,
)
from taskledger.services.project_service import ProjectService
from taskledger.services.subtask_service import SubtaskService
from taskledger.services.task_service import TaskService

__all__ = [
    "ProjectService",
    "SubtaskService",
    "TaskService",
    "compute_progress_state",
    "progress_rank",
    "sort_by_progress",
]
