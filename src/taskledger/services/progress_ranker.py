"""Progress ranking for tasks.

Derives a task's workflow state from its status and its subtasks' completion.
The state is never persisted; it is computed for display and used as the sort
key of the task listing.

Rank table (lower = needs attention sooner):

    1  in-execution     some, but not all, subtasks done
    2  ready-to-start   subtasks exist, none done
    3  ready-to-review  every subtask done, task not yet done
    4  ai-working       task status in_progress (subtasks ignored)
    5  started          no subtasks, non-blank description
    6  idle             anything else
    7  done             task status done (subtasks ignored)

Ties are broken by ascending priority (1 sorts first).
"""

from collections.abc import Iterable, Sequence

from taskledger.domain.models import (
    Subtask,
    SubtaskStatus,
    Task,
    TaskFull,
    TaskProgressState,
    TaskStatus,
)

# A description made only of these characters is blank; progress_rank_sql
# trims the same set
DESCRIPTION_WHITESPACE = " \t\n\v\f\r"


def rank_from_counts(
    status: TaskStatus,
    description: str | None,
    subtask_count: int,
    done_count: int,
) -> TaskProgressState:
    """Classify a task from its status and subtask completion counts."""
    if status == TaskStatus.DONE:
        return TaskProgressState.DONE
    if status == TaskStatus.IN_PROGRESS:
        return TaskProgressState.AI_WORKING

    if subtask_count > 0:
        if done_count >= subtask_count:
            return TaskProgressState.READY_TO_REVIEW
        if done_count > 0:
            return TaskProgressState.IN_EXECUTION
        return TaskProgressState.READY_TO_START

    if description and description.strip(DESCRIPTION_WHITESPACE):
        return TaskProgressState.STARTED
    return TaskProgressState.IDLE


def compute_progress_state(task: Task, subtasks: Sequence[Subtask]) -> TaskProgressState:
    """Classify ``task`` given its subtasks."""
    done_count = sum(1 for subtask in subtasks if subtask.status == SubtaskStatus.DONE)
    return rank_from_counts(task.status, task.description, len(subtasks), done_count)


def progress_rank(task: Task, subtasks: Sequence[Subtask]) -> int:
    """Numeric rank 1..7 of ``task``; see the module docstring."""
    return compute_progress_state(task, subtasks).rank


def progress_sort_key(task: TaskFull, descending: bool = False) -> tuple[int, int]:
    """Sort key for a hydrated task: rank, then ascending priority."""
    rank = progress_rank(task, task.subtasks)
    return (-rank if descending else rank, task.priority)


def sort_by_progress(tasks: Iterable[TaskFull], descending: bool = False) -> list[TaskFull]:
    """Stable sort of hydrated tasks by progress rank and priority."""
    return sorted(tasks, key=lambda task: progress_sort_key(task, descending))


# SQLite spelling of DESCRIPTION_WHITESPACE
_WHITESPACE_SQL = "' ' || char(9) || char(10) || char(11) || char(12) || char(13)"


def progress_rank_sql(
    status_col: str,
    description_col: str,
    count_expr: str,
    done_expr: str,
) -> str:
    """SQL CASE expression computing the same rank as ``rank_from_counts``.

    Args:
        status_col: Column holding the task status
        description_col: Column holding the task description
        count_expr: Expression for the task's subtask count (must not be NULL)
        done_expr: Expression for the task's done-subtask count (must not be NULL)
    """
    ranks = {state: state.rank for state in TaskProgressState}
    return f"""
        CASE
            WHEN {status_col} = '{TaskStatus.DONE.value}' THEN {ranks[TaskProgressState.DONE]}
            WHEN {status_col} = '{TaskStatus.IN_PROGRESS.value}' THEN {ranks[TaskProgressState.AI_WORKING]}
            WHEN {count_expr} > 0 AND {done_expr} >= {count_expr} THEN {ranks[TaskProgressState.READY_TO_REVIEW]}
            WHEN {count_expr} > 0 AND {done_expr} > 0 THEN {ranks[TaskProgressState.IN_EXECUTION]}
            WHEN {count_expr} > 0 THEN {ranks[TaskProgressState.READY_TO_START]}
            WHEN TRIM(COALESCE({description_col}, ''), {_WHITESPACE_SQL}) != '' THEN {ranks[TaskProgressState.STARTED]}
            ELSE {ranks[TaskProgressState.IDLE]}
        END
    """
