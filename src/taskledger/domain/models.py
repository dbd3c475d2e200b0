"""Core domain models for taskledger."""

import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

# Page size used when the caller does not ask for one
DEFAULT_PER_PAGE = 20

# Hard ceiling on page size; larger requests are clamped, not rejected
MAX_PER_PAGE = 100


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class SubtaskStatus(str, Enum):
    """Subtask lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskCategory(str, Enum):
    """Closed set of task categories."""

    FEATURE = "feature"
    BUG = "bug"
    REFACTOR = "refactor"
    RESEARCH = "research"
    DOCUMENTATION = "documentation"


class TaskComplexity(str, Enum):
    """Effort estimate attached to a task."""

    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EPIC = "epic"


class ModifiedBy(str, Enum):
    """Actor that performed the last change to a task."""

    USER = "user"
    AI = "ai"  # external assistant process
    CLI = "cli"


class TaskProgressState(str, Enum):
    """Derived workflow state of a task, never persisted.

    Declared in urgency order: the first member needs attention most.
    """

    IN_EXECUTION = "in-execution"  # some subtasks done
    READY_TO_START = "ready-to-start"  # subtasks exist, none done
    READY_TO_REVIEW = "ready-to-review"  # every subtask done
    AI_WORKING = "ai-working"  # status in_progress
    STARTED = "started"  # no subtasks, has a description
    IDLE = "idle"
    DONE = "done"

    @property
    def rank(self) -> int:
        """Sort rank, 1 (most urgent) to 7 (done)."""
        return PROGRESS_STATE_RANKS[self]


PROGRESS_STATE_RANKS: dict[TaskProgressState, int] = {
    state: index for index, state in enumerate(TaskProgressState, start=1)
}


class TaskSortField(str, Enum):
    """Columns the paginated listing can be ordered by."""

    PRIORITY = "priority"
    CREATED_AT = "created_at"
    TITLE = "title"
    PROGRESS_STATE = "progress_state"


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class AIMetadata(BaseModel):
    """Bookkeeping written by the external assistant process.

    Stored as one JSON blob in ``tasks.ai_metadata``. Always present on a
    task; a missing or unreadable blob decodes to the default instance.
    """

    last_interaction: str | None = None
    last_completed_action: str | None = None
    session_ids: list[str] = Field(default_factory=list)
    tokens_used: int = 0
    structuring_complete: bool = False

    def merge(self, patch: "AIMetadataUpdate | dict[str, Any]") -> "AIMetadata":
        """Return a copy with the keys supplied in ``patch`` overridden.

        Only keys explicitly present in the patch are applied; everything
        else keeps its stored value.
        """
        if isinstance(patch, AIMetadataUpdate):
            changes = patch.model_dump(exclude_unset=True)
        else:
            changes = dict(patch)
        return AIMetadata.model_validate({**self.model_dump(), **changes})


class AIMetadataUpdate(BaseModel):
    """Partial AIMetadata; unset fields are left untouched on merge."""

    last_interaction: str | None = None
    last_completed_action: str | None = None
    session_ids: list[str] = Field(default_factory=list)
    tokens_used: int = 0
    structuring_complete: bool = False


class TaskContext(BaseModel):
    """Denormalized task context, one column per field."""

    business_rules: list[str] = Field(default_factory=list)
    technical_notes: str | None = None
    acceptance_criteria: list[str] | None = None

    def merge(self, patch: "TaskContextUpdate") -> "TaskContext":
        """Return a copy with the fields explicitly set on ``patch`` applied."""
        return TaskContext.model_validate(
            {**self.model_dump(), **patch.model_dump(exclude_unset=True)}
        )


class TaskContextUpdate(BaseModel):
    """Partial TaskContext."""

    business_rules: list[str] = Field(default_factory=list)
    technical_notes: str | None = None
    acceptance_criteria: list[str] | None = None


class Project(BaseModel):
    """Project that tasks can belong to."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    path: str
    description: str | None = None
    display_order: int = 0
    color: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CreateProjectInput(BaseModel):
    """Fields accepted when creating a project."""

    name: str = Field(min_length=1)
    path: str
    description: str | None = None
    color: str | None = None
    display_order: int = 0


class Subtask(BaseModel):
    """Ordered step of a task.

    Attributes:
        order: Position within the owning task; dense 0..n-1 after any
            reorder or delete
        completed_at: Stamped when the subtask becomes done, never cleared
    """

    id: UUID = Field(default_factory=uuid4)
    task_id: UUID
    title: str
    status: SubtaskStatus = Field(default=SubtaskStatus.PENDING)
    order: int = Field(default=0, ge=0)
    description: str | None = None
    acceptance_criteria: list[str] | None = None
    technical_notes: str | None = None
    prompt_context: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None


class Task(BaseModel):
    """Flat task summary row.

    Attributes:
        priority: 1 (highest) to 3 (lowest)
        completed_at: Stamped when status becomes done, never cleared
    """

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID | None = None
    title: str
    description: str | None = None
    priority: int = 2
    category: TaskCategory = Field(default=TaskCategory.FEATURE)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    complexity: TaskComplexity | None = None
    due_date: date | None = None
    scheduled_date: date | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None


class TaskFull(Task):
    """Hydrated task aggregate: row, context, AI metadata and subtasks."""

    context: TaskContext = Field(default_factory=TaskContext)
    ai_metadata: AIMetadata = Field(default_factory=AIMetadata)
    started_at: datetime | None = None
    modified_at: datetime | None = None
    modified_by: ModifiedBy | None = None
    subtasks: list[Subtask] = Field(default_factory=list)
    progress_state: TaskProgressState | None = None


class _SparseUpdate(BaseModel):
    """Sparse update: only fields in ``model_fields_set`` are written."""

    def supplied(self) -> dict[str, Any]:
        """Return the explicitly supplied fields and their values."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class CreateTaskInput(BaseModel):
    """Fields accepted when creating a task."""

    project_id: UUID | None = None
    title: str = Field(min_length=1)
    description: str | None = None
    priority: int = Field(default=2, ge=1, le=3)
    category: TaskCategory = Field(default=TaskCategory.FEATURE)
    complexity: TaskComplexity | None = None
    due_date: date | None = None
    scheduled_date: date | None = None


class UpdateTaskInput(_SparseUpdate):
    """Partial task update.

    Passing ``None`` for a nullable field clears it; leaving a field out
    keeps the stored value. ``context`` and ``ai_metadata`` are merged into
    the stored values rather than replacing them.
    """

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    priority: int | None = Field(default=None, ge=1, le=3)
    category: TaskCategory | None = None
    status: TaskStatus | None = None
    complexity: TaskComplexity | None = None
    due_date: date | None = None
    scheduled_date: date | None = None
    modified_by: ModifiedBy | None = None
    context: TaskContextUpdate | None = None
    ai_metadata: AIMetadataUpdate | None = None

    @field_validator("title", "priority", "category", "status")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        """These columns are NOT NULL; they can be changed but not cleared."""
        if v is None:
            raise ValueError("field cannot be cleared")
        return v


class CreateSubtaskInput(BaseModel):
    """Fields accepted when creating a subtask.

    ``order`` defaults to one past the highest existing order of the task.
    """

    task_id: UUID
    title: str = Field(min_length=1)
    description: str | None = None
    order: int | None = Field(default=None, ge=0)
    acceptance_criteria: list[str] | None = None
    technical_notes: str | None = None
    prompt_context: str | None = None


class UpdateSubtaskInput(_SparseUpdate):
    """Partial subtask update."""

    title: str | None = Field(default=None, min_length=1)
    status: SubtaskStatus | None = None
    description: str | None = None
    order: int | None = Field(default=None, ge=0)
    acceptance_criteria: list[str] | None = None
    technical_notes: str | None = None
    prompt_context: str | None = None

    @field_validator("title", "status", "order")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("field cannot be cleared")
        return v


class TaskListFilters(BaseModel):
    """Filtering, paging and sorting criteria for task listings.

    ``status`` accepts a single status or a list; an empty list applies no
    status constraint. ``per_page`` is clamped to MAX_PER_PAGE.
    """

    project_id: UUID | None = None
    status: TaskStatus | list[TaskStatus] | None = None
    priority: int | None = Field(default=None, ge=1, le=3)
    category: TaskCategory | None = None
    scheduled_date: date | None = None
    due_date: date | None = None
    q: str | None = Field(default=None, description="Substring matched against title/description")
    exclude_done: bool = False

    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=DEFAULT_PER_PAGE, ge=1)
    sort_by: TaskSortField = Field(default=TaskSortField.PROGRESS_STATE)
    sort_order: SortOrder = Field(default=SortOrder.ASC)

    limit: int | None = Field(default=None, ge=1, description="Row cap for non-paginated lists")

    @field_validator("per_page")
    @classmethod
    def cap_per_page(cls, v: int) -> int:
        return min(v, MAX_PER_PAGE)

    @field_validator("q")
    @classmethod
    def normalize_query(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    def build_where_clause(self, alias: str = "") -> tuple[str, list[Any]]:
        """Build SQL WHERE clause and parameters for task filtering.

        Args:
            alias: Optional table alias to qualify column names with

        Returns:
            Tuple of (where_clause_sql, parameters); the SQL has no 'WHERE'
            keyword and is "1=1" when no filter is set.
        """
        col = f"{alias}." if alias else ""
        where_clauses: list[str] = []
        params: list[Any] = []

        if self.project_id is not None:
            where_clauses.append(f"{col}project_id = ?")
            params.append(str(self.project_id))

        if isinstance(self.status, list):
            if self.status:
                placeholders = ",".join("?" * len(self.status))
                where_clauses.append(f"{col}status IN ({placeholders})")
                params.extend(status.value for status in self.status)
        elif self.status is not None:
            where_clauses.append(f"{col}status = ?")
            params.append(self.status.value)

        if self.priority is not None:
            where_clauses.append(f"{col}priority = ?")
            params.append(self.priority)

        if self.category is not None:
            where_clauses.append(f"{col}category = ?")
            params.append(self.category.value)

        if self.scheduled_date is not None:
            where_clauses.append(f"{col}scheduled_date = ?")
            params.append(self.scheduled_date.isoformat())

        if self.due_date is not None:
            where_clauses.append(f"{col}due_date = ?")
            params.append(self.due_date.isoformat())

        if self.q is not None:
            escaped = self.q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            where_clauses.append(
                f"({col}title LIKE ? ESCAPE '\\' OR {col}description LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])

        if self.exclude_done:
            where_clauses.append(f"{col}status != ?")
            params.append(TaskStatus.DONE.value)

        if not where_clauses:
            where_clauses.append("1=1")

        return (" AND ".join(where_clauses), params)


T = TypeVar("T")


class PaginatedResult(BaseModel, Generic[T]):
    """One page of a listing.

    ``total`` counts every row matching the filters, independent of paging.
    """

    items: list[T] = Field(default_factory=list)
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    per_page: int = Field(ge=1)
    total_pages: int = Field(ge=0)

    @staticmethod
    def page_count(total: int, per_page: int) -> int:
        return math.ceil(total / per_page) if total else 0


class MigrationResult(BaseModel):
    """Outcome of a single migration step."""

    name: str
    success: bool
    message: str = ""
