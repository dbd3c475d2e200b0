"""Conversion between SQLite rows and domain models.

Read-path decoding never raises for malformed stored values: unreadable JSON,
unknown legacy enum values and unparseable timestamps fall back to fixed
defaults so that one bad row cannot break a listing.
"""

import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

import aiosqlite
from pydantic import ValidationError

from taskledger.domain.models import (
    AIMetadata,
    ModifiedBy,
    Project,
    Subtask,
    SubtaskStatus,
    Task,
    TaskCategory,
    TaskComplexity,
    TaskContext,
    TaskFull,
    TaskStatus,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

DEFAULT_PRIORITY = 2


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_value(value: Any) -> Any:
    """Convert a model value to what is stored in its column."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def dump_json_list(values: list[str] | None) -> str | None:
    return json.dumps(values) if values is not None else None


def parse_json_safe(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.debug(f"Unreadable JSON column value, using default: {raw!r}")
        return default


def parse_str_list(raw: str | None, default: list[str] | None) -> list[str] | None:
    """Decode a JSON array of strings; anything else yields ``default``."""
    value = parse_json_safe(raw, default)
    if isinstance(value, list):
        return [str(item) for item in value]
    return default


def parse_enum(enum_cls: type[E], raw: Any, default: E) -> E:
    try:
        return enum_cls(raw)
    except ValueError:
        if raw is not None:
            logger.debug(f"Unknown {enum_cls.__name__} value {raw!r}, using {default.value}")
        return default


def parse_optional_enum(enum_cls: type[E], raw: Any) -> E | None:
    try:
        return enum_cls(raw) if raw is not None else None
    except ValueError:
        logger.debug(f"Unknown {enum_cls.__name__} value {raw!r}, dropping it")
        return None


def parse_datetime(raw: str | None) -> datetime | None:
    """Parse a stored timestamp; naive values (SQLite CURRENT_TIMESTAMP) are UTC."""
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        logger.debug(f"Unparseable timestamp {raw!r}")
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        logger.debug(f"Unparseable date {raw!r}")
        return None


def parse_uuid(raw: str | None) -> UUID | None:
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        logger.debug(f"Malformed id {raw!r}")
        return None


def parse_priority(raw: Any) -> int:
    if isinstance(raw, int) and 1 <= raw <= 3:
        return raw
    return DEFAULT_PRIORITY


def parse_ai_metadata(raw: str | None) -> AIMetadata:
    value = parse_json_safe(raw, None)
    if not isinstance(value, dict):
        return AIMetadata()
    try:
        return AIMetadata.model_validate(value)
    except ValidationError:
        logger.debug("Malformed ai_metadata, using default")
        return AIMetadata()


def _created_at(row_dict: dict[str, Any]) -> datetime:
    return parse_datetime(row_dict.get("created_at")) or utc_now()


def row_to_task(row: aiosqlite.Row) -> Task:
    """Convert a tasks row to the flat Task summary."""
    row_dict = dict(row)

    return Task(
        id=UUID(row_dict["id"]),
        project_id=parse_uuid(row_dict.get("project_id")),
        title=row_dict["title"],
        description=row_dict.get("description"),
        priority=parse_priority(row_dict.get("priority")),
        category=parse_enum(TaskCategory, row_dict.get("category"), TaskCategory.FEATURE),
        status=parse_enum(TaskStatus, row_dict.get("status"), TaskStatus.PENDING),
        complexity=parse_optional_enum(TaskComplexity, row_dict.get("complexity")),
        due_date=parse_date(row_dict.get("due_date")),
        scheduled_date=parse_date(row_dict.get("scheduled_date")),
        created_at=_created_at(row_dict),
        completed_at=parse_datetime(row_dict.get("completed_at")),
    )


def row_to_context(row: aiosqlite.Row) -> TaskContext:
    """Decode the context columns of a tasks row."""
    row_dict = dict(row)
    return TaskContext(
        business_rules=parse_str_list(row_dict.get("business_rules"), []) or [],
        technical_notes=row_dict.get("technical_notes"),
        acceptance_criteria=parse_str_list(row_dict.get("acceptance_criteria"), None),
    )


def row_to_task_full(row: aiosqlite.Row, subtasks: list[Subtask]) -> TaskFull:
    """Convert a tasks row plus its subtasks to the hydrated aggregate."""
    row_dict = dict(row)
    summary = row_to_task(row)

    return TaskFull(
        **summary.model_dump(),
        context=row_to_context(row),
        ai_metadata=parse_ai_metadata(row_dict.get("ai_metadata")),
        started_at=parse_datetime(row_dict.get("timestamps_started_at")),
        modified_at=parse_datetime(row_dict.get("modified_at")),
        modified_by=parse_optional_enum(ModifiedBy, row_dict.get("modified_by")),
        subtasks=subtasks,
    )


def row_to_subtask(row: aiosqlite.Row) -> Subtask:
    row_dict = dict(row)

    order = row_dict.get("order")
    return Subtask(
        id=UUID(row_dict["id"]),
        task_id=UUID(row_dict["task_id"]),
        title=row_dict["title"],
        status=parse_enum(SubtaskStatus, row_dict.get("status"), SubtaskStatus.PENDING),
        order=order if isinstance(order, int) and order >= 0 else 0,
        description=row_dict.get("description"),
        acceptance_criteria=parse_str_list(row_dict.get("acceptance_criteria"), None),
        technical_notes=row_dict.get("technical_notes"),
        prompt_context=row_dict.get("prompt_context"),
        created_at=_created_at(row_dict),
        completed_at=parse_datetime(row_dict.get("completed_at")),
    )


def row_to_project(row: aiosqlite.Row) -> Project:
    row_dict = dict(row)

    return Project(
        id=UUID(row_dict["id"]),
        name=row_dict["name"],
        path=row_dict["path"],
        description=row_dict.get("description"),
        display_order=row_dict.get("display_order") or 0,
        color=row_dict.get("color"),
        created_at=_created_at(row_dict),
    )
