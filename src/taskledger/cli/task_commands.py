"""Task and subtask management commands."""

import asyncio
from datetime import date
from typing import Any
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from taskledger.domain.models import (
    DEFAULT_PER_PAGE,
    CreateSubtaskInput,
    CreateTaskInput,
    ModifiedBy,
    SortOrder,
    SubtaskStatus,
    TaskCategory,
    TaskFull,
    TaskListFilters,
    TaskSortField,
    TaskStatus,
)

console = Console()

# Initialize Typer sub-apps
task_app = typer.Typer(help="Task management", no_args_is_help=True)
subtask_app = typer.Typer(help="Subtask management", no_args_is_help=True)

PROGRESS_STYLES = {
    "in-execution": "bold magenta",
    "ready-to-start": "cyan",
    "ready-to-review": "bold green",
    "ai-working": "yellow",
    "started": "blue",
    "idle": "dim",
    "done": "green",
}


def _parse_date(value: str | None, option: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid date '{value}', expected YYYY-MM-DD", param_hint=option) from None


def _resolve_prefix(prefix: str, candidates: list[UUID], kind: str) -> UUID:
    """Resolve a full UUID or unique id prefix against ``candidates``.

    Raises:
        typer.Exit: If no candidate or several candidates match
    """
    try:
        return UUID(prefix)
    except ValueError:
        pass

    matches = [candidate for candidate in candidates if str(candidate).startswith(prefix.lower())]

    if len(matches) == 0:
        console.print(f"[red]Error:[/red] No {kind} found matching prefix '{prefix}'")
        raise typer.Exit(1)
    if len(matches) > 1:
        console.print(f"[red]Error:[/red] Multiple {kind}s match prefix '{prefix}':")
        for match in matches:
            console.print(f"  {match}")
        raise typer.Exit(1)
    return matches[0]


async def _resolve_task_id(task_id_prefix: str, services: dict[str, Any]) -> UUID:
    """Resolve a task ID prefix (e.g. 'ebec23ad') to a full UUID."""
    tasks = await services["task_service"].find_all()
    return _resolve_prefix(task_id_prefix, [task.id for task in tasks], "task")


def _progress_label(task: TaskFull) -> str:
    if task.progress_state is None:
        return "-"
    state = task.progress_state.value
    return f"[{PROGRESS_STYLES[state]}]{state}[/{PROGRESS_STYLES[state]}]"


def _subtask_summary(task: TaskFull) -> str:
    if not task.subtasks:
        return "-"
    done = sum(1 for subtask in task.subtasks if subtask.status == SubtaskStatus.DONE)
    return f"{done}/{len(task.subtasks)}"


@task_app.command("add")
def add_task(
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, "--description", "-d", help="Task description"),
    priority: int = typer.Option(2, min=1, max=3, help="Priority: 1 (highest) to 3"),
    category: TaskCategory = typer.Option(TaskCategory.FEATURE, help="Task category"),
    project: str | None = typer.Option(None, help="Project ID"),
    due: str | None = typer.Option(None, help="Due date (YYYY-MM-DD)"),
    scheduled: str | None = typer.Option(None, help="Scheduled date (YYYY-MM-DD)"),
) -> None:
    """Create a task."""
    due_date = _parse_date(due, "--due")
    scheduled_date = _parse_date(scheduled, "--scheduled")

    async def _add() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            project_id = None
            if project is not None:
                projects = await services["project_service"].find_all()
                project_id = _resolve_prefix(project, [p.id for p in projects], "project")

            task = await services["task_service"].create(
                CreateTaskInput(
                    project_id=project_id,
                    title=title,
                    description=description,
                    priority=priority,
                    category=category,
                    due_date=due_date,
                    scheduled_date=scheduled_date,
                )
            )
        finally:
            await services["database"].close()

        console.print(f"[green]✓[/green] Task created: [cyan]{task.id}[/cyan]", soft_wrap=True)

    asyncio.run(_add())


@task_app.command("list")
def list_tasks(
    status: list[TaskStatus] | None = typer.Option(None, "--status", "-s", help="Filter by status (repeatable)"),
    priority: int | None = typer.Option(None, min=1, max=3, help="Filter by priority"),
    category: TaskCategory | None = typer.Option(None, help="Filter by category"),
    query: str | None = typer.Option(None, "--query", "-q", help="Substring of title or description"),
    exclude_done: bool = typer.Option(False, "--exclude-done", help="Hide done tasks"),
    page: int = typer.Option(1, min=1, help="Page number"),
    per_page: int = typer.Option(DEFAULT_PER_PAGE, min=1, help="Tasks per page"),
    sort_by: TaskSortField = typer.Option(TaskSortField.PROGRESS_STATE, help="Sort field"),
    order: SortOrder = typer.Option(SortOrder.ASC, help="Sort direction"),
) -> None:
    """List tasks, most urgent progress state first by default."""

    async def _list() -> None:
        from taskledger.cli.main import _get_services

        filters = TaskListFilters(
            status=list(status) if status else None,
            priority=priority,
            category=category,
            q=query,
            exclude_done=exclude_done,
            page=page,
            per_page=per_page,
            sort_by=sort_by,
            sort_order=order,
        )

        services = await _get_services()
        try:
            result = await services["task_service"].find_all_full_paginated(filters)
        finally:
            await services["database"].close()

        table = Table(title="Tasks")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title", style="magenta")
        table.add_column("Priority", justify="center")
        table.add_column("Status", style="yellow")
        table.add_column("Progress")
        table.add_column("Subtasks", justify="center")
        table.add_column("Scheduled", style="blue")

        for task in result.items:
            title_preview = task.title[:40] + "..." if len(task.title) > 40 else task.title
            table.add_row(
                str(task.id)[:8],
                title_preview,
                str(task.priority),
                task.status.value,
                _progress_label(task),
                _subtask_summary(task),
                task.scheduled_date.isoformat() if task.scheduled_date else "-",
            )

        console.print(table)
        console.print(
            f"[dim]Page {result.page}/{max(result.total_pages, 1)} "
            f"({result.total} task{'s' if result.total != 1 else ''})[/dim]"
        )

    asyncio.run(_list())


@task_app.command("show")
def show_task(task_id: str = typer.Argument(..., help="Task ID or unique prefix")) -> None:
    """Show a task with its context and subtasks."""

    async def _show() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            resolved_id = await _resolve_task_id(task_id, services)
            task = await services["task_service"].find_full_by_id(resolved_id)
        finally:
            await services["database"].close()

        if task is None:
            console.print(f"[red]Error:[/red] Task {task_id} not found")
            raise typer.Exit(1)

        console.print(f"[bold]{task.title}[/bold]")
        console.print(f"ID: {task.id}", soft_wrap=True)
        console.print(f"Status: {task.status.value}  Progress: {_progress_label(task)}")
        console.print(f"Priority: {task.priority}  Category: {task.category.value}")
        if task.complexity:
            console.print(f"Complexity: {task.complexity.value}")
        if task.due_date:
            console.print(f"Due: {task.due_date.isoformat()}")
        if task.scheduled_date:
            console.print(f"Scheduled: {task.scheduled_date.isoformat()}")
        if task.description:
            console.print(f"\n{task.description}")
        if task.context.business_rules:
            console.print("\n[bold]Business rules[/bold]")
            for rule in task.context.business_rules:
                console.print(f"  - {rule}")
        if task.context.acceptance_criteria:
            console.print("\n[bold]Acceptance criteria[/bold]")
            for criterion in task.context.acceptance_criteria:
                console.print(f"  - {criterion}")

        if task.subtasks:
            table = Table(title="Subtasks")
            table.add_column("#", justify="right")
            table.add_column("ID", style="cyan", no_wrap=True)
            table.add_column("Title")
            table.add_column("Status", style="yellow")
            for subtask in task.subtasks:
                table.add_row(
                    str(subtask.order), str(subtask.id)[:8], subtask.title, subtask.status.value
                )
            console.print(table)

    asyncio.run(_show())


@task_app.command("status")
def set_task_status(
    task_id: str = typer.Argument(..., help="Task ID or unique prefix"),
    status: TaskStatus = typer.Argument(..., help="New status"),
    by: ModifiedBy = typer.Option(ModifiedBy.CLI, "--by", help="Who made the change"),
) -> None:
    """Change a task's status."""

    async def _status() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            resolved_id = await _resolve_task_id(task_id, services)
            task = await services["task_service"].update_status(resolved_id, status, by)
        finally:
            await services["database"].close()

        if task is None:
            console.print(f"[red]Error:[/red] Task {task_id} not found")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Task {str(task.id)[:8]} is now {task.status.value}")

    asyncio.run(_status())


@task_app.command("delete")
def delete_task(
    task_id: str = typer.Argument(..., help="Task ID or unique prefix"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a task and its subtasks."""

    async def _delete() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            resolved_id = await _resolve_task_id(task_id, services)
            if not yes and not typer.confirm(f"Delete task {resolved_id} and its subtasks?"):
                console.print("[yellow]Cancelled[/yellow]")
                return
            deleted = await services["task_service"].delete(resolved_id)
        finally:
            await services["database"].close()

        if not deleted:
            console.print(f"[red]Error:[/red] Task {task_id} not found")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Task {str(resolved_id)[:8]} deleted")

    asyncio.run(_delete())


@subtask_app.command("add")
def add_subtask(
    task_id: str = typer.Argument(..., help="Task ID or unique prefix"),
    title: str = typer.Argument(..., help="Subtask title"),
    description: str | None = typer.Option(None, "--description", "-d", help="Subtask description"),
) -> None:
    """Append a subtask to a task."""

    async def _add() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            resolved_id = await _resolve_task_id(task_id, services)
            subtask = await services["subtask_service"].create(
                CreateSubtaskInput(task_id=resolved_id, title=title, description=description)
            )
        finally:
            await services["database"].close()

        console.print(
            f"[green]✓[/green] Subtask created: [cyan]{subtask.id}[/cyan] (#{subtask.order})",
            soft_wrap=True,
        )

    asyncio.run(_add())


@subtask_app.command("status")
def set_subtask_status(
    subtask_id: str = typer.Argument(..., help="Subtask ID"),
    status: SubtaskStatus = typer.Argument(..., help="New status"),
) -> None:
    """Change a subtask's status."""
    try:
        parsed_id = UUID(subtask_id)
    except ValueError:
        raise typer.BadParameter(f"Invalid subtask ID '{subtask_id}'", param_hint="SUBTASK_ID") from None

    async def _status() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            subtask = await services["subtask_service"].update_status(parsed_id, status)
        finally:
            await services["database"].close()

        if subtask is None:
            console.print(f"[red]Error:[/red] Subtask {subtask_id} not found")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Subtask {str(subtask.id)[:8]} is now {subtask.status.value}")

    asyncio.run(_status())


@subtask_app.command("reorder")
def reorder_subtasks(
    task_id: str = typer.Argument(..., help="Task ID or unique prefix"),
    subtask_ids: list[str] = typer.Argument(..., help="Subtask IDs or prefixes in the new order"),
) -> None:
    """Renumber a task's subtasks in the given order."""

    async def _reorder() -> None:
        from taskledger.cli.main import _get_services

        services = await _get_services()
        try:
            resolved_task_id = await _resolve_task_id(task_id, services)
            current = await services["subtask_service"].find_by_task_id(resolved_task_id)
            candidates = [subtask.id for subtask in current]
            ordered_ids = [_resolve_prefix(prefix, candidates, "subtask") for prefix in subtask_ids]
            subtasks = await services["subtask_service"].reorder(resolved_task_id, ordered_ids)
        finally:
            await services["database"].close()

        table = Table(title="Subtasks")
        table.add_column("#", justify="right")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        for subtask in subtasks:
            table.add_row(str(subtask.order), str(subtask.id)[:8], subtask.title)
        console.print(table)

    asyncio.run(_reorder())
