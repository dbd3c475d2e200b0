"""taskledger CLI - local task and subtask store."""

import sys
from typing import Any

import typer
from rich.console import Console

from taskledger import __version__
from taskledger.cli.db_commands import db_app
from taskledger.cli.task_commands import subtask_app, task_app

# Initialize Typer app
app = typer.Typer(
    name="taskledger",
    help="Local task store with progress-ordered listings",
    no_args_is_help=True,
)

console = Console()


# ===== Version =====
@app.command()
def version() -> None:
    """Show taskledger version."""
    console.print(f"[bold]taskledger[/bold] version [cyan]{__version__}[/cyan]")


# ===== Helper Functions =====
async def _get_services() -> dict[str, Any]:
    """Load config, set up logging and open the store.

    The caller owns the returned database and must close it.

    Raises:
        MigrationError: If the schema could not be brought up to date
    """
    from taskledger.infrastructure import ConfigManager, Database, setup_logging

    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    database = Database(config_manager.get_database_path())
    await database.initialize()

    return {
        "database": database,
        "config_manager": config_manager,
        "task_service": database.tasks,
        "subtask_service": database.subtasks,
        "project_service": database.projects,
    }


# ===== Sub-commands =====
app.add_typer(db_app, name="db")
app.add_typer(task_app, name="task")
app.add_typer(subtask_app, name="subtask")


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
