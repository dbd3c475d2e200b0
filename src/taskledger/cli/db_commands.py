"""Database management commands."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from taskledger.domain.models import MigrationResult
from taskledger.infrastructure import ConfigManager, Database, MigrationError

console = Console()

# Create Typer app for db commands
db_app = typer.Typer(help="Database management", no_args_is_help=True)


def _migration_table(results: list[MigrationResult]) -> Table:
    table = Table(title="Migrations")
    table.add_column("Step", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Message")

    for result in results:
        table.add_row(
            result.name,
            "[green]ok[/green]" if result.success else "[red]failed[/red]",
            result.message,
        )
    return table


@db_app.command("migrate")
def migrate(
    db_path: Path
    | None = typer.Option(  # noqa: B008
        None, help="Custom database path (default: $XDG_DATA_HOME/taskledger/taskledger.db)"
    ),
) -> None:
    """Open the store, bring its schema up to date and print the report.

    Every step is idempotent, so running this against an up-to-date store
    only reports that nothing changed.

    Examples:
        taskledger db migrate
        taskledger db migrate --db-path /tmp/test.db
    """

    async def _migrate() -> None:
        database_path = db_path or ConfigManager().get_database_path()
        database = Database(database_path)

        try:
            results = await database.initialize()
        except MigrationError as e:
            console.print(_migration_table(e.results))
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e
        finally:
            await database.close()

        console.print(_migration_table(results))
        console.print(f"[green]✓[/green] Database ready: {database_path}", soft_wrap=True)

    asyncio.run(_migrate())


@db_app.command("path")
def path() -> None:
    """Print the database file in use."""
    console.print(str(ConfigManager().get_database_path()), soft_wrap=True)
