"""Display functions for schemashift CLI output."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .constants import Direction, UnitStatus
from .runner import MigrationResult, StatusReport
from .snapshot import SchemaSnapshot


def display_status(report: StatusReport, console: Console) -> None:
    """
    Display migration status in a table.

    Args:
        report: Status report from the runner
        console: Rich console instance for output
    """
    console.print(f"Current version: {report.current_version or 'none'}")

    if not report.entries:
        console.print("No migrations found.")
    else:
        table = Table(title="Migrations")
        table.add_column("Status")
        table.add_column("Version", style="cyan")
        table.add_column("Name", style="magenta")
        table.add_column("Applied", style="yellow")

        for entry in report.entries:
            if entry.status == UnitStatus.UP:
                status = "[green]up[/green]" if entry.checksum_ok else "[yellow]up (modified)[/yellow]"
            elif entry.status == UnitStatus.DOWN:
                status = "[blue]down[/blue]"
            else:
                status = "[red]missing file[/red]"

            applied = entry.applied_at.strftime("%Y-%m-%d %H:%M") if entry.applied_at else ""
            table.add_row(status, entry.identifier, entry.name, applied)

        console.print(table)

    if report.problems:
        console.print(
            Panel(
                "\n".join(f"• {problem}" for problem in report.problems),
                title="Consistency Problems",
                border_style="red",
            )
        )
    elif report.pending:
        console.print(f"[yellow]{len(report.pending)} pending migration(s).[/yellow] Run 'schemashift migrate'.")
    else:
        console.print("[green]✓[/green] Up to date")


def display_migration_result(result: MigrationResult, console: Console) -> None:
    """
    Display the units a batch applied or reverted.

    Args:
        result: Result of migrate/revert
        console: Rich console instance for output
    """
    if not result.units:
        return

    up = result.direction == Direction.UP
    if result.dry_run:
        title = "Would Apply" if up else "Would Revert"
    else:
        title = "Applied" if up else "Reverted"

    table = Table(title=f"{title} Migrations")
    table.add_column("Version", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Actions")

    for unit in result.units:
        actions = unit.forward_actions if up else unit.backward_actions
        described = ", ".join(action.describe() for action in actions or []) or "none"
        table.add_row(unit.identifier, unit.name, described)

    if result.dry_run:
        console.print("[cyan]Dry run:[/cyan] no changes were made.")
    console.print(table)


def display_schema(snapshot: SchemaSnapshot, console: Console) -> None:
    """
    Display the schema projection as a tree.

    Args:
        snapshot: Schema snapshot to display
        console: Rich console instance for output
    """
    tree = Tree(f"[bold]Schema[/bold] (version {snapshot.version or 'none'})")

    if not snapshot.tables:
        tree.add("[dim]no tables[/dim]")

    for table_name, columns in snapshot.tables.items():
        node = tree.add(f"[magenta]{table_name}[/magenta]")
        for column_name, spec in columns.items():
            details = [spec.type]
            if not spec.nullable:
                details.append("not null")
            if spec.default is not None:
                details.append(f"default {spec.default!r}")
            node.add(f"[cyan]{column_name}[/cyan] ({', '.join(details)})")

    console.print(tree)
