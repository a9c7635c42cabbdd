"""CLI interface for schemashift."""

import logging
import sys
from pathlib import Path

# Runtime version check - must be before other imports
if sys.version_info < (3, 11):
    print("Error: schemashift requires Python 3.11 or higher", file=sys.stderr)
    version = f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print(f"Current version: {version}", file=sys.stderr)
    print("\nPlease upgrade your Python installation:", file=sys.stderr)
    print("  https://www.python.org/downloads/", file=sys.stderr)
    sys.exit(1)

import click
from rich.console import Console

from . import __version__
from .config import Config, get_config_path, init_config, load_config
from .constants import LOG_DATE_FORMAT, LOG_FORMAT, TARGET_LATEST, Direction
from .discovery import discover, new_migration
from .display import display_migration_result, display_schema, display_status
from .errors import (
    ApplyError,
    ConsistencyError,
    DiscoveryError,
    LockContentionError,
    MigrationError,
    RevertError,
    StatePersistenceError,
    TargetError,
)
from .lock import MigrationLock
from .runner import MigrationRunner
from .state import Store
from .utils import ErrorContext, handle_operation, prompt_confirm

console = Console()

SUGGESTIONS: dict[type[Exception], str] = {
    DiscoveryError: "Migration files must be named <digits>_<snake_name>.py and define one Migration subclass",
    TargetError: "Run 'schemashift status' to list the known versions",
    LockContentionError: "Wait for the other run to finish, or delete the lock file if that run crashed",
    StatePersistenceError: "Check the store and run 'schemashift resolve --as up' or '--as down' once it is repaired",
    ConsistencyError: "Restore the missing or modified migration files, or run 'schemashift resolve'",
    ApplyError: "Fix the migration and run 'schemashift migrate' again; the failed migration was rolled back",
    RevertError: "Define down() for migrations whose actions cannot be inverted",
}

# ValueError also covers a corrupt store or version state failing validation
HANDLED_ERRORS = (MigrationError, OSError, ValueError)


def _build_runner(config: Config, read_only: bool = False) -> MigrationRunner:
    """
    Create a runner for the configured migrations directory and store.

    Read-only runners never create the store file.
    """
    units = discover(config.migrations_dir)
    store = Store(config.state_file, read_only=read_only)
    return MigrationRunner(
        store,
        units,
        lock=MigrationLock(config.lock_file, config.lock_timeout),
        schema_file=config.schema_file if config.dump_schema else None,
        console=console,
    )


def _run(ctx: click.Context, operation_name: str, operation, read_only: bool = False):
    """
    Run ``operation`` against a freshly built runner.

    Exits with status 1 on any migration error after printing it.
    """
    config: Config = ctx.obj["config"]
    context = ErrorContext(operation_name, suggestions=SUGGESTIONS)

    try:
        runner = handle_operation(console, lambda: _build_runner(config, read_only), context, HANDLED_ERRORS)
    except HANDLED_ERRORS:
        sys.exit(1)

    try:
        return handle_operation(console, lambda: operation(runner), context, HANDLED_ERRORS)
    except HANDLED_ERRORS:
        sys.exit(1)
    finally:
        runner.store.close()


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(path_type=Path),
    help="Custom config file path",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """schemashift: Ordered, reversible schema migrations for TinyDB stores."""
    ctx.ensure_object(dict)

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    ctx.obj["config_path"] = config or get_config_path()

    # Load configuration
    try:
        ctx.obj["config"] = load_config(ctx.obj["config_path"])
    except (FileNotFoundError, ValueError, OSError, PermissionError) as e:
        console.print(f"[red]Error:[/red] Configuration: {e}")
        sys.exit(1)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """
    Write a default schemashift.toml configuration file.

    Examples:

        \b
        # Create ./schemashift.toml
        schemashift init
    """
    config_path: Path = ctx.obj["config_path"]

    if init_config(config_path):
        console.print(f"[green]✓[/green] Created config file: {config_path}")
    else:
        console.print(f"Config file already exists: {config_path}")


@cli.command()
@click.option("--to", "target", default=TARGET_LATEST, help="Target version: latest, previous, 0 or an identifier")
@click.option("--dry-run", is_flag=True, help="Show which migrations would run without running them")
@click.pass_context
def migrate(ctx: click.Context, target: str, dry_run: bool) -> None:
    """
    Apply pending migrations, or revert down to an older target.

    Examples:

        \b
        # Apply every pending migration
        schemashift migrate

        \b
        # Migrate to a specific version (reverting if it is older)
        schemashift migrate --to 20230603081158

        \b
        # Preview without changing the store
        schemashift migrate --dry-run
    """
    result = _run(ctx, "Migrate", lambda runner: runner.migrate(target, dry_run=dry_run), read_only=dry_run)
    if dry_run and not result.units:
        console.print("Nothing to do.")
    display_migration_result(result, console)


@cli.command()
@click.option("--step", "-n", "count", type=click.IntRange(min=1), default=1, help="Number of migrations to roll back")
@click.option("--to", "target", default=None, help="Roll back every migration above this version")
@click.option("--dry-run", is_flag=True, help="Show which migrations would be rolled back")
@click.pass_context
def rollback(ctx: click.Context, count: int, target: str | None, dry_run: bool) -> None:
    """
    Revert the most recently applied migrations.

    Examples:

        \b
        # Revert the last migration
        schemashift rollback

        \b
        # Revert the last three migrations
        schemashift rollback --step 3

        \b
        # Revert everything
        schemashift rollback --to 0
    """
    result = _run(
        ctx,
        "Rollback",
        lambda runner: runner.revert(count=count, target=target, dry_run=dry_run),
        read_only=dry_run,
    )
    if dry_run and not result.units:
        console.print("Nothing to roll back.")
    display_migration_result(result, console)


@cli.command()
@click.option("--step", "-n", "count", type=click.IntRange(min=1), default=1, help="Number of migrations to redo")
@click.pass_context
def redo(ctx: click.Context, count: int) -> None:
    """Roll back the last migrations and apply them again."""
    _, reapplied = _run(ctx, "Redo", lambda runner: runner.redo(count))
    display_migration_result(reapplied, console)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show which migrations are applied, pending or missing."""
    report = _run(ctx, "Status", lambda runner: runner.status(), read_only=True)
    display_status(report, console)


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the schema as TOML to this file",
)
@click.pass_context
def schema(ctx: click.Context, output: Path | None) -> None:
    """Show the schema built from the applied migrations."""
    snapshot = _run(ctx, "Schema", lambda runner: runner.snapshot(), read_only=True)

    if output is not None:
        snapshot.dump(output)
        console.print(f"[green]✓[/green] Wrote schema to {output}")
    else:
        display_schema(snapshot, console)


@cli.command()
@click.argument("name")
@click.pass_context
def new(ctx: click.Context, name: str) -> None:
    """
    Create a new timestamped migration file.

    Examples:

        \b
        schemashift new add_favorite_flower
    """
    config: Config = ctx.obj["config"]
    context = ErrorContext("New migration", suggestions=SUGGESTIONS)

    try:
        path = handle_operation(
            console, lambda: new_migration(config.migrations_dir, name), context, (MigrationError, OSError)
        )
    except (MigrationError, OSError):
        sys.exit(1)

    console.print(f"[green]✓[/green] Created {path}")


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Revert every applied migration and delete the version state."""
    if not yes and not prompt_confirm("Revert all migrations and delete the version state?"):
        console.print("Reset cancelled.")
        return

    result = _run(ctx, "Reset", lambda runner: runner.reset())
    display_migration_result(result, console)
    console.print("[green]✓[/green] Version state cleared.")


@cli.command()
@click.option(
    "--as",
    "direction",
    type=click.Choice([d.value for d in Direction]),
    required=True,
    help="Record the interrupted migration as applied (up) or not applied (down)",
)
@click.pass_context
def resolve(ctx: click.Context, direction: str) -> None:
    """
    Clear the marker left by an interrupted migration.

    Run this only after checking the store by hand: it records the
    interrupted migration as applied or not applied without running it.
    """
    _run(ctx, "Resolve", lambda runner: runner.resolve(Direction(direction)))


if __name__ == "__main__":
    cli()
