"""CLI integration tests for schemashift."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from schemashift import __version__
from schemashift.cli import cli
from schemashift.constants import Direction
from schemashift.discovery import discover
from schemashift.state import Store, VersionState
from tests.migration_helpers import (
    ADD_FAVORITE_FLOWER,
    CREATE_ARTISTS,
    copy_example_migrations,
    write_create_table,
    write_migration,
)


def _write_config(config_path: Path, migrations_dir: Path, dump_schema: bool = True) -> None:
    config_path.write_text(
        "\n".join(
            [
                "[meta]",
                "schema_version = 1",
                "",
                "[project.paths]",
                f'migrations_dir = "{migrations_dir}"',
                'state_file = "db/app.json"',
                'schema_file = "db/schema.toml"',
                "",
                "[project.runner]",
                "lock_timeout = 0.0",
                f"dump_schema = {'true' if dump_schema else 'false'}",
            ]
        ),
        encoding="utf-8",
    )


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    """Project directory with the artist migrations and a config selected via env."""
    copy_example_migrations(tmp_path / "migrations")
    config_path = tmp_path / "schemashift.toml"
    _write_config(config_path, tmp_path / "migrations")
    monkeypatch.setenv("SCHEMASHIFT_CONFIG", str(config_path))
    return tmp_path


def _load_state(project: Path) -> VersionState:
    with Store(project / "db" / "app.json") as store:
        return store.load_state()


def test_version() -> None:
    """Test --version output."""
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_migrate_status_rollback(project: Path) -> None:
    """End-to-end check of migrate, status and rollback."""
    runner = CliRunner()

    result = runner.invoke(cli, ["migrate"])
    assert result.exit_code == 0, result.output
    assert "Database migrations completed." in result.output
    assert (project / "db" / "schema.toml").exists()
    assert _load_state(project).current_version == ADD_FAVORITE_FLOWER

    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0, result.output
    assert "Up to date" in result.output

    result = runner.invoke(cli, ["rollback"])
    assert result.exit_code == 0, result.output
    assert "Rollback completed." in result.output

    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "1 pending migration(s)." in result.output


def test_migrate_to_and_rollback_to_zero(project: Path) -> None:
    """Test explicit targets from the command line."""
    runner = CliRunner()

    result = runner.invoke(cli, ["migrate", "--to", CREATE_ARTISTS])
    assert result.exit_code == 0, result.output
    assert _load_state(project).applied_in_order() == [CREATE_ARTISTS]

    result = runner.invoke(cli, ["rollback", "--to", "0"])
    assert result.exit_code == 0, result.output
    assert _load_state(project).current_version is None


def test_migrate_dry_run(project: Path) -> None:
    """Test that a dry run lists units and changes nothing."""
    result = CliRunner().invoke(cli, ["migrate", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "Dry run" in result.output
    assert _load_state(project) == VersionState()


def test_read_only_commands_create_no_files(project: Path) -> None:
    """Test that status, schema and dry runs leave a fresh project untouched."""
    runner = CliRunner()

    for args in (["status"], ["schema"], ["migrate", "--dry-run"], ["rollback", "--dry-run"]):
        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output

    assert not (project / "db").exists()


def test_unknown_target_exits_nonzero(project: Path) -> None:
    """Test that an unknown version is reported with exit code 1."""
    result = CliRunner().invoke(cli, ["migrate", "--to", "42"])

    assert result.exit_code == 1
    assert "Unknown migration version: 42" in result.output
    assert "Suggestion:" in result.output


def test_discovery_error_exits_nonzero(project: Path) -> None:
    """Test that duplicate identifiers stop the run with exit code 1."""
    write_create_table(project / "migrations", "0" + CREATE_ARTISTS, "bands")

    result = CliRunner().invoke(cli, ["migrate"])

    assert result.exit_code == 1
    assert "Duplicate migration identifier" in result.output
    assert not (project / "db" / "app.json").exists()


def test_apply_error_exits_nonzero(project: Path) -> None:
    """Test that a failing unit exits 1 and keeps earlier units applied."""
    write_migration(
        project / "migrations",
        "20990101000000",
        "broken",
        """
        def change(self):
            return [AddColumn(table="missing", column="c", type="string")]
        """,
    )

    result = CliRunner().invoke(cli, ["migrate"])

    assert result.exit_code == 1
    assert "failed to apply" in result.output
    assert _load_state(project).current_version == ADD_FAVORITE_FLOWER


def test_lock_contention_exits_nonzero(project: Path) -> None:
    """Test that a held lock exits 1 without applying anything."""
    (project / "db").mkdir()
    (project / "db" / "app.json.lock").write_text('{"pid": 4242}', encoding="utf-8")

    result = CliRunner().invoke(cli, ["migrate"])

    assert result.exit_code == 1
    assert "Migration lock is held" in result.output
    assert _load_state(project) == VersionState()


def test_redo(project: Path) -> None:
    """Test redo reapplies the last migration."""
    runner = CliRunner()
    runner.invoke(cli, ["migrate"])

    result = runner.invoke(cli, ["redo"])

    assert result.exit_code == 0, result.output
    assert "Reverting migration" in result.output
    assert _load_state(project).current_version == ADD_FAVORITE_FLOWER


def test_schema(project: Path) -> None:
    """Test showing and writing the schema."""
    runner = CliRunner()
    runner.invoke(cli, ["migrate"])

    result = runner.invoke(cli, ["schema"])
    assert result.exit_code == 0, result.output
    assert "artists" in result.output
    assert "favorite_flower" in result.output

    output = project / "out" / "schema.toml"
    result = runner.invoke(cli, ["schema", "--output", str(output)])
    assert result.exit_code == 0, result.output
    assert output.exists()


def test_new(project: Path) -> None:
    """Test scaffolding a migration that discovery accepts."""
    result = CliRunner().invoke(cli, ["new", "add_genre_index"])

    assert result.exit_code == 0, result.output
    units = discover(project / "migrations")
    assert units[-1].name == "add_genre_index"


def test_new_invalid_name(project: Path) -> None:
    """Test that an invalid name exits 1."""
    result = CliRunner().invoke(cli, ["new", "AddGenre"])

    assert result.exit_code == 1
    assert "Invalid migration name" in result.output


def test_reset(project: Path) -> None:
    """Test reset with and without confirmation."""
    runner = CliRunner()
    runner.invoke(cli, ["migrate"])

    result = runner.invoke(cli, ["reset"], input="n\n")
    assert result.exit_code == 0, result.output
    assert "Reset cancelled." in result.output
    assert _load_state(project).current_version == ADD_FAVORITE_FLOWER

    result = runner.invoke(cli, ["reset", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Version state cleared." in result.output
    assert _load_state(project) == VersionState()


def test_interrupted_migration_and_resolve(project: Path) -> None:
    """Test that an interrupted unit blocks migrate until resolved."""
    unit = discover(project / "migrations")[0]
    (project / "db").mkdir()
    with Store(project / "db" / "app.json") as store:
        store.save_state(VersionState().begin(unit, Direction.UP))

    runner = CliRunner()

    result = runner.invoke(cli, ["migrate"])
    assert result.exit_code == 1
    assert "interrupted" in result.output

    result = runner.invoke(cli, ["resolve", "--as", "down"])
    assert result.exit_code == 0, result.output
    assert f"Marked migration {CREATE_ARTISTS} as not applied." in result.output

    result = runner.invoke(cli, ["migrate"])
    assert result.exit_code == 0, result.output


def test_init_writes_config(tmp_path: Path) -> None:
    """Test that init writes a config file at the --config path."""
    config_path = tmp_path / "schemashift.toml"

    result = CliRunner().invoke(cli, ["--config", str(config_path), "init"])

    assert result.exit_code == 0, result.output
    assert config_path.exists()

    result = CliRunner().invoke(cli, ["--config", str(config_path), "init"])
    assert "already exists" in result.output


def test_invalid_config_exits_nonzero(tmp_path: Path) -> None:
    """Test that an unreadable config exits 1."""
    config_path = tmp_path / "schemashift.toml"
    config_path.write_text("[project\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config_path), "status"])

    assert result.exit_code == 1
    assert "Configuration" in result.output
