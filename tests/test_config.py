"""Tests for config module."""

from pathlib import Path

import pytest

from schemashift.config import (
    Config,
    create_default_config,
    get_config_path,
    init_config,
    load_config,
)


class TestConfig:
    """Tests for Config model."""

    def test_config_properties(self, tmp_path: Path) -> None:
        """Test the flattened accessors."""
        config = Config.model_validate(
            {
                "project": {
                    "paths": {
                        "migrations_dir": str(tmp_path / "migrate"),
                        "state_file": str(tmp_path / "db.json"),
                        "schema_file": str(tmp_path / "schema.toml"),
                    }
                }
            }
        )

        assert config.migrations_dir == tmp_path / "migrate"
        assert config.lock_file == tmp_path / "db.json.lock"
        assert config.lock_timeout == 0.0
        assert config.dump_schema is True
        assert config.schema_version == 1

    def test_negative_lock_timeout_rejected(self, tmp_path: Path) -> None:
        """Test that lock_timeout must not be negative."""
        with pytest.raises(ValueError):
            Config.model_validate(
                {
                    "project": {
                        "paths": {
                            "migrations_dir": "m",
                            "state_file": "s.json",
                            "schema_file": "s.toml",
                        },
                        "runner": {"lock_timeout": -1},
                    }
                }
            )


class TestGetConfigPath:
    """Tests for get_config_path function."""

    def test_get_config_path_default(self, monkeypatch, tmp_path: Path) -> None:
        """Test default config path in the current directory."""
        monkeypatch.delenv("SCHEMASHIFT_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)

        assert get_config_path() == tmp_path.resolve() / "schemashift.toml"

    def test_get_config_path_from_env(self, monkeypatch, tmp_path: Path) -> None:
        """Test config path from environment variable."""
        custom_path = tmp_path / "custom.toml"
        monkeypatch.setenv("SCHEMASHIFT_CONFIG", str(custom_path))

        assert get_config_path() == custom_path.resolve()


class TestCreateDefaultConfig:
    """Tests for create_default_config function."""

    def test_default_paths_relative_to_base(self, tmp_path: Path) -> None:
        """Test that template paths resolve against the base directory."""
        config = create_default_config(tmp_path)

        assert config.migrations_dir == (tmp_path / "db" / "migrate").resolve()
        assert config.state_file == (tmp_path / "db" / "schemashift.json").resolve()
        assert config.schema_file == (tmp_path / "db" / "schema.toml").resolve()


class TestInitConfig:
    """Tests for init_config function."""

    def test_writes_template_once(self, tmp_path: Path) -> None:
        """Test that init writes the template and leaves an existing file alone."""
        config_path = tmp_path / "nested" / "schemashift.toml"

        assert init_config(config_path)
        assert "[project.paths]" in config_path.read_text(encoding="utf-8")

        config_path.write_text("# mine\n", encoding="utf-8")
        assert not init_config(config_path)
        assert config_path.read_text(encoding="utf-8") == "# mine\n"


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config_from_file(self, tmp_path: Path) -> None:
        """Test loading config with relative paths from a file."""
        config_path = tmp_path / "project" / "schemashift.toml"
        config_path.parent.mkdir()
        config_path.write_text(
            "\n".join(
                [
                    "[meta]",
                    "schema_version = 1",
                    "",
                    "[project.paths]",
                    'migrations_dir = "migrations"',
                    'state_file = "data/app.json"',
                    'schema_file = "data/schema.toml"',
                    "",
                    "[project.runner]",
                    "lock_timeout = 2.5",
                    "dump_schema = false",
                ]
            ),
            encoding="utf-8",
        )

        config = load_config(config_path)

        base = config_path.parent.resolve()
        assert config.migrations_dir == base / "migrations"
        assert config.state_file == base / "data" / "app.json"
        assert config.lock_timeout == 2.5
        assert config.dump_schema is False

    def test_load_config_missing_file_uses_defaults(self, tmp_path: Path, monkeypatch) -> None:
        """Test that a missing file falls back to the template in the cwd."""
        monkeypatch.chdir(tmp_path)

        config = load_config(tmp_path / "absent.toml")

        assert config.migrations_dir == (tmp_path / "db" / "migrate").resolve()
        assert not (tmp_path / "absent.toml").exists()

    def test_load_config_handles_partial_config(self, tmp_path: Path) -> None:
        """Test that missing keys come from the template."""
        config_path = tmp_path / "schemashift.toml"
        config_path.write_text(
            '[meta]\nschema_version = 1\n\n[project.paths]\nmigrations_dir = "m"\n',
            encoding="utf-8",
        )

        config = load_config(config_path)

        assert config.migrations_dir == (tmp_path / "m").resolve()
        assert config.state_file == (tmp_path / "db" / "schemashift.json").resolve()
        assert config.dump_schema is True

    def test_load_config_expands_absolute_paths(self, tmp_path: Path) -> None:
        """Test that absolute paths are kept as they are."""
        state_file = tmp_path / "elsewhere" / "db.json"
        config_path = tmp_path / "schemashift.toml"
        config_path.write_text(
            f'[meta]\nschema_version = 1\n\n[project.paths]\nstate_file = "{state_file}"\n',
            encoding="utf-8",
        )

        config = load_config(config_path)

        assert config.state_file == state_file.resolve()

    def test_load_config_invalid_toml(self, tmp_path: Path) -> None:
        """Test that invalid TOML is a ValueError."""
        config_path = tmp_path / "schemashift.toml"
        config_path.write_text("[project\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_config(config_path)

    def test_load_config_rejects_newer_schema_version(self, tmp_path: Path) -> None:
        """Test that a config written for a newer schema version is refused."""
        config_path = tmp_path / "schemashift.toml"
        config_path.write_text('[meta]\nschema_version = 2\n\n[project.paths]\nmigrations_dir = "m"\n', encoding="utf-8")

        with pytest.raises(ValueError, match="schema_version"):
            load_config(config_path)
