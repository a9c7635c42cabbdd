"""Tests for migration discovery."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from schemashift.discovery import discover, load_unit, new_migration, parse_filename
from schemashift.errors import DiscoveryError
from tests.migration_helpers import (
    ADD_FAVORITE_FLOWER,
    CREATE_ARTISTS,
    copy_example_migrations,
    write_create_table,
    write_migration,
)


class TestParseFilename:
    """Tests for parse_filename."""

    def test_valid_name(self) -> None:
        """Test splitting a valid file name."""
        assert parse_filename("20230603081158_create_artists.py") == ("20230603081158", "create_artists")

    @pytest.mark.parametrize(
        "filename",
        ["create_artists.py", "20230603_CreateArtists.py", "abc_create.py", "1_create.txt"],
    )
    def test_invalid_names(self, filename: str) -> None:
        """Test that names without a sortable identifier are rejected."""
        with pytest.raises(DiscoveryError, match="does not match"):
            parse_filename(filename)


class TestDiscover:
    """Tests for discover."""

    def test_discovers_example_migrations_in_order(self, tmp_path: Path) -> None:
        """Test discovering the artist example migrations."""
        migrations_dir = copy_example_migrations(tmp_path / "migrations")

        units = discover(migrations_dir)

        assert [u.name for u in units] == [
            "create_artists",
            "add_favorite_food_to_artists",
            "remove_favorite_food_from_artists",
            "add_favorite_flower_to_artists",
        ]
        assert units[0].identifier == CREATE_ARTISTS
        assert units[-1].identifier == ADD_FAVORITE_FLOWER
        assert all(u.is_reversible for u in units)

    def test_orders_by_integer_value(self, tmp_path: Path) -> None:
        """Test that identifiers of different lengths order numerically."""
        migrations_dir = tmp_path / "migrations"
        write_create_table(migrations_dir, "10", "bands")
        write_create_table(migrations_dir, "9", "artists")

        units = discover(migrations_dir)

        assert [u.identifier for u in units] == ["9", "10"]

    def test_missing_directory(self, tmp_path: Path) -> None:
        """Test that a missing directory is an error."""
        with pytest.raises(DiscoveryError, match="does not exist"):
            discover(tmp_path / "nope")

    def test_empty_directory(self, tmp_path: Path) -> None:
        """Test that an empty directory has no units."""
        assert discover(tmp_path) == []

    def test_skips_private_and_non_python_files(self, tmp_path: Path) -> None:
        """Test that helpers and other files are ignored."""
        write_create_table(tmp_path, "1", "artists")
        (tmp_path / "__init__.py").write_text("", encoding="utf-8")
        (tmp_path / "_helpers.py").write_text("X = 1\n", encoding="utf-8")
        (tmp_path / "README.md").write_text("notes\n", encoding="utf-8")

        assert [u.identifier for u in discover(tmp_path)] == ["1"]

    def test_duplicate_identifiers(self, tmp_path: Path) -> None:
        """Test that two files with the same identifier are rejected."""
        write_create_table(tmp_path, "1", "artists")
        write_create_table(tmp_path, "01", "bands")

        with pytest.raises(DiscoveryError, match="Duplicate migration identifier"):
            discover(tmp_path)

    def test_misnamed_python_file(self, tmp_path: Path) -> None:
        """Test that a Python file without an identifier is rejected."""
        (tmp_path / "create_artists.py").write_text("", encoding="utf-8")

        with pytest.raises(DiscoveryError, match="does not match"):
            discover(tmp_path)


class TestLoadUnit:
    """Tests for load_unit."""

    def test_import_error_is_wrapped(self, tmp_path: Path) -> None:
        """Test that a broken file raises DiscoveryError."""
        path = tmp_path / "1_broken.py"
        path.write_text("raise RuntimeError('boom')\n", encoding="utf-8")

        with pytest.raises(DiscoveryError, match="failed to import: boom"):
            load_unit(path)

    def test_requires_one_migration_class(self, tmp_path: Path) -> None:
        """Test that a file without a Migration subclass is rejected."""
        path = tmp_path / "1_empty.py"
        path.write_text("from schemashift import Migration\n", encoding="utf-8")

        with pytest.raises(DiscoveryError, match="exactly one Migration subclass, found 0"):
            load_unit(path)

    def test_requires_change_or_up(self, tmp_path: Path) -> None:
        """Test that a migration must define its actions."""
        path = write_migration(tmp_path, "1", "nothing", "pass")

        with pytest.raises(DiscoveryError, match="neither change\\(\\) nor up\\(\\)"):
            load_unit(path)

    def test_version_must_match_file_name(self, tmp_path: Path) -> None:
        """Test that a declared version must agree with the file name."""
        path = write_migration(
            tmp_path,
            "2",
            "create_artists",
            """
            version = "3"

            def change(self):
                return [CreateTable(table="artists", columns={})]
            """,
        )

        with pytest.raises(DiscoveryError, match="declares version 3"):
            load_unit(path)

    def test_invalid_action_is_wrapped(self, tmp_path: Path) -> None:
        """Test that an invalid action model raises DiscoveryError."""
        path = write_migration(
            tmp_path,
            "1",
            "bad_type",
            """
            def change(self):
                return [AddColumn(table="artists", column="name", type="varchar")]
            """,
        )

        with pytest.raises(DiscoveryError, match="invalid action"):
            load_unit(path)

    def test_non_action_values_rejected(self, tmp_path: Path) -> None:
        """Test that change() must return schema actions."""
        path = write_migration(
            tmp_path,
            "1",
            "raw_sql",
            """
            def change(self):
                return ["CREATE TABLE artists"]
            """,
        )

        with pytest.raises(DiscoveryError, match="unsupported forward action"):
            load_unit(path)


class TestNewMigration:
    """Tests for new_migration."""

    def test_creates_timestamped_file(self, tmp_path: Path) -> None:
        """Test that the template is written and loads as a valid unit."""
        now = datetime(2023, 6, 3, 9, 22, 10, tzinfo=timezone.utc)

        path = new_migration(tmp_path / "migrations", "add_favorite_flower", now=now)

        assert path.name == "20230603092210_add_favorite_flower.py"
        assert "class AddFavoriteFlower(Migration)" in path.read_text(encoding="utf-8")

        unit = load_unit(path)
        assert unit.forward_actions == []

    def test_bumps_clashing_timestamp(self, tmp_path: Path) -> None:
        """Test that a clash with an existing identifier moves one second on."""
        now = datetime(2023, 6, 3, 9, 22, 10, tzinfo=timezone.utc)
        new_migration(tmp_path, "first", now=now)

        path = new_migration(tmp_path, "second", now=now)

        assert path.name == "20230603092211_second.py"

    @pytest.mark.parametrize("name", ["AddFlower", "add-flower", "1_add", ""])
    def test_rejects_invalid_names(self, tmp_path: Path, name: str) -> None:
        """Test that names must be snake_case."""
        with pytest.raises(DiscoveryError, match="Invalid migration name"):
            new_migration(tmp_path, name)
