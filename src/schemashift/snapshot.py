"""Schema projection rebuilt by replaying applied migration units."""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomli_w

from .actions import ColumnSpec, SchemaAction, Tables
from .constants import SCHEMA_DUMP_VERSION
from .utils import ensure_dir

if TYPE_CHECKING:
    from .migration import ChangeUnit

logger = logging.getLogger(__name__)


class SchemaSnapshot:
    """
    Derived shape of the schema: tables and their ordered columns.

    A snapshot is never authoritative. It is rebuilt from the applied
    migration units with ``replay`` and only ever changed by applying
    schema actions to it.
    """

    def __init__(self, tables: Tables | None = None, version: str | None = None) -> None:
        self.tables: Tables = {name: dict(columns) for name, columns in (tables or {}).items()}
        self.version = version

    @classmethod
    def replay(cls, units: Iterable["ChangeUnit"]) -> "SchemaSnapshot":
        """
        Build a snapshot by applying each unit's forward actions in order.

        Args:
            units: Applied units in ascending identifier order

        Returns:
            Snapshot of the resulting schema

        Raises:
            ActionError: If an action is invalid at its point in the replay
        """
        snapshot = cls()
        for unit in units:
            snapshot.apply_all(unit.forward_actions)
            snapshot.version = unit.identifier
        return snapshot

    def apply(self, action: SchemaAction) -> None:
        """Apply a single action in place."""
        action.apply_schema(self.tables)

    def apply_all(self, actions: Iterable[SchemaAction]) -> None:
        """Apply actions in order."""
        for action in actions:
            self.apply(action)

    def copy(self) -> "SchemaSnapshot":
        """Return an independent copy."""
        return SchemaSnapshot(self.tables, self.version)

    def has_table(self, table: str) -> bool:
        return table in self.tables

    def columns(self, table: str) -> list[str]:
        """Return column names of ``table`` in declaration order (empty if missing)."""
        return list(self.tables.get(table, {}))

    def column(self, table: str, column: str) -> ColumnSpec | None:
        return self.tables.get(table, {}).get(column)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a TOML-friendly dictionary.

        ``None`` values are omitted because TOML has no null.
        """
        tables: dict[str, Any] = {}
        for table, columns in self.tables.items():
            tables[table] = {
                name: spec.model_dump(mode="json", exclude_none=True) for name, spec in columns.items()
            }

        data: dict[str, Any] = {"meta": {"format": SCHEMA_DUMP_VERSION}, "tables": tables}
        if self.version is not None:
            data["meta"]["version"] = self.version
        return data

    def dump(self, path: Path) -> None:
        """
        Write the snapshot to a TOML schema file.

        Args:
            path: Destination file (parent directories are created)
        """
        ensure_dir(path.parent)
        data = self.to_dict()
        data["meta"]["generated_at"] = datetime.now(timezone.utc).replace(microsecond=0)
        with open(path, "wb") as f:
            tomli_w.dump(data, f)
        logger.debug(f"Wrote schema snapshot to {path}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SchemaSnapshot):
            return NotImplemented
        return self.tables == other.tables

    def __repr__(self) -> str:
        return f"SchemaSnapshot(version={self.version!r}, tables={sorted(self.tables)})"
