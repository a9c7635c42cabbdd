"""Schema actions that migration units are built from.

Every schema change is one of a small, closed set of tagged action models.
Each action knows how to change a schema projection and how to rewrite the
stored documents, and the ``INVERSES`` table maps each kind to the action
that undoes it.
"""

import re
from collections.abc import Callable, Iterable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .constants import RESERVED_TABLE_PREFIX
from .errors import ActionError

ColumnType = Literal["string", "text", "integer", "float", "boolean", "date", "datetime", "json"]

# Schema projection: table -> column -> spec
Tables = dict[str, dict[str, "ColumnSpec"]]
# Raw document storage: table -> doc_id -> document
Documents = dict[str, dict[str, dict[str, Any]]]

_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def _check_name(value: str, what: str) -> str:
    if not _NAME_RE.match(value):
        raise ValueError(f"Invalid {what} name: {value!r}")
    return value


def _check_table_name(value: str) -> str:
    if value.startswith(RESERVED_TABLE_PREFIX):
        raise ValueError(f"Table names starting with {RESERVED_TABLE_PREFIX!r} are reserved: {value!r}")
    return _check_name(value, "table")


def _coerce_columns(value: Any) -> Any:
    """Allow ``{"name": "string"}`` as shorthand for ``{"name": {"type": "string"}}``."""
    if isinstance(value, dict):
        for name in value:
            _check_name(name, "column")
        return {name: {"type": spec} if isinstance(spec, str) else spec for name, spec in value.items()}
    return value


class ColumnSpec(BaseModel):
    """Declared shape of a single column."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ColumnType
    default: Any = None
    nullable: bool = True

    @model_validator(mode="after")
    def require_default_when_not_nullable(self) -> "ColumnSpec":
        if not self.nullable and self.default is None:
            raise ValueError("Non-nullable columns need a default value")
        return self


class SchemaAction(BaseModel):
    """Base class for all schema actions."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str

    @field_validator("table", check_fields=False)
    @classmethod
    def validate_table(cls, value: str) -> str:
        return _check_table_name(value)

    @field_validator("column", check_fields=False)
    @classmethod
    def validate_column(cls, value: str) -> str:
        return _check_name(value, "column")

    def apply_schema(self, tables: Tables) -> None:
        """
        Apply this action to a schema projection in place.

        Args:
            tables: Schema projection to change

        Raises:
            ActionError: If the action is not valid for the projection
        """
        raise NotImplementedError

    def apply_data(self, documents: Documents) -> None:
        """Rewrite stored documents to follow this action. Most actions leave data alone."""
        return None

    def describe(self) -> str:
        """Return a short human-readable description."""
        raise NotImplementedError


def _require_table(tables: Tables, table: str) -> dict[str, ColumnSpec]:
    if table not in tables:
        raise ActionError(f"Table '{table}' does not exist")
    return tables[table]


def _require_column(tables: Tables, table: str, column: str) -> ColumnSpec:
    columns = _require_table(tables, table)
    if column not in columns:
        raise ActionError(f"Column '{table}.{column}' does not exist")
    return columns[column]


def _describe_spec(type_: str, default: Any, nullable: bool) -> str:
    details = [type_]
    if not nullable:
        details.append("not null")
    if default is not None:
        details.append(f"default {default!r}")
    return " ".join(details)


def _describe_columns(columns: dict[str, ColumnSpec]) -> str:
    described = (
        f"{name}: {_describe_spec(spec.type, spec.default, spec.nullable)}" for name, spec in columns.items()
    )
    return "{" + ", ".join(described) + "}"


class CreateTable(SchemaAction):
    """Create a table with the given columns."""

    kind: Literal["create_table"] = "create_table"
    table: str
    columns: dict[str, ColumnSpec] = {}

    @field_validator("columns", mode="before")
    @classmethod
    def validate_columns(cls, value: Any) -> Any:
        return _coerce_columns(value)

    def apply_schema(self, tables: Tables) -> None:
        if self.table in tables:
            raise ActionError(f"Table '{self.table}' already exists")
        tables[self.table] = dict(self.columns)

    def describe(self) -> str:
        return f"create table {self.table} ({len(self.columns)} column(s))"


class DropTable(SchemaAction):
    """
    Drop a table and every document in it.

    ``columns`` records the dropped shape so the drop can be reversed. When
    it is omitted the action has no inverse.
    """

    kind: Literal["drop_table"] = "drop_table"
    table: str
    columns: dict[str, ColumnSpec] | None = None

    @field_validator("columns", mode="before")
    @classmethod
    def validate_columns(cls, value: Any) -> Any:
        return _coerce_columns(value)

    def apply_schema(self, tables: Tables) -> None:
        current = _require_table(tables, self.table)
        if self.columns is not None and current != self.columns:
            raise ActionError(
                f"Table '{self.table}' does not have the declared columns "
                f"(has {_describe_columns(current)}, declared {_describe_columns(self.columns)})"
            )
        del tables[self.table]

    def apply_data(self, documents: Documents) -> None:
        documents.pop(self.table, None)

    def describe(self) -> str:
        return f"drop table {self.table}"


class AddColumn(SchemaAction):
    """Add a column; existing documents receive the default value."""

    kind: Literal["add_column"] = "add_column"
    table: str
    column: str
    type: ColumnType
    default: Any = None
    nullable: bool = True

    @model_validator(mode="after")
    def require_default_when_not_nullable(self) -> "AddColumn":
        if not self.nullable and self.default is None:
            raise ValueError("Non-nullable columns need a default value")
        return self

    @property
    def spec(self) -> ColumnSpec:
        return ColumnSpec(type=self.type, default=self.default, nullable=self.nullable)

    def apply_schema(self, tables: Tables) -> None:
        columns = _require_table(tables, self.table)
        if self.column in columns:
            raise ActionError(f"Column '{self.table}.{self.column}' already exists")
        columns[self.column] = self.spec

    def apply_data(self, documents: Documents) -> None:
        for doc in documents.get(self.table, {}).values():
            doc.setdefault(self.column, self.default)

    def describe(self) -> str:
        return f"add column {self.table}.{self.column} ({self.type})"


class RemoveColumn(SchemaAction):
    """
    Remove a column from a table and from every stored document.

    ``type``, ``default`` and ``nullable`` record the removed column so the
    removal can be reversed. When ``type`` is omitted the action has no
    inverse. When it is given, the whole declared column must match the
    current one.
    """

    kind: Literal["remove_column"] = "remove_column"
    table: str
    column: str
    type: ColumnType | None = None
    default: Any = None
    nullable: bool = True

    def apply_schema(self, tables: Tables) -> None:
        current = _require_column(tables, self.table, self.column)
        if self.type is not None:
            declared = (self.type, self.default, self.nullable)
            if (current.type, current.default, current.nullable) != declared:
                raise ActionError(
                    f"Column '{self.table}.{self.column}' is "
                    f"{_describe_spec(current.type, current.default, current.nullable)}, declared "
                    f"{_describe_spec(*declared)}"
                )
        del tables[self.table][self.column]

    def apply_data(self, documents: Documents) -> None:
        for doc in documents.get(self.table, {}).values():
            doc.pop(self.column, None)

    def describe(self) -> str:
        return f"remove column {self.table}.{self.column}"


class RenameColumn(SchemaAction):
    """Rename a column, keeping its position and stored values."""

    kind: Literal["rename_column"] = "rename_column"
    table: str
    old: str
    new: str

    @field_validator("old", "new")
    @classmethod
    def validate_names(cls, value: str) -> str:
        return _check_name(value, "column")

    def apply_schema(self, tables: Tables) -> None:
        columns = _require_table(tables, self.table)
        _require_column(tables, self.table, self.old)
        if self.new in columns:
            raise ActionError(f"Column '{self.table}.{self.new}' already exists")
        tables[self.table] = {
            (self.new if name == self.old else name): spec for name, spec in columns.items()
        }

    def apply_data(self, documents: Documents) -> None:
        for doc in documents.get(self.table, {}).values():
            if self.old in doc:
                doc[self.new] = doc.pop(self.old)

    def describe(self) -> str:
        return f"rename column {self.table}.{self.old} to {self.new}"


class RenameTable(SchemaAction):
    """Rename a table and move its documents."""

    kind: Literal["rename_table"] = "rename_table"
    old: str
    new: str

    @field_validator("old", "new")
    @classmethod
    def validate_names(cls, value: str) -> str:
        return _check_table_name(value)

    def apply_schema(self, tables: Tables) -> None:
        _require_table(tables, self.old)
        if self.new in tables:
            raise ActionError(f"Table '{self.new}' already exists")
        tables[self.new] = tables.pop(self.old)

    def apply_data(self, documents: Documents) -> None:
        if self.old in documents:
            documents[self.new] = documents.pop(self.old)

    def describe(self) -> str:
        return f"rename table {self.old} to {self.new}"


class ChangeColumnDefault(SchemaAction):
    """Change the default of a column. Stored documents are not touched."""

    kind: Literal["change_column_default"] = "change_column_default"
    table: str
    column: str
    old: Any = None
    new: Any = None

    def apply_schema(self, tables: Tables) -> None:
        current = _require_column(tables, self.table, self.column)
        if current.default != self.old:
            raise ActionError(
                f"Column '{self.table}.{self.column}' has default {current.default!r}, "
                f"declared {self.old!r}"
            )
        if not current.nullable and self.new is None:
            raise ActionError(f"Column '{self.table}.{self.column}' is not nullable")
        tables[self.table][self.column] = current.model_copy(update={"default": self.new})

    def describe(self) -> str:
        return f"change default of {self.table}.{self.column} to {self.new!r}"


def _invert_drop_table(action: DropTable) -> SchemaAction | None:
    if action.columns is None:
        return None
    return CreateTable(table=action.table, columns=action.columns)


def _invert_remove_column(action: RemoveColumn) -> SchemaAction | None:
    if action.type is None:
        return None
    return AddColumn(
        table=action.table,
        column=action.column,
        type=action.type,
        default=action.default,
        nullable=action.nullable,
    )


# Inverse lookup table keyed by action kind
INVERSES: dict[str, Callable[[Any], SchemaAction | None]] = {
    "create_table": lambda a: DropTable(table=a.table, columns=a.columns),
    "drop_table": _invert_drop_table,
    "add_column": lambda a: RemoveColumn(
        table=a.table, column=a.column, type=a.type, default=a.default, nullable=a.nullable
    ),
    "remove_column": _invert_remove_column,
    "rename_column": lambda a: RenameColumn(table=a.table, old=a.new, new=a.old),
    "rename_table": lambda a: RenameTable(old=a.new, new=a.old),
    "change_column_default": lambda a: ChangeColumnDefault(
        table=a.table, column=a.column, old=a.new, new=a.old
    ),
}


def invert(action: SchemaAction) -> SchemaAction | None:
    """
    Return the action that undoes ``action``.

    Args:
        action: Action to invert

    Returns:
        Inverse action, or None when the action cannot be inverted
    """
    inverter = INVERSES.get(action.kind)
    if inverter is None:
        return None
    return inverter(action)


def invert_all(actions: Iterable[SchemaAction]) -> list[SchemaAction] | None:
    """
    Invert a sequence of actions, last action first.

    Returns:
        Inverted actions in undo order, or None if any action has no inverse
    """
    inverted: list[SchemaAction] = []
    for action in reversed(list(actions)):
        inverse = invert(action)
        if inverse is None:
            return None
        inverted.append(inverse)
    return inverted
