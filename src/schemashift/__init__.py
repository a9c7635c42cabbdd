"""schemashift: Ordered, reversible schema migrations for TinyDB stores."""

__version__ = "0.1.0"

from .actions import (
    AddColumn,
    ChangeColumnDefault,
    ColumnSpec,
    CreateTable,
    DropTable,
    RemoveColumn,
    RenameColumn,
    RenameTable,
)
from .discovery import discover
from .errors import (
    ActionError,
    ApplyError,
    ConsistencyError,
    DiscoveryError,
    LockContentionError,
    MigrationError,
    RevertError,
    StatePersistenceError,
    TargetError,
)
from .migration import ChangeUnit, Migration
from .runner import MigrationRunner
from .state import Store

__all__ = [
    "__version__",
    "ActionError",
    "AddColumn",
    "ApplyError",
    "ChangeColumnDefault",
    "ChangeUnit",
    "ColumnSpec",
    "ConsistencyError",
    "CreateTable",
    "DiscoveryError",
    "DropTable",
    "LockContentionError",
    "Migration",
    "MigrationError",
    "MigrationRunner",
    "RemoveColumn",
    "RenameColumn",
    "RenameTable",
    "RevertError",
    "StatePersistenceError",
    "Store",
    "TargetError",
    "discover",
]
