"""Version state and the TinyDB store that migrations run against."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from tinydb import TinyDB
from tinydb.storages import MemoryStorage
from tinydb.table import Document, Table

from .actions import Documents, SchemaAction
from .constants import DB_STATE_DOC_ID, DB_TABLE_STATE, Direction
from .migration import ChangeUnit, sort_key
from .utils import ensure_dir

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AppliedRecord(BaseModel):
    """Bookkeeping for one applied migration unit."""

    name: str
    checksum: str
    applied_at: datetime


class InProgress(BaseModel):
    """Marker for a unit whose actions have started but not been recorded."""

    identifier: str
    direction: Direction
    started_at: datetime


class VersionState(BaseModel):
    """
    Persisted record of which migration units are applied.

    Pydantic model stored as a single document in the store's state table.
    ``current_version`` always equals the highest applied identifier.
    """

    current_version: str | None = None
    applied: dict[str, AppliedRecord] = Field(default_factory=dict)
    in_progress: InProgress | None = None

    @property
    def applied_set(self) -> set[str]:
        return set(self.applied)

    def applied_in_order(self) -> list[str]:
        """Applied identifiers in ascending order."""
        return sorted(self.applied, key=sort_key)

    def is_applied(self, identifier: str) -> bool:
        return identifier in self.applied

    def begin(self, unit: ChangeUnit, direction: Direction) -> "VersionState":
        """Return a copy marking ``unit`` as in progress."""
        marker = InProgress(identifier=unit.identifier, direction=direction, started_at=_now())
        return self.model_copy(update={"in_progress": marker})

    def record_applied(self, unit: ChangeUnit) -> "VersionState":
        """Return a copy with ``unit`` applied and no unit in progress."""
        applied = dict(self.applied)
        applied[unit.identifier] = AppliedRecord(
            name=unit.name, checksum=unit.checksum, applied_at=_now()
        )
        return VersionState(
            current_version=_max_identifier(applied),
            applied=applied,
            in_progress=None,
        )

    def record_reverted(self, identifier: str) -> "VersionState":
        """Return a copy with ``identifier`` removed and no unit in progress."""
        applied = {key: value for key, value in self.applied.items() if key != identifier}
        return VersionState(
            current_version=_max_identifier(applied),
            applied=applied,
            in_progress=None,
        )

    def cleared(self) -> "VersionState":
        """Return a copy with the in-progress marker removed."""
        return self.model_copy(update={"in_progress": None})


def _max_identifier(identifiers: dict[str, Any]) -> str | None:
    if not identifiers:
        return None
    return max(identifiers, key=sort_key)


class Store:
    """
    TinyDB-backed store for both user tables and the version state.

    Schema actions rewrite the stored documents through the raw storage
    layer, so each action is a single write of the JSON file. The version
    state lives in the reserved ``_schemashift`` table as one document with
    a fixed doc_id.
    """

    def __init__(self, path: Path, read_only: bool = False):
        """
        Open (or create) the store.

        Args:
            path: Path to the TinyDB JSON file
            read_only: Do not create the file; a missing store reads as empty
        """
        self.path = path
        if read_only and not path.exists():
            self.db = TinyDB(storage=MemoryStorage)
        else:
            ensure_dir(path.parent)
            self.db = TinyDB(path)
        self.state_table: Table = self.db.table(DB_TABLE_STATE)

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.db.close()

    def table(self, name: str) -> Table:
        """Return a user table."""
        return self.db.table(name)

    def load_state(self) -> VersionState:
        """
        Read the version state.

        Returns:
            Stored VersionState, or an empty one if nothing is stored
        """
        doc = self.state_table.get(doc_id=DB_STATE_DOC_ID)
        if not doc or not isinstance(doc, dict):
            return VersionState()
        return VersionState.model_validate(dict(doc))

    def save_state(self, state: VersionState) -> None:
        """Persist the version state as a single document."""
        data = state.model_dump(mode="json")
        # Use update if doc exists, otherwise insert with the fixed doc_id
        if self.state_table.get(doc_id=DB_STATE_DOC_ID):
            self.state_table.update(data, doc_ids=[DB_STATE_DOC_ID])
        else:
            self.state_table.insert(Document(data, doc_id=DB_STATE_DOC_ID))

    def clear_state(self) -> None:
        """Delete the version state (full reset)."""
        self.state_table.truncate()

    def capture(self) -> dict[str, Any]:
        """Return an independent image of every table, for restore on failure."""
        return self.db.storage.read() or {}

    def restore(self, image: dict[str, Any]) -> None:
        """Write back an image taken with ``capture``."""
        self.db.storage.write(image)
        self._clear_caches()
        logger.debug(f"Restored store image ({len(image)} table(s))")

    def execute(self, action: SchemaAction) -> None:
        """
        Rewrite stored documents for a schema action.

        Args:
            action: Action whose data change to apply
        """
        documents: Documents = self.db.storage.read() or {}
        action.apply_data(documents)
        self.db.storage.write(documents)
        self._clear_caches()
        logger.debug(f"Executed: {action.describe()}")

    def _clear_caches(self) -> None:
        # Table objects cache query results between reads, including tables
        # a rewrite just dropped or renamed away
        for table in list(self.db._tables.values()):
            table.clear_cache()
        self.state_table.clear_cache()
