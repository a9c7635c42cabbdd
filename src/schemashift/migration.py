"""Migration base class and the discovered change unit."""

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path

from .actions import SchemaAction, invert_all
from .constants import CHECKSUM_LENGTH


class Migration:
    """
    Base class for migration files.

    A migration either describes a reversible change with ``change()``, or
    spells out both directions with ``up()`` and ``down()``. All of them
    return lists of schema actions; ``down()`` is derived from ``up()`` (or
    ``change()``) when it is not overridden.

    Example:
        class CreateArtists(Migration):
            def change(self):
                return [CreateTable(table="artists", columns={"name": "string"})]
    """

    # Optional: when set, must match the identifier in the file name
    version: str | None = None

    def change(self) -> list[SchemaAction] | None:
        """Return the reversible actions of this migration."""
        return None

    def up(self) -> list[SchemaAction] | None:
        """Return the forward actions. Defaults to ``change()``."""
        return self.change()

    def down(self) -> list[SchemaAction] | None:
        """Return the backward actions, or None to derive them from ``up()``."""
        return None

    def description(self) -> str:
        """Return a human-readable description of this migration."""
        doc = (type(self).__doc__ or "").strip()
        return doc.splitlines()[0] if doc else type(self).__name__


def sort_key(identifier: str) -> int:
    """Ordering key for identifiers: their integer value."""
    return int(identifier)


def humanize(name: str) -> str:
    """Turn ``create_artists`` into ``Create artists``."""
    return name.replace("_", " ").strip().capitalize()


@dataclass
class ChangeUnit:
    """
    A discovered migration: one ordered, reversible schema change.

    Attributes:
        identifier: Sortable digit token from the file name
        name: Snake-case label from the file name
        migration: The loaded migration instance
        path: Source file, if loaded from disk
    """

    identifier: str
    name: str
    migration: Migration
    path: Path | None = None
    forward_actions: list[SchemaAction] = field(init=False)
    explicit_backward: list[SchemaAction] | None = field(init=False)

    def __post_init__(self) -> None:
        self.forward_actions = list(self.migration.up() or [])
        down = self.migration.down()
        self.explicit_backward = list(down) if down is not None else None

    @property
    def title(self) -> str:
        return humanize(self.name)

    @property
    def backward_actions(self) -> list[SchemaAction] | None:
        """Explicit ``down()`` actions, else the inverted forward actions, else None."""
        if self.explicit_backward is not None:
            return self.explicit_backward
        return invert_all(self.forward_actions)

    @property
    def is_reversible(self) -> bool:
        return self.backward_actions is not None

    @property
    def checksum(self) -> str:
        """
        Checksum of the unit's actions.

        Uses SHA256 of the canonical JSON of the forward and explicit backward
        actions, so formatting changes in the file do not affect it while any
        change to what the migration does will.

        Returns:
            Hex string of SHA256 hash (first 16 chars)
        """
        payload = {
            "up": [a.model_dump(mode="json") for a in self.forward_actions],
            "down": (
                [a.model_dump(mode="json") for a in self.explicit_backward]
                if self.explicit_backward is not None
                else None
            ),
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()[:CHECKSUM_LENGTH]

    def verify_checksum(self, stored_checksum: str) -> bool:
        """Return True if the unit still matches the checksum recorded when it was applied."""
        return self.checksum == stored_checksum

    @property
    def order(self) -> int:
        return sort_key(self.identifier)

    def __str__(self) -> str:
        return f"{self.identifier}_{self.name}"
