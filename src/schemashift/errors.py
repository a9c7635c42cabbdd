"""Error types raised by schemashift."""


class ActionError(Exception):
    """
    Raised when a schema action is not valid for the current schema.

    Examples include creating a table that already exists or adding a
    column to a table that does not. The runner wraps this error in
    ApplyError or RevertError together with the failing unit.
    """

    pass


class MigrationError(Exception):
    """
    Base class for every error the migration runner reports.

    Attributes:
        identifier: Identifier of the offending migration unit, if any
    """

    def __init__(self, message: str, identifier: str | None = None) -> None:
        self.identifier = identifier
        super().__init__(message)


class DiscoveryError(MigrationError):
    """Raised when migration files are misnamed, duplicated or malformed."""

    pass


class TargetError(MigrationError):
    """Raised when a requested target version does not name a known unit."""

    pass


class ApplyError(MigrationError):
    """Raised when a unit's forward actions fail."""

    def __init__(self, identifier: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Migration {identifier} failed to apply: {cause}", identifier)


class RevertError(MigrationError):
    """Raised when a unit's backward actions fail or cannot be derived."""

    def __init__(self, identifier: str, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"Migration {identifier} failed to revert: {cause}", identifier)


class LockContentionError(MigrationError):
    """Raised when another runner holds the migration lock."""

    def __init__(self, lock_path: object, holder: dict | None = None) -> None:
        self.lock_path = lock_path
        self.holder = holder or {}

        message = f"Migration lock is held: {lock_path}"
        if self.holder:
            details = ", ".join(f"{key}={value}" for key, value in sorted(self.holder.items()))
            message += f" ({details})"

        super().__init__(message)


class ConsistencyError(MigrationError):
    """
    Raised when the persisted version state and the migration files disagree.

    This covers applied identifiers with no file, unapplied files ordered
    before the current version, applied files whose content changed and a
    unit left half-executed by an interrupted run.
    """

    pass


class StatePersistenceError(ConsistencyError):
    """
    Raised when the version state cannot be written after a unit succeeded.

    The store may now hold changes the version state does not record.
    This is never retried automatically.
    """

    def __init__(self, identifier: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(
            f"Migration {identifier} ran but its version state could not be saved: {cause}",
            identifier,
        )
