"""Constants used throughout schemashift."""

from enum import Enum


# Migration directions
class Direction(str, Enum):
    """Direction in which a migration unit is executed.

    Attributes:
        UP: Forward actions are applied
        DOWN: Backward actions are applied
    """

    UP = "up"
    DOWN = "down"


# Per-unit status reported by `schemashift status`
class UnitStatus(str, Enum):
    """Status of a migration unit relative to the version state.

    Attributes:
        UP: Unit is recorded as applied
        DOWN: Unit is discovered but not applied
        MISSING: Unit is recorded as applied but its file is gone
    """

    UP = "up"
    DOWN = "down"
    MISSING = "missing"


# Symbolic migration targets
TARGET_LATEST = "latest"
TARGET_PREVIOUS = "previous"

# Migration file naming: <identifier>_<name>.py
MIGRATION_FILE_PATTERN = r"^(?P<identifier>\d+)_(?P<name>[a-z0-9_]+)\.py$"
MIGRATION_NAME_PATTERN = r"^[a-z][a-z0-9_]*$"
MIGRATION_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# Database table names
DB_TABLE_STATE = "_schemashift"
RESERVED_TABLE_PREFIX = "_"

# Version state document ID (fixed ID so the state is always a single document)
DB_STATE_DOC_ID = 1

# Checksum configuration
CHECKSUM_LENGTH = 16

# Lock configuration
LOCK_FILE_SUFFIX = ".lock"
LOCK_RETRY_BACKOFF_BASE = 0.1  # seconds
LOCK_RETRY_MAX_DELAY = 2.0  # seconds

# Schema dump format version
SCHEMA_DUMP_VERSION = 1

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
