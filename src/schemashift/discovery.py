"""Discovery of migration files and scaffolding of new ones."""

import importlib.util
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import ModuleType

from pathvalidate import ValidationError, validate_filename
from pydantic import ValidationError as ModelValidationError

from .actions import SchemaAction
from .constants import MIGRATION_FILE_PATTERN, MIGRATION_NAME_PATTERN, MIGRATION_TIMESTAMP_FORMAT
from .errors import DiscoveryError
from .migration import ChangeUnit, Migration, sort_key
from .utils import ensure_dir

logger = logging.getLogger(__name__)

_FILE_RE = re.compile(MIGRATION_FILE_PATTERN)
_NAME_RE = re.compile(MIGRATION_NAME_PATTERN)

MIGRATION_TEMPLATE = '''"""{title}."""

from schemashift import Migration
from schemashift.actions import AddColumn, CreateTable


class {class_name}(Migration):
    """{title}."""

    def change(self):
        return [
            # CreateTable(table="artists", columns={{"name": "string"}}),
            # AddColumn(table="artists", column="genre", type="string"),
        ]
'''


def parse_filename(filename: str) -> tuple[str, str]:
    """
    Split a migration file name into identifier and name.

    Args:
        filename: File name such as ``20230603081158_create_artists.py``

    Returns:
        Tuple of (identifier, name)

    Raises:
        DiscoveryError: If the name does not carry a sortable identifier
    """
    match = _FILE_RE.match(filename)
    if not match:
        raise DiscoveryError(
            f"Migration file '{filename}' does not match <digits>_<snake_name>.py"
        )
    return match.group("identifier"), match.group("name")


def _load_module(path: Path, identifier: str) -> ModuleType:
    """Execute a migration file as an anonymous module."""
    module_name = f"schemashift_migration_{identifier}_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if not spec or not spec.loader:
        raise DiscoveryError(f"Cannot load migration file '{path.name}'", identifier)

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise DiscoveryError(f"Migration file '{path.name}' failed to import: {e}", identifier) from e
    return module


def _find_migration_class(module: ModuleType, path: Path, identifier: str) -> type[Migration]:
    """Return the single Migration subclass defined in ``module``."""
    candidates = [
        obj
        for obj in vars(module).values()
        if isinstance(obj, type)
        and issubclass(obj, Migration)
        and obj is not Migration
        and obj.__module__ == module.__name__
    ]
    if len(candidates) != 1:
        raise DiscoveryError(
            f"Migration file '{path.name}' must define exactly one Migration subclass, "
            f"found {len(candidates)}",
            identifier,
        )
    return candidates[0]


def _validate_actions(actions: list | None, label: str, path: Path, identifier: str) -> None:
    if actions is None:
        return
    for action in actions:
        if not isinstance(action, SchemaAction):
            raise DiscoveryError(
                f"Migration file '{path.name}' returned an unsupported {label} action: {action!r}",
                identifier,
            )


def load_unit(path: Path) -> ChangeUnit:
    """
    Load a single migration file into a change unit.

    Args:
        path: Path to the migration file

    Returns:
        The loaded ChangeUnit

    Raises:
        DiscoveryError: If the file is misnamed or does not define a valid migration
    """
    identifier, name = parse_filename(path.name)
    module = _load_module(path, identifier)
    migration_class = _find_migration_class(module, path, identifier)

    if migration_class.change is Migration.change and migration_class.up is Migration.up:
        raise DiscoveryError(
            f"Migration file '{path.name}' defines neither change() nor up()", identifier
        )

    declared = migration_class.version
    if declared is not None and str(declared) != identifier:
        raise DiscoveryError(
            f"Migration file '{path.name}' declares version {declared}, "
            f"but its file name says {identifier}",
            identifier,
        )

    try:
        unit = ChangeUnit(identifier=identifier, name=name, migration=migration_class(), path=path)
    except ModelValidationError as e:
        raise DiscoveryError(f"Migration file '{path.name}' has an invalid action: {e}", identifier) from e
    except TypeError as e:
        raise DiscoveryError(f"Migration file '{path.name}' must return lists of actions: {e}", identifier) from e

    _validate_actions(unit.forward_actions, "forward", path, identifier)
    _validate_actions(unit.explicit_backward, "backward", path, identifier)
    return unit


def validate_units(units: list[ChangeUnit]) -> None:
    """
    Validate that identifiers are unique.

    Raises:
        DiscoveryError: If two units share an identifier
    """
    seen: dict[int, ChangeUnit] = {}
    for unit in units:
        key = sort_key(unit.identifier)
        if key in seen:
            other = seen[key]
            raise DiscoveryError(
                f"Duplicate migration identifier {unit.identifier}: "
                f"'{other}' and '{unit}'",
                unit.identifier,
            )
        seen[key] = unit


def discover(directory: Path) -> list[ChangeUnit]:
    """
    Discover all migration files in a directory.

    Files starting with an underscore and files that are not Python
    modules are ignored.

    Args:
        directory: Directory holding ``<identifier>_<name>.py`` files

    Returns:
        Change units sorted ascending by identifier

    Raises:
        DiscoveryError: If the directory is missing, a file is malformed,
            or two files share an identifier
    """
    if not directory.is_dir():
        raise DiscoveryError(f"Migrations directory does not exist: {directory}")

    units: list[ChangeUnit] = []
    for path in sorted(directory.glob("*.py")):
        if path.name.startswith("_"):
            continue
        unit = load_unit(path)
        logger.debug(f"Discovered migration: {unit.identifier} - {unit.name}")
        units.append(unit)

    validate_units(units)
    return sorted(units, key=lambda u: u.order)


def _class_name(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_") if part)


def new_migration(directory: Path, name: str, now: datetime | None = None) -> Path:
    """
    Create a new timestamped migration file from the template.

    Args:
        directory: Migrations directory (created if missing)
        name: Snake-case migration name, e.g. ``add_favorite_flower``
        now: Timestamp to use (defaults to the current UTC time)

    Returns:
        Path of the created file

    Raises:
        DiscoveryError: If the name is not a valid snake-case identifier
    """
    if not _NAME_RE.match(name):
        raise DiscoveryError(f"Invalid migration name '{name}': use lowercase snake_case")

    ensure_dir(directory)
    taken = {
        sort_key(match.group("identifier"))
        for path in directory.glob("*.py")
        if (match := _FILE_RE.match(path.name))
    }

    moment = now or datetime.now(timezone.utc)
    identifier = moment.strftime(MIGRATION_TIMESTAMP_FORMAT)
    while sort_key(identifier) in taken:
        moment += timedelta(seconds=1)
        identifier = moment.strftime(MIGRATION_TIMESTAMP_FORMAT)

    filename = f"{identifier}_{name}.py"
    try:
        validate_filename(filename)
    except ValidationError as e:
        raise DiscoveryError(f"Invalid migration file name '{filename}': {e}") from e

    path = directory / filename
    title = name.replace("_", " ").capitalize()
    path.write_text(
        MIGRATION_TEMPLATE.format(title=title, class_name=_class_name(name)),
        encoding="utf-8",
    )
    logger.info(f"Created migration {path}")
    return path
