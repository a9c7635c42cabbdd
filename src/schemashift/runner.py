"""Migration runner: ordered application and reversal of change units."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from rich.console import Console

from .constants import TARGET_LATEST, TARGET_PREVIOUS, Direction, UnitStatus
from .discovery import discover, validate_units
from .errors import (
    ActionError,
    ApplyError,
    ConsistencyError,
    RevertError,
    StatePersistenceError,
    TargetError,
)
from .lock import MigrationLock, lock_path_for
from .migration import ChangeUnit, sort_key
from .snapshot import SchemaSnapshot
from .state import InProgress, Store, VersionState

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """Outcome of a batch of applied or reverted units."""

    direction: Direction
    units: list[ChangeUnit] = field(default_factory=list)
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.units) and not self.dry_run


@dataclass
class StatusEntry:
    """Status of one migration unit."""

    identifier: str
    name: str
    status: UnitStatus
    checksum_ok: bool = True
    applied_at: datetime | None = None


@dataclass
class StatusReport:
    """Read-only view of every unit plus the version state."""

    current_version: str | None
    entries: list[StatusEntry]
    gaps: list[str]
    in_progress: InProgress | None
    problems: list[str]

    @property
    def pending(self) -> list[StatusEntry]:
        return [e for e in self.entries if e.status == UnitStatus.DOWN]

    @property
    def is_consistent(self) -> bool:
        return not self.problems


class MigrationRunner:
    """Discovers, orders, applies and reverts migration units against a store."""

    def __init__(
        self,
        store: Store,
        units: list[ChangeUnit],
        lock: MigrationLock | None = None,
        schema_file: Path | None = None,
        console: Console | None = None,
    ) -> None:
        """
        Initialize migration runner.

        Args:
            store: Store the migrations run against
            units: Discovered change units (any order)
            lock: Lock held around every mutating batch (default: a
                lock file next to the store with no wait)
            schema_file: TOML file rewritten after every change, if set
            console: Rich console for progress output

        Raises:
            DiscoveryError: If two units share an identifier
        """
        validate_units(units)
        self.store = store
        self.units = sorted(units, key=lambda u: u.order)
        self.lock = lock or MigrationLock(lock_path_for(store.path))
        self.schema_file = schema_file
        self.console = console or Console()
        self._by_id = {unit.identifier: unit for unit in self.units}
        self._by_key = {unit.order: unit for unit in self.units}

    @classmethod
    def from_directory(cls, directory: Path, store: Store, **kwargs) -> "MigrationRunner":
        """Create a runner for the migration files in ``directory``."""
        return cls(store, discover(directory), **kwargs)

    # -- reading -----------------------------------------------------------

    def get_state(self) -> VersionState:
        return self.store.load_state()

    def get_current_version(self) -> str | None:
        return self.store.load_state().current_version

    def get_target_version(self) -> str | None:
        """Return the highest discovered identifier."""
        return self.units[-1].identifier if self.units else None

    def find_unit(self, identifier: str) -> ChangeUnit:
        """
        Look up a unit by identifier (compared by integer value).

        Raises:
            TargetError: If no discovered unit has that identifier
        """
        try:
            unit = self._by_key.get(sort_key(identifier))
        except ValueError:
            unit = None
        if unit is None:
            raise TargetError(f"Unknown migration version: {identifier}", identifier)
        return unit

    def resolve_target(self, target: str | None, state: VersionState | None = None) -> str | None:
        """
        Resolve a target to a unit identifier.

        Args:
            target: ``latest`` (or None), ``previous``, ``0`` for "nothing
                applied", or a unit identifier
            state: Version state to resolve ``previous`` against

        Returns:
            Identifier of the target unit, or None when the target is the
            empty schema

        Raises:
            TargetError: If the target names no known unit
        """
        if target is None or target == TARGET_LATEST:
            return self.get_target_version()

        if target == TARGET_PREVIOUS:
            state = state or self.store.load_state()
            applied = state.applied_in_order()
            return applied[-2] if len(applied) >= 2 else None

        if target.isdigit() and sort_key(target) == 0 and 0 not in self._by_key:
            return None

        return self.find_unit(target).identifier

    def pending(self, target: str | None = None, state: VersionState | None = None) -> list[ChangeUnit]:
        """
        Return units above the current version up to the target, ascending.

        Args:
            target: Target version (default: latest)
            state: Version state to compute against (default: load it)

        Returns:
            Units still to apply; empty when already at the target
        """
        state = state or self.store.load_state()
        target_id = self.resolve_target(target, state)
        if target_id is None:
            return []

        current = sort_key(state.current_version) if state.current_version else -1
        upper = sort_key(target_id)
        return [
            unit
            for unit in self.units
            if current < unit.order <= upper and not state.is_applied(unit.identifier)
        ]

    def needs_migration(self) -> bool:
        """Return True if any unit is pending."""
        return bool(self.pending())

    def verify(self, state: VersionState | None = None) -> list[str]:
        """
        Compare the version state with the discovered units.

        Returns:
            List of problems (empty if state and files agree)
        """
        return [message for _, message in self._find_problems(state or self.store.load_state())]

    def _find_problems(self, state: VersionState) -> list[tuple[str, str]]:
        problems: list[tuple[str, str]] = []

        marker = state.in_progress
        if marker is not None:
            problems.append(
                (
                    marker.identifier,
                    f"Migration {marker.identifier} was interrupted while migrating "
                    f"{marker.direction.value} (started {marker.started_at.isoformat()})",
                )
            )

        for identifier in state.applied_in_order():
            record = state.applied[identifier]
            unit = self._by_id.get(identifier)
            if unit is None:
                problems.append(
                    (identifier, f"Migration {identifier} ({record.name}) is applied but has no file")
                )
            elif not unit.verify_checksum(record.checksum):
                problems.append(
                    (
                        identifier,
                        f"Migration {identifier} has been modified since it was applied "
                        f"(expected {record.checksum}, found {unit.checksum})",
                    )
                )

        for identifier in self._gaps(state):
            problems.append(
                (identifier, f"Migration {identifier} is ordered before applied migrations but is not applied")
            )

        return problems

    def _gaps(self, state: VersionState) -> list[str]:
        if state.current_version is None:
            return []
        current = sort_key(state.current_version)
        return [
            unit.identifier
            for unit in self.units
            if unit.order < current and not state.is_applied(unit.identifier)
        ]

    def _ensure_consistent(self, state: VersionState) -> None:
        problems = self._find_problems(state)
        if problems:
            details = "\n".join(f"  - {message}" for _, message in problems)
            raise ConsistencyError(
                f"Version state does not match the migration files:\n{details}",
                problems[0][0],
            )

    def status(self) -> StatusReport:
        """
        Report every unit as up, down or missing. Pure read.

        Returns:
            StatusReport with per-unit entries and any consistency problems
        """
        state = self.store.load_state()
        entries: list[StatusEntry] = []

        for unit in self.units:
            record = state.applied.get(unit.identifier)
            if record is None:
                entries.append(StatusEntry(unit.identifier, unit.name, UnitStatus.DOWN))
            else:
                entries.append(
                    StatusEntry(
                        unit.identifier,
                        unit.name,
                        UnitStatus.UP,
                        checksum_ok=unit.verify_checksum(record.checksum),
                        applied_at=record.applied_at,
                    )
                )

        for identifier, record in state.applied.items():
            if identifier not in self._by_id:
                entries.append(
                    StatusEntry(identifier, record.name, UnitStatus.MISSING, applied_at=record.applied_at)
                )

        entries.sort(key=lambda e: sort_key(e.identifier))
        return StatusReport(
            current_version=state.current_version,
            entries=entries,
            gaps=self._gaps(state),
            in_progress=state.in_progress,
            problems=self.verify(state),
        )

    def snapshot(self) -> SchemaSnapshot:
        """Rebuild the schema projection from the applied units."""
        return self._replay(self.store.load_state())

    def _replay(self, state: VersionState) -> SchemaSnapshot:
        units: list[ChangeUnit] = []
        for identifier in state.applied_in_order():
            unit = self._by_id.get(identifier)
            if unit is None:
                raise ConsistencyError(f"Migration {identifier} is applied but has no file", identifier)
            units.append(unit)

        try:
            return SchemaSnapshot.replay(units)
        except ActionError as e:
            raise ConsistencyError(f"Applied migrations do not replay cleanly: {e}") from e

    # -- writing -----------------------------------------------------------

    @contextmanager
    def _locked(self, enabled: bool = True) -> Iterator[None]:
        if not enabled:
            yield
            return
        with self.lock:
            yield

    def _write_schema(self, snapshot: SchemaSnapshot) -> None:
        if self.schema_file is not None:
            snapshot.dump(self.schema_file)

    def _save_state(self, state: VersionState, identifier: str) -> None:
        try:
            self.store.save_state(state)
        except (OSError, ValueError, TypeError) as e:
            logger.critical(f"Version state write failed after migration {identifier}: {e}")
            raise StatePersistenceError(identifier, e) from e

    def _apply_unit(
        self, unit: ChangeUnit, state: VersionState, snapshot: SchemaSnapshot
    ) -> tuple[VersionState, SchemaSnapshot]:
        """Execute one unit's forward actions and record it."""
        self.console.print(f"  Applying migration {unit.identifier}: {unit.title}")
        staged = snapshot.copy()
        image = self.store.capture()

        try:
            self.store.save_state(state.begin(unit, Direction.UP))
            for action in unit.forward_actions:
                staged.apply(action)
                self.store.execute(action)
        except Exception as e:
            self.console.print(f"[red]Error:[/red] Migration {unit.identifier} failed: {e}")
            self.store.restore(image)
            raise ApplyError(unit.identifier, e) from e

        new_state = state.record_applied(unit)
        self._save_state(new_state, unit.identifier)
        staged.version = new_state.current_version
        self._write_schema(staged)
        logger.info(f"Applied migration {unit}")
        return new_state, staged

    def _revert_unit(
        self, unit: ChangeUnit, state: VersionState, snapshot: SchemaSnapshot
    ) -> tuple[VersionState, SchemaSnapshot]:
        """Execute one unit's backward actions and remove its record."""
        backward = unit.backward_actions
        if backward is None:
            raise RevertError(
                unit.identifier,
                "no down() is defined and its actions cannot be inverted",
            )

        self.console.print(f"  Reverting migration {unit.identifier}: {unit.title}")
        staged = snapshot.copy()
        image = self.store.capture()

        try:
            self.store.save_state(state.begin(unit, Direction.DOWN))
            for action in backward:
                staged.apply(action)
                self.store.execute(action)
        except Exception as e:
            self.console.print(f"[red]Error:[/red] Migration {unit.identifier} failed to revert: {e}")
            self.store.restore(image)
            raise RevertError(unit.identifier, e) from e

        new_state = state.record_reverted(unit.identifier)
        self._save_state(new_state, unit.identifier)
        staged.version = new_state.current_version
        self._write_schema(staged)
        logger.info(f"Reverted migration {unit}")
        return new_state, staged

    def apply(self, unit: ChangeUnit) -> bool:
        """
        Apply a single unit.

        Args:
            unit: Unit to apply; every unit ordered before it must be applied

        Returns:
            True if applied, False if it was already applied (no-op)

        Raises:
            ConsistencyError: If earlier units are unapplied or the state has drifted
            ApplyError: If a forward action fails
        """
        with self._locked():
            state = self.store.load_state()
            self._ensure_consistent(state)

            if state.is_applied(unit.identifier):
                self.console.print(f"Migration {unit.identifier} is already applied.")
                logger.info(f"Skipping already applied migration {unit}")
                return False

            earlier = [
                u.identifier
                for u in self.units
                if u.order < unit.order and not state.is_applied(u.identifier)
            ]
            if earlier:
                raise ConsistencyError(
                    f"Migration {unit.identifier} cannot be applied before {', '.join(earlier)}",
                    unit.identifier,
                )

            self._apply_unit(unit, state, self._replay(state))
            return True

    def migrate(self, target: str | None = TARGET_LATEST, dry_run: bool = False) -> MigrationResult:
        """
        Bring the store to ``target``, applying or reverting as needed.

        Pending units are applied in ascending order and processing stops at
        the first failure. A target below the current version reverts down
        to it.

        Args:
            target: ``latest``, ``previous``, ``0`` or a unit identifier
            dry_run: Report what would run without touching the store

        Returns:
            MigrationResult listing the units that ran (or would run)
        """
        with self._locked(enabled=not dry_run):
            state = self.store.load_state()
            self._ensure_consistent(state)
            target_id = self.resolve_target(target, state)

            if state.current_version is not None and (
                target_id is None or sort_key(target_id) < sort_key(state.current_version)
            ):
                selected = [
                    identifier
                    for identifier in reversed(state.applied_in_order())
                    if target_id is None or sort_key(identifier) > sort_key(target_id)
                ]
                return self._revert_selected(selected, state, dry_run)

            pending = self.pending(target_id, state) if target_id is not None else []
            result = MigrationResult(Direction.UP, dry_run=dry_run)

            if dry_run:
                result.units = pending
                return result

            if not pending:
                self.console.print("Database schema is up to date.")
                return result

            current = state.current_version or "0"
            self.console.print(f"Running database migrations (v{current} -> v{pending[-1].identifier})...")

            snapshot = self._replay(state)
            for unit in pending:
                state, snapshot = self._apply_unit(unit, state, snapshot)
                result.units.append(unit)

            self.console.print("Database migrations completed.")
            return result

    def revert(self, count: int = 1, target: str | None = None, dry_run: bool = False) -> MigrationResult:
        """
        Revert the most recently applied units, newest first.

        Args:
            count: Number of units to revert (ignored when target is given)
            target: Revert every applied unit above this version
            dry_run: Report what would run without touching the store

        Returns:
            MigrationResult listing the units that were (or would be) reverted

        Raises:
            ValueError: If count is not positive
            RevertError: If a unit's backward actions fail or are undefined
        """
        if target is None and count < 1:
            raise ValueError("count must be at least 1")

        with self._locked(enabled=not dry_run):
            state = self.store.load_state()
            self._ensure_consistent(state)
            applied = list(reversed(state.applied_in_order()))

            if target is not None:
                target_id = self.resolve_target(target, state)
                selected = [
                    identifier
                    for identifier in applied
                    if target_id is None or sort_key(identifier) > sort_key(target_id)
                ]
            else:
                selected = applied[:count]

            return self._revert_selected(selected, state, dry_run)

    def _revert_selected(self, identifiers: list[str], state: VersionState, dry_run: bool) -> MigrationResult:
        units = [self._by_id[identifier] for identifier in identifiers]
        result = MigrationResult(Direction.DOWN, dry_run=dry_run)

        if dry_run:
            result.units = units
            return result

        if not units:
            self.console.print("Nothing to roll back.")
            return result

        snapshot = self._replay(state)
        for unit in units:
            state, snapshot = self._revert_unit(unit, state, snapshot)
            result.units.append(unit)

        self.console.print("Rollback completed.")
        return result

    def redo(self, count: int = 1) -> tuple[MigrationResult, MigrationResult]:
        """
        Revert the last ``count`` units and apply them again.

        Returns:
            Tuple of (revert result, apply result)
        """
        with self._locked():
            reverted = self.revert(count=count)

            state = self.store.load_state()
            snapshot = self._replay(state)
            reapplied = MigrationResult(Direction.UP)
            for unit in sorted(reverted.units, key=lambda u: u.order):
                state, snapshot = self._apply_unit(unit, state, snapshot)
                reapplied.units.append(unit)

            return reverted, reapplied

    def reset(self) -> MigrationResult:
        """
        Revert every applied unit and delete the version state.

        Returns:
            MigrationResult listing the reverted units
        """
        with self._locked():
            state = self.store.load_state()
            self._ensure_consistent(state)
            result = self._revert_selected(list(reversed(state.applied_in_order())), state, dry_run=False)
            self.store.clear_state()
            self._write_schema(SchemaSnapshot())
            return result

    def resolve(self, direction: Direction) -> str | None:
        """
        Clear the marker left by an interrupted unit after manual remediation.

        Args:
            direction: UP to record the unit as applied, DOWN to record it as not applied

        Returns:
            Identifier of the resolved unit, or None if nothing was interrupted

        Raises:
            ConsistencyError: If the interrupted unit has no file and UP is requested
        """
        with self._locked():
            state = self.store.load_state()
            marker = state.in_progress
            if marker is None:
                self.console.print("No interrupted migration to resolve.")
                return None

            if direction == Direction.UP:
                unit = self._by_id.get(marker.identifier)
                if unit is None:
                    raise ConsistencyError(
                        f"Cannot mark migration {marker.identifier} as applied: it has no file",
                        marker.identifier,
                    )
                new_state = state.record_applied(unit)
            else:
                new_state = state.record_reverted(marker.identifier)

            self._save_state(new_state, marker.identifier)
            outcome = "applied" if direction == Direction.UP else "not applied"
            self.console.print(f"Marked migration {marker.identifier} as {outcome}.")
            return marker.identifier
