# HomeVault - Migration Engine
#
# Forward-only, versioned schema migrations. Each backend supplies an
# ordered list of steps plus a target that knows how to read/write the
# persisted version and run one unit of work. A step and its version bump
# commit together; a failing step is rolled back and the version stays at
# the last completed step.

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Callable, List, Protocol, Sequence

from ..core.audit_log import EventSeverity, EventType, log_security_event
from ..errors import MigrationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One schema step. ``apply`` receives the backend's unit-of-work handle."""
    version: int
    description: str
    apply: Callable[[Any], None]


class MigrationTarget(Protocol):
    """What a backend exposes to the engine."""

    name: str

    def read_version(self) -> int:
        ...

    def unit_of_work(self) -> AbstractContextManager:
        ...

    def write_version(self, handle: Any, version: int) -> None:
        ...


class MigrationEngine:
    """Applies pending migrations strictly in version order."""

    def __init__(self, migrations: Sequence[Migration]):
        versions = [m.version for m in migrations]
        expected = list(range(1, len(versions) + 1))
        if versions != expected:
            raise ValueError(f"Migration versions must be 1..N without gaps, got {versions}")
        self.migrations: List[Migration] = list(migrations)

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def pending(self, version: int) -> List[Migration]:
        return [m for m in self.migrations if m.version > version]

    def run(self, target: MigrationTarget) -> int:
        """
        Bring ``target`` up to the latest version.

        Returns:
            The persisted version after the run

        Raises:
            MigrationError: A step failed; its changes were rolled back
        """
        current = target.read_version()
        if current > self.latest_version:
            logger.warning(
                f"{target.name} store is at version {current}, newer than "
                f"this build ({self.latest_version}); leaving it untouched"
            )
            return current

        for migration in self.pending(current):
            try:
                with target.unit_of_work() as handle:
                    migration.apply(handle)
                    target.write_version(handle, migration.version)
            except Exception as e:
                logger.error(
                    f"{target.name} migration {migration.version} "
                    f"({migration.description}) failed: {e}"
                )
                log_security_event(
                    EventType.MIGRATION_FAILED,
                    EventSeverity.ALERT,
                    f"Schema migration {migration.version} failed",
                    details={"backend": target.name, "version": migration.version,
                             "error": str(e)},
                )
                raise MigrationError(
                    f"Migration {migration.version} ({migration.description}) failed: {e}",
                    version=current,
                ) from e

            current = migration.version
            logger.info(f"{target.name} schema migrated to version {current}: {migration.description}")
            log_security_event(
                EventType.MIGRATION_APPLIED,
                EventSeverity.INFO,
                f"Schema migrated to version {current}",
                details={"backend": target.name, "version": current},
            )

        return current
