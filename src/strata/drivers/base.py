"""
Driver interface: the three-phase contract every storage backend fulfils.

Manifesto:
    The orchestrator knows nothing about SQL. It asks a driver to open a
    run, to process one migration set at a time, and to end the run with
    the outcome. Everything storage-specific (bookkeeping table, transaction
    scope, statement execution) lives behind these three calls.

Architecture:
    ::

        NOT_STARTED ──start()──▶ STARTED ──process(set)*──▶ STARTED
                                    │
                                    └──────end(error)──────▶ ENDED

        start()        ensure bookkeeping, open atomic scope  → SetupError
        process(set)   apply files above the high-water mark  → ApplyError
        end(error)     commit on None, roll back otherwise    → FinalizeError

    ``end`` runs exactly once for every run whose ``start`` succeeded,
    whatever happened in between.

Tags:
    driver, protocol, transaction, strata, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from strata.core.errors import DriverStateError
from strata.migrate.models import AppliedMigrationRecord, MigrationSet


@runtime_checkable
class Driver(Protocol):
    """Capability interface for storage backends.

    Implementations are plain classes chosen at construction time
    (``SQLDriver``, ``SQLAlchemyDriver``, ``CallbackDriver``); they are not
    expected to inherit from anything.
    """

    def start(self) -> None:
        """Prepare bookkeeping and open the run's atomic scope."""
        ...

    def process(self, migration_set: MigrationSet) -> list[AppliedMigrationRecord]:
        """Apply every file of *migration_set* above the directory's high-water mark."""
        ...

    def end(self, error: BaseException | None) -> None:
        """Commit (``error is None``) or roll back the run's atomic scope."""
        ...


class DriverState(str, Enum):
    NOT_STARTED = "not_started"
    STARTED = "started"
    ENDED = "ended"


class DriverPhase:
    """Tracks a driver's position in the start → process → end sequence.

    Drivers hold one of these and call the guard methods at the top of each
    phase; an out-of-order call raises ``DriverStateError``.
    """

    def __init__(self, driver_name: str) -> None:
        self.driver_name = driver_name
        self.state = DriverState.NOT_STARTED

    def begin(self) -> None:
        if self.state is not DriverState.NOT_STARTED:
            raise DriverStateError(f"{self.driver_name}.start() called in state {self.state.value}")
        self.state = DriverState.STARTED

    def reset(self) -> None:
        """Return to NOT_STARTED after a failed ``start()``."""
        self.state = DriverState.NOT_STARTED

    def require_started(self, operation: str) -> None:
        if self.state is not DriverState.STARTED:
            raise DriverStateError(
                f"{self.driver_name}.{operation}() called in state {self.state.value}"
            )

    def finish(self) -> None:
        self.require_started("end")
        self.state = DriverState.ENDED

    @property
    def started(self) -> bool:
        return self.state is DriverState.STARTED


def utc_now() -> datetime:
    """Timezone-aware current time used for ``processed_at``."""
    return datetime.now(UTC)


__all__ = ["Driver", "DriverPhase", "DriverState", "utc_now"]
