"""Per-file callback driver.

Hands every discovered file to a plain function, in run order. There is no
tracking table: the callback owns idempotence and transactions.

Example::

    def apply(status, entry):
        if status is MigrationStatus.PROCESS:
            print(entry.path, entry.read_text())

    Migrator("migrations").run(CallbackDriver(apply))
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from enum import Enum

from strata.core.errors import ApplyError, FinalizeError, SetupError, StrataError
from strata.core.logging import get_logger
from strata.drivers.base import DriverPhase, utc_now
from strata.migrate.models import AppliedMigrationRecord, MigrationEntry, MigrationSet

logger = get_logger(__name__)


class MigrationStatus(str, Enum):
    START = "start"
    PROCESS = "process"
    END = "end"


ApplyCallback = Callable[[MigrationStatus, MigrationEntry | None], None]


class CallbackDriver:
    """Drives ``apply(status, entry)`` through a run.

    ``START`` once on start, ``PROCESS`` once per file in set order, and
    ``END`` only when the run succeeded.
    """

    def __init__(self, apply: ApplyCallback, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._apply = apply
        self._clock = clock
        self._phase = DriverPhase(type(self).__name__)

    def start(self) -> None:
        self._phase.begin()
        try:
            self._apply(MigrationStatus.START, None)
        except Exception as exc:
            self._phase.reset()
            raise SetupError(f"migration callback failed on start: {exc}", cause=exc) from exc

    def process(self, migration_set: MigrationSet) -> list[AppliedMigrationRecord]:
        self._phase.require_started("process")
        applied: list[AppliedMigrationRecord] = []
        for entry in migration_set.entries():
            try:
                self._apply(MigrationStatus.PROCESS, entry)
            except StrataError:
                raise
            except Exception as exc:
                raise ApplyError(
                    str(exc),
                    directory=entry.directory,
                    file=entry.file.path,
                    version=entry.version,
                    cause=exc,
                ) from exc
            applied.append(
                AppliedMigrationRecord(
                    version=entry.version,
                    directory=entry.directory,
                    file_name=entry.file.path,
                    processed_at=self._clock(),
                )
            )
            logger.info("migration.applied", directory=entry.directory, file=entry.file.path, version=entry.version)
        return applied

    def end(self, error: BaseException | None) -> None:
        self._phase.finish()
        if error is not None:
            return
        try:
            self._apply(MigrationStatus.END, None)
        except Exception as exc:
            raise FinalizeError(f"migration callback failed on end: {exc}", cause=exc) from exc


__all__ = ["ApplyCallback", "CallbackDriver", "MigrationStatus"]
