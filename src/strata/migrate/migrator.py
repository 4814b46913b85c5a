"""
Migration orchestrator: discovery feeding a driver under one atomic scope.

Manifesto:
    A run either applies everything it discovered or nothing. The
    orchestrator owns that promise: it opens the driver's scope once,
    feeds it migration sets in discovery order, and closes the scope with
    the outcome, whichever way the run ended.

Architecture:
    ::

        run(source, ordering, driver)
            │
            ├── driver.start()                      SetupError → raise
            │
            ├── for result in discover(...):
            │       cancel_event set?                → MigrationCancelled
            │       result.error?                    → DiscoveryError
            │       driver.process(set)              → ApplyError
            │
            └── driver.end(error | None)            FinalizeError
                    │
                    ├── success: return MigrationReport
                    └── failure: raise the first error
                                 (finalize failure attached as context)

Examples:
    >>> import sqlite3
    >>> from strata.drivers import SQLDriver
    >>> migrator = Migrator("migrations", order=["schema", "data"])
    >>> report = migrator.run(SQLDriver(sqlite3.connect("app.db"), dialect="sqlite"))
    >>> report.applied_count
    2

Tags:
    migrations, orchestrator, transaction, cancellation, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import TYPE_CHECKING

from strata.core.errors import ApplyError, ConfigError, MigrationCancelled, StrataError
from strata.core.logging import LogContext, get_logger
from strata.migrate.discovery import Discovery, DiscoveryIterator
from strata.migrate.models import MigrationReport, MigrationSet, OrderingSpec

if TYPE_CHECKING:
    from strata.core.config import StrataSettings
    from strata.drivers.base import Driver

logger = get_logger(__name__)

DEFAULT_BASE_PATH = "migrations"


def run(
    source: Traversable,
    ordering: OrderingSpec | None,
    driver: Driver,
    *,
    extension: str | None = None,
    cancel_event: threading.Event | None = None,
) -> MigrationReport:
    """Apply every pending migration under *source* through *driver*.

    ``driver.end()`` is called exactly once if ``driver.start()`` succeeded.
    Cancellation is observed between migration sets only; a set already
    handed to the driver runs to completion.

    Raises:
        SetupError: ``driver.start()`` failed; nothing else ran.
        DiscoveryError: The tree could not be walked or a directory listed.
        ApplyError: A migration could not be executed or recorded.
        MigrationCancelled: *cancel_event* was set.
        FinalizeError: Commit failed after an otherwise successful run.
    """
    report = MigrationReport(run_id=uuid.uuid4().hex)

    with LogContext(run_id=report.run_id):
        logger.info("migration.run_started", source=str(source), driver=type(driver).__name__)
        driver.start()

        results: DiscoveryIterator = Discovery(source, ordering, extension).results()
        try:
            while True:
                # Checked before each pull: no directory is scanned after cancellation.
                if cancel_event is not None and cancel_event.is_set():
                    raise MigrationCancelled(run_id=report.run_id)
                result = next(results, None)
                if result is None:
                    break
                if result.error is not None:
                    raise result.error

                migration_set = result.migration_set
                logger.debug("migration.set_started", directory=migration_set.directory, files=len(migration_set))
                report.applied.extend(_process(driver, migration_set))
                report.directories.append(migration_set.directory)
        except BaseException as exc:
            results.close()
            _fail(driver, exc, report.run_id)
            raise

        driver.end(None)
        logger.info(
            "migration.run_completed",
            directories=len(report.directories),
            applied=report.applied_count,
        )
        return report


def _process(driver: Driver, migration_set: MigrationSet) -> list:
    try:
        return list(driver.process(migration_set) or [])
    except StrataError:
        raise
    except Exception as exc:
        raise ApplyError(str(exc), directory=migration_set.directory, cause=exc) from exc


def _fail(driver: Driver, error: BaseException, run_id: str) -> None:
    """End the driver after *error*; a finalize failure is attached, not raised."""
    logger.error("migration.run_failed", error=error)

    try:
        driver.end(error)
    except Exception as finalize_error:
        logger.error("migration.finalize_failed", error=str(finalize_error), run_id=run_id)
        if isinstance(error, StrataError):
            error.with_context(finalize_error=str(finalize_error))
        error.add_note(f"driver.end() also failed: {finalize_error}")


class Migrator:
    """Configured migration runner.

    Resolves the source tree and ordering rules once, at construction, and
    can then discover, plan or run any number of times.

    Args:
        base_path: Directory holding migrations. Ignored when *source* is given.
        source: Any ``Traversable`` (e.g. an ``importlib.resources`` package
            directory) to read migrations from instead of the filesystem.
        order: Directories to run first, in this order.
        skip: Glob patterns of directories and files to skip.
        extension: Case-insensitive file-name suffix filter (``".sql"``).

    Raises:
        ConfigError: If the base path is missing or not a directory, or a
            skip pattern is malformed.
    """

    def __init__(
        self,
        base_path: str | Path = DEFAULT_BASE_PATH,
        *,
        source: Traversable | None = None,
        order: Iterable[str] = (),
        skip: Iterable[str] = (),
        extension: str | None = None,
    ) -> None:
        if source is None:
            path = Path(base_path)
            if not path.exists():
                raise ConfigError(f"Migration base path does not exist: {path}", path=str(path))
            if not path.is_dir():
                raise ConfigError(f"Migration base path is not a directory: {path}", path=str(path))
            source = path
        elif not source.is_dir():
            raise ConfigError(f"Migration source is not a directory: {source}", path=str(source))

        self.source = source
        self.ordering = OrderingSpec(priority_dirs=tuple(order), skip_patterns=tuple(skip))
        self.extension = extension or None

    @classmethod
    def from_settings(cls, settings: StrataSettings) -> Migrator:
        return cls(
            settings.base_path,
            order=settings.order,
            skip=settings.skip,
            extension=settings.extension,
        )

    def discover(self) -> DiscoveryIterator:
        """Lazy discovery over the configured source."""
        return Discovery(self.source, self.ordering, self.extension).results()

    def plan(self) -> list[MigrationSet]:
        """Eagerly discover every migration set, in run order.

        Raises:
            DiscoveryError: On the first traversal or listing failure.
        """
        return list(Discovery(self.source, self.ordering, self.extension))

    def run(self, driver: Driver, cancel_event: threading.Event | None = None) -> MigrationReport:
        return run(self.source, self.ordering, driver, extension=self.extension, cancel_event=cancel_event)

    def __repr__(self) -> str:
        return (
            f"Migrator(source={str(self.source)!r}, order={list(self.ordering.priority_dirs)!r}, "
            f"skip={list(self.ordering.skip_patterns)!r})"
        )


__all__ = ["DEFAULT_BASE_PATH", "Migrator", "run"]
