"""DB-API 2.0 migration driver.

Runs a whole migration run inside one transaction on a caller-supplied
DB-API connection (``sqlite3``, ``psycopg2``, ...). SQL fragments come from
a :class:`~strata.core.dialect.Dialect`, so the same code serves SQLite and
PostgreSQL.

Example::

    import sqlite3
    from strata.drivers import SQLDriver
    from strata.migrate import Migrator

    conn = sqlite3.connect("app.db")
    driver = SQLDriver(conn, dialect="sqlite", table_name="schema_migrations")
    Migrator("migrations").run(driver)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from strata.core.dialect import Dialect, get_dialect, validate_table_name
from strata.core.errors import ApplyError, FinalizeError, SetupError
from strata.core.logging import get_logger
from strata.core.protocols import Connection
from strata.drivers.base import DriverPhase, utc_now
from strata.migrate.models import AppliedMigrationRecord, MigrationSet

logger = get_logger(__name__)

DEFAULT_TABLE_NAME = "migrations"


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class SQLDriver:
    """Applies migrations through a DB-API connection in a single transaction.

    Parameters
    ----------
    connection
        An open DB-API 2.0 connection. The driver never closes it.
    dialect
        A :class:`Dialect` or its name (``"sqlite"``, ``"postgresql"``).
    table_name
        Tracking table, created on ``start()`` if missing.
    clock
        Source of ``processed_at`` timestamps.
    """

    def __init__(
        self,
        connection: Connection,
        *,
        dialect: Dialect | str = "postgresql",
        table_name: str = DEFAULT_TABLE_NAME,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._conn = connection
        self.dialect = get_dialect(dialect) if isinstance(dialect, str) else dialect
        self.table_name = validate_table_name(table_name)
        self._clock = clock
        self._phase = DriverPhase(type(self).__name__)

    # ------------------------------------------------------------------
    # Driver protocol
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._phase.begin()
        try:
            cursor = self._conn.cursor()
            try:
                begin = self.dialect.begin_transaction()
                if begin:
                    cursor.execute(begin)
                cursor.execute(self.dialect.migration_table_ddl(self.table_name))
            finally:
                cursor.close()
        except Exception as exc:
            self._phase.reset()
            self._rollback_quietly()
            raise SetupError(
                f"cannot prepare migration table {self.table_name}: {exc}",
                table=self.table_name,
                cause=exc,
            ) from exc

    def process(self, migration_set: MigrationSet) -> list[AppliedMigrationRecord]:
        self._phase.require_started("process")
        directory = migration_set.directory
        applied: list[AppliedMigrationRecord] = []

        cursor = self._conn.cursor()
        try:
            try:
                version = self._max_version(cursor, directory)
            except Exception as exc:
                raise ApplyError(
                    f"cannot read applied versions: {exc}",
                    directory=directory,
                    table=self.table_name,
                    cause=exc,
                ) from exc

            for file in migration_set:
                if file.version <= version:
                    logger.debug("migration.skipped", directory=directory, file=file.path, version=file.version)
                    continue

                coordinates = {"directory": directory, "file": file.path, "version": file.version}
                try:
                    content = migration_set.read_text(file)
                except (OSError, UnicodeDecodeError) as exc:
                    raise ApplyError(f"cannot read file: {exc}", cause=exc, **coordinates) from exc

                try:
                    if content.strip():
                        cursor.execute(content)
                except Exception as exc:
                    raise ApplyError(str(exc), cause=exc, **coordinates) from exc

                record = AppliedMigrationRecord(
                    version=file.version,
                    directory=directory,
                    file_name=file.path,
                    processed_at=self._clock(),
                )
                try:
                    self._insert(cursor, record)
                except Exception as exc:
                    raise ApplyError(f"cannot record migration: {exc}", cause=exc, **coordinates) from exc

                version = file.version
                applied.append(record)
                logger.info("migration.applied", directory=directory, file=file.path, version=file.version)
        finally:
            cursor.close()

        return applied

    def end(self, error: BaseException | None) -> None:
        self._phase.finish()
        try:
            if error is None:
                self._conn.commit()
            else:
                self._conn.rollback()
        except Exception as exc:
            action = "commit" if error is None else "rollback"
            raise FinalizeError(f"migration {action} failed: {exc}", table=self.table_name, cause=exc) from exc

    # ------------------------------------------------------------------
    # Read helpers (usable outside a run)
    # ------------------------------------------------------------------

    def high_water_mark(self, directory: str) -> int:
        """Highest recorded version for *directory* (0 when none)."""
        cursor = self._conn.cursor()
        try:
            return self._max_version(cursor, directory)
        finally:
            cursor.close()

    def applied_records(self) -> list[AppliedMigrationRecord]:
        """All tracking-table rows ordered by directory, then version."""
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                f"SELECT version, directory, file_name, processed_at FROM {self.table_name} "
                "ORDER BY directory, version"
            )
            rows = cursor.fetchall()
        finally:
            cursor.close()
        return [
            AppliedMigrationRecord(
                version=int(row[0]),
                directory=row[1],
                file_name=row[2],
                processed_at=_as_datetime(row[3]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _max_version(self, cursor: Any, directory: str) -> int:
        cursor.execute(
            f"SELECT MAX(version) FROM {self.table_name} WHERE directory = {self.dialect.placeholder(0)}",
            (directory,),
        )
        row = cursor.fetchone()
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    def _insert(self, cursor: Any, record: AppliedMigrationRecord) -> None:
        cursor.execute(
            f"INSERT INTO {self.table_name} (version, directory, file_name, processed_at) "
            f"VALUES ({self.dialect.placeholders(4)})",
            (
                record.version,
                record.directory,
                record.file_name,
                self.dialect.timestamp_param(record.processed_at),
            ),
        )

    def _rollback_quietly(self) -> None:
        try:
            self._conn.rollback()
        except Exception as exc:
            logger.warning("migration.setup_rollback_failed", table=self.table_name, error=str(exc))

    def __repr__(self) -> str:
        return f"SQLDriver(dialect={self.dialect.name!r}, table={self.table_name!r})"


__all__ = ["DEFAULT_TABLE_NAME", "SQLDriver"]
