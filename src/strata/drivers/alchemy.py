"""SQLAlchemy Core migration driver.

Same contract as :class:`~strata.drivers.sql.SQLDriver`, expressed with a
SQLAlchemy ``Table`` instead of hand-written SQL. One connection and one
transaction cover the whole run; the tracking table is created inside that
transaction.

Use :func:`strata.drivers.engine.create_migration_engine` for SQLite so the
``CREATE TABLE`` statements of a failed run are rolled back too.

Tags:
    sqlalchemy, driver, transaction, strata

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    func,
    inspect,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine, RootTransaction

from strata.core.dialect import validate_table_name
from strata.core.errors import ApplyError, FinalizeError, SetupError
from strata.core.logging import get_logger
from strata.drivers.base import DriverPhase, utc_now
from strata.drivers.sql import DEFAULT_TABLE_NAME
from strata.migrate.models import AppliedMigrationRecord, MigrationSet

logger = get_logger(__name__)


def migration_table(table_name: str = DEFAULT_TABLE_NAME, metadata: MetaData | None = None) -> Table:
    """Build the tracking ``Table``; ``schema.name`` puts it in *schema*."""
    validate_table_name(table_name)
    schema, _, name = table_name.rpartition(".")
    return Table(
        name,
        metadata if metadata is not None else MetaData(),
        Column("version", Integer, nullable=False),
        Column("directory", Text, nullable=False),
        Column("file_name", Text, nullable=False),
        Column("processed_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
        UniqueConstraint("version", "directory"),
        schema=schema or None,
    )


class SQLAlchemyDriver:
    """Applies migrations on a SQLAlchemy ``Engine`` in a single transaction."""

    def __init__(
        self,
        engine: Engine,
        *,
        table_name: str = DEFAULT_TABLE_NAME,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self.table_name = validate_table_name(table_name)
        self.table = migration_table(table_name)
        self._clock = clock
        self._phase = DriverPhase(type(self).__name__)
        self._conn: Connection | None = None
        self._tx: RootTransaction | None = None

    # ------------------------------------------------------------------
    # Driver protocol
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._phase.begin()
        try:
            self._conn = self.engine.connect()
            self._tx = self._conn.begin()
            self.table.create(self._conn, checkfirst=True)
        except Exception as exc:
            self._phase.reset()
            self._release_after_failed_start()
            raise SetupError(
                f"cannot prepare migration table {self.table_name}: {exc}",
                table=self.table_name,
                cause=exc,
            ) from exc

    def process(self, migration_set: MigrationSet) -> list[AppliedMigrationRecord]:
        self._phase.require_started("process")
        conn = self._conn
        directory = migration_set.directory

        try:
            version = self._max_version(conn, directory)
        except Exception as exc:
            raise ApplyError(
                f"cannot read applied versions: {exc}",
                directory=directory,
                table=self.table_name,
                cause=exc,
            ) from exc

        applied: list[AppliedMigrationRecord] = []
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
                    conn.exec_driver_sql(content)
            except Exception as exc:
                raise ApplyError(str(exc), cause=exc, **coordinates) from exc

            record = AppliedMigrationRecord(
                version=file.version,
                directory=directory,
                file_name=file.path,
                processed_at=self._clock(),
            )
            try:
                conn.execute(
                    insert(self.table).values(
                        version=record.version,
                        directory=record.directory,
                        file_name=record.file_name,
                        processed_at=record.processed_at,
                    )
                )
            except Exception as exc:
                raise ApplyError(f"cannot record migration: {exc}", cause=exc, **coordinates) from exc

            version = file.version
            applied.append(record)
            logger.info("migration.applied", directory=directory, file=file.path, version=file.version)

        return applied

    def end(self, error: BaseException | None) -> None:
        self._phase.finish()
        try:
            if error is None:
                self._tx.commit()
            else:
                self._tx.rollback()
        except Exception as exc:
            action = "commit" if error is None else "rollback"
            raise FinalizeError(f"migration {action} failed: {exc}", table=self.table_name, cause=exc) from exc
        finally:
            self._close()

    # ------------------------------------------------------------------
    # Read helpers (usable outside a run)
    # ------------------------------------------------------------------

    def high_water_mark(self, directory: str) -> int:
        """Highest recorded version for *directory* (0 when none)."""
        with self._reader() as conn:
            if not self._table_exists(conn):
                return 0
            return self._max_version(conn, directory)

    def applied_records(self) -> list[AppliedMigrationRecord]:
        """All tracking-table rows ordered by directory, then version.

        Returns an empty list when the tracking table does not exist yet.
        """
        with self._reader() as conn:
            if not self._table_exists(conn):
                return []
            rows = conn.execute(
                select(
                    self.table.c.version,
                    self.table.c.directory,
                    self.table.c.file_name,
                    self.table.c.processed_at,
                ).order_by(self.table.c.directory, self.table.c.version)
            ).all()
        return [
            AppliedMigrationRecord(
                version=row.version,
                directory=row.directory,
                file_name=row.file_name,
                processed_at=row.processed_at,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _max_version(self, conn: Connection, directory: str) -> int:
        stmt = select(func.max(self.table.c.version)).where(self.table.c.directory == directory)
        value = conn.execute(stmt).scalar()
        return int(value) if value is not None else 0

    def _table_exists(self, conn: Connection) -> bool:
        return inspect(conn).has_table(self.table.name, schema=self.table.schema)

    @contextmanager
    def _reader(self) -> Iterator[Connection]:
        if self._conn is not None:
            yield self._conn
            return
        with self.engine.connect() as conn:
            yield conn

    def _release_after_failed_start(self) -> None:
        try:
            if self._tx is not None and self._tx.is_active:
                self._tx.rollback()
        except Exception as exc:
            logger.warning("migration.setup_rollback_failed", table=self.table_name, error=str(exc))
        finally:
            self._close()

    def _close(self) -> None:
        conn, self._conn, self._tx = self._conn, None, None
        if conn is not None:
            conn.close()

    def __repr__(self) -> str:
        return f"SQLAlchemyDriver(url={self.engine.url!r}, table={self.table_name!r})"


__all__ = ["SQLAlchemyDriver", "migration_table"]
