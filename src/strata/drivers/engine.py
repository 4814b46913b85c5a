"""Engine factory and URL-based driver selection."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError

from strata.core.errors import ConfigError
from strata.drivers.alchemy import SQLAlchemyDriver
from strata.drivers.sql import DEFAULT_TABLE_NAME


def create_migration_engine(url: str, *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine suitable for migration runs.

    SQLite engines get pysqlite's implicit transaction handling turned off
    and an explicit ``BEGIN`` on every transaction, so DDL is rolled back
    with the rest of a failed run.

    Raises:
        ConfigError: If the URL is malformed or its DB-API driver is missing.
    """
    try:
        parsed = make_url(url)
    except ArgumentError as exc:
        raise ConfigError(f"Invalid database URL {url!r}: {exc}", cause=exc) from exc

    try:
        engine = _sa_create_engine(parsed, echo=echo, **kwargs)
    except (NoSuchModuleError, ImportError) as exc:
        raise ConfigError(
            f"No database driver available for {parsed.drivername!r}: {exc}",
            cause=exc,
        ) from exc

    if parsed.get_backend_name() == "sqlite":

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection: Any, _rec: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN")

    return engine


def create_driver(
    database_url: str,
    *,
    table_name: str = DEFAULT_TABLE_NAME,
    echo: bool = False,
) -> SQLAlchemyDriver:
    """Build a :class:`SQLAlchemyDriver` for *database_url*."""
    return SQLAlchemyDriver(create_migration_engine(database_url, echo=echo), table_name=table_name)


__all__ = ["create_driver", "create_migration_engine"]
