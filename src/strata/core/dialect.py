"""SQL dialect abstraction for the migration bookkeeping table.

Provides a ``Dialect`` protocol and concrete implementations for the
supported backends. The DB-API driver uses ``Dialect`` methods to generate
the few SQL fragments it needs (placeholders, transaction start, tracking
table DDL, timestamp parameters) without referencing a database driver.

Manifesto:
    The tracking table must look the same on SQLite and PostgreSQL, and the
    driver code that reads and writes it must not branch on the backend.

    - **One interface:** Dialect protocol for all SQL generation
    - **Zero coupling:** Drivers never import database client libraries
    - **Testable:** SQLiteDialect for tests, PostgreSQLDialect for prod

Architecture::

    ┌──────────────────────────┐   ┌──────────────────────────────┐
    │ SQLiteDialect            │   │ PostgreSQLDialect            │
    │ ?, ?, ?                  │   │ %s, %s, %s                   │
    │ explicit BEGIN           │   │ implicit transaction         │
    │ ISO-8601 text timestamps │   │ TIMESTAMP WITH TIME ZONE     │
    └──────────────────────────┘   └──────────────────────────────┘

Examples:
    >>> from strata.core.dialect import get_dialect
    >>> d = get_dialect("sqlite")
    >>> d.placeholders(3)
    '?, ?, ?'

Tags:
    dialect, sql, abstraction, portability, database, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from strata.core.errors import ConfigError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def validate_table_name(table: str) -> str:
    """Return *table* if it is a plain (optionally schema-qualified) identifier.

    Table names are interpolated into SQL, so anything else is rejected.

    Raises:
        ConfigError: If the name is not a valid identifier.
    """
    if not isinstance(table, str) or not _IDENTIFIER_RE.match(table):
        raise ConfigError(f"Invalid migration table name: {table!r}", table=str(table))
    return table


@runtime_checkable
class Dialect(Protocol):
    """Protocol for SQL dialect implementations."""

    @property
    def name(self) -> str:
        """Dialect identifier (e.g. ``'sqlite'``, ``'postgresql'``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Return a single bind-parameter placeholder."""
        ...

    def placeholders(self, count: int) -> str:
        """Return *count* comma-separated placeholders."""
        ...

    def begin_transaction(self) -> str | None:
        """Statement that opens a transaction, or ``None`` if the driver does it implicitly."""
        ...

    def migration_table_ddl(self, table: str) -> str:
        """``CREATE TABLE IF NOT EXISTS`` statement for the tracking table."""
        ...

    def timestamp_param(self, value: datetime) -> Any:
        """Convert a timestamp into a bind parameter for this backend."""
        ...


# =========================================================================
# Backends
# =========================================================================


class SQLiteDialect:
    """SQLite dialect — ``?`` placeholders, explicit ``BEGIN``."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def begin_transaction(self) -> str | None:
        # DDL is only transactional in sqlite3 inside an explicit BEGIN.
        return "BEGIN"

    def migration_table_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            " version INTEGER NOT NULL,"
            " directory TEXT NOT NULL,"
            " file_name TEXT NOT NULL,"
            " processed_at TIMESTAMP NOT NULL DEFAULT (datetime('now')),"
            " UNIQUE(version, directory)"
            ")"
        )

    def timestamp_param(self, value: datetime) -> Any:
        return value.isoformat()


class PostgreSQLDialect:
    """PostgreSQL dialect — ``%s`` placeholders (psycopg2), ``NOW()``.

    psycopg2 opens a transaction implicitly on the first statement, so no
    explicit ``BEGIN`` is issued.
    """

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def begin_transaction(self) -> str | None:
        return None

    def migration_table_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            " version integer NOT NULL,"
            " directory text NOT NULL,"
            " file_name text NOT NULL,"
            " processed_at TIMESTAMP WITH TIME ZONE DEFAULT NOW() NOT NULL,"
            " UNIQUE(version, directory)"
            ")"
        )

    def timestamp_param(self, value: datetime) -> Any:
        return value


# =========================================================================
# Lookup by name
# =========================================================================

_ALIASES = {"postgres": "postgresql", "sqlite3": "sqlite"}

_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Return the dialect registered under *db_type*.

    Args:
        db_type: ``sqlite``, ``postgresql`` (alias ``postgres``), or a name
            added with :func:`register_dialect`.

    Raises:
        ConfigError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    key = _ALIASES.get(key, key)
    try:
        return _DIALECTS[key]
    except KeyError:
        raise ConfigError(f"Unknown SQL dialect {db_type!r}; known: {sorted(_DIALECTS)}") from None


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (third-party drivers, test doubles)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "register_dialect",
    "validate_table_name",
]
