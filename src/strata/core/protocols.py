"""
Canonical protocol definitions for strata.

Manifesto:
    Storage drivers must work against any DB-API 2.0 connection
    (``sqlite3``, ``psycopg2``, ...) without importing a specific driver.
    Structural protocols describe the handful of methods actually used.

Tags:
    protocol, connection, dbapi, strata, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cursor(Protocol):
    """Minimal DB-API 2.0 cursor surface used by the SQL driver."""

    def execute(self, sql: str, params: Sequence[Any] = ...) -> Any:
        ...

    def fetchone(self) -> Any:
        ...

    def fetchall(self) -> list:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS DB-API 2.0 connection interface.

    Architecture:
        ::

            Connection Protocol:
            ┌────────────────────────────────────────────────────────┐
            │ cursor()    → Cursor for execute / fetchone / fetchall │
            │ commit()    → Commit transaction                       │
            │ rollback()  → Rollback transaction                     │
            └────────────────────────────────────────────────────────┘

            Implementations:
            ┌────────────────────────────────────────────────────────┐
            │ sqlite3.Connection   (stdlib)                          │
            │ psycopg2 connection  (PostgreSQL)                      │
            └────────────────────────────────────────────────────────┘
    """

    def cursor(self) -> Cursor:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


__all__ = ["Connection", "Cursor"]
