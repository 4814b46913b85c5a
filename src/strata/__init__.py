"""
strata - ordered, transactional schema migrations.

Discovers numbered migration files in a directory tree, orders them by
directory priority and version, and applies each at most once through a
pluggable storage driver, all inside one transaction per run.

Examples:
    >>> import sqlite3
    >>> from strata import Migrator, SQLDriver
    >>> Migrator("migrations").run(SQLDriver(sqlite3.connect("app.db"), dialect="sqlite"))
"""

from strata.core.errors import (
    ApplyError,
    ConfigError,
    DiscoveryError,
    FinalizeError,
    MigrationCancelled,
    SetupError,
    StrataError,
)
from strata.drivers import CallbackDriver, MigrationStatus, SQLAlchemyDriver, SQLDriver, create_driver
from strata.migrate import MigrationFile, MigrationReport, MigrationSet, Migrator, OrderingSpec, discover, run

__version__ = "0.3.0"

__all__ = [
    "ApplyError",
    "CallbackDriver",
    "ConfigError",
    "DiscoveryError",
    "FinalizeError",
    "MigrationCancelled",
    "MigrationFile",
    "MigrationReport",
    "MigrationSet",
    "MigrationStatus",
    "Migrator",
    "OrderingSpec",
    "SQLAlchemyDriver",
    "SQLDriver",
    "SetupError",
    "StrataError",
    "create_driver",
    "discover",
    "run",
]
