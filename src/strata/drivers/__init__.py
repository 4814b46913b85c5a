"""Storage drivers for migration runs."""

from strata.drivers.alchemy import SQLAlchemyDriver, migration_table
from strata.drivers.base import Driver, DriverPhase, DriverState
from strata.drivers.callback import CallbackDriver, MigrationStatus
from strata.drivers.engine import create_driver, create_migration_engine
from strata.drivers.sql import DEFAULT_TABLE_NAME, SQLDriver

__all__ = [
    "DEFAULT_TABLE_NAME",
    "CallbackDriver",
    "Driver",
    "DriverPhase",
    "DriverState",
    "MigrationStatus",
    "SQLAlchemyDriver",
    "SQLDriver",
    "create_driver",
    "create_migration_engine",
    "migration_table",
]
