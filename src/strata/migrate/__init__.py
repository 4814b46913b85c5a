"""Migration discovery, data model and orchestration."""

from strata.migrate.discovery import Discovery, DiscoveryIterator, DiscoveryResult, discover
from strata.migrate.filters import PathFilter
from strata.migrate.migrator import Migrator, run
from strata.migrate.models import (
    AppliedMigrationRecord,
    MigrationEntry,
    MigrationFile,
    MigrationReport,
    MigrationSet,
    OrderingSpec,
)
from strata.migrate.versions import extract_version

__all__ = [
    "AppliedMigrationRecord",
    "Discovery",
    "DiscoveryIterator",
    "DiscoveryResult",
    "MigrationEntry",
    "MigrationFile",
    "MigrationReport",
    "MigrationSet",
    "Migrator",
    "OrderingSpec",
    "PathFilter",
    "discover",
    "extract_version",
    "run",
]
