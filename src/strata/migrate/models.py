"""Data model for discovered and applied migrations.

``MigrationSet`` is the unit of work handed to a driver: one directory and
its ordered, filtered, numbered files, with lazy access to file contents
through the source it was discovered from (a ``pathlib.Path`` tree or any
``importlib.resources`` traversable).
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from importlib.resources.abc import Traversable
from typing import IO, Any

from strata.migrate.filters import PathFilter, normalize_pattern

ROOT = "."


def join_relative(directory: str, name: str) -> str:
    """Join a relative directory and a child name; the root contributes nothing."""
    if directory == ROOT:
        return name
    return f"{directory}/{name}"


@dataclass(frozen=True)
class MigrationFile:
    """A single migration file: its base name and the version parsed from it."""

    path: str
    version: int

    def __post_init__(self) -> None:
        if self.version < 1:
            raise ValueError(f"Migration version must be >= 1, got {self.version} for {self.path!r}")


@dataclass(frozen=True)
class MigrationSet:
    """A directory's ordered group of migration files.

    Files are sorted by ``(version, path)``. The set references, but does not
    own, the source tree it was discovered from.
    """

    directory: str
    files: tuple[MigrationFile, ...] = ()
    source: Traversable | None = field(default=None, repr=False, compare=False)

    def __iter__(self) -> Iterator[MigrationFile]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    def __bool__(self) -> bool:
        # An empty set is still a discovered directory; use is_empty for content.
        return True

    @property
    def is_empty(self) -> bool:
        return not self.files

    @property
    def versions(self) -> list[int]:
        return [f.version for f in self.files]

    def relative_path(self, file: MigrationFile | str) -> str:
        """Path of *file* relative to the migration root."""
        return join_relative(self.directory, _name(file))

    def _resolve(self, file: MigrationFile | str) -> Traversable:
        if self.source is None:
            raise ValueError(f"MigrationSet {self.directory!r} has no source to read from")
        node = self.source
        if self.directory != ROOT:
            for part in self.directory.split("/"):
                node = node.joinpath(part)
        return node.joinpath(_name(file))

    def read_bytes(self, file: MigrationFile | str) -> bytes:
        return self._resolve(file).read_bytes()

    def read_text(self, file: MigrationFile | str, encoding: str = "utf-8") -> str:
        return self._resolve(file).read_text(encoding=encoding)

    def open(self, file: MigrationFile | str, mode: str = "r", *args: Any, **kwargs: Any) -> IO[Any]:
        return self._resolve(file).open(mode, *args, **kwargs)

    def entries(self) -> Iterator[MigrationEntry]:
        """Per-file handles, in set order."""
        for file in self.files:
            yield MigrationEntry(self, file)


@dataclass(frozen=True)
class MigrationEntry:
    """One file of a ``MigrationSet``, readable on its own.

    Handed to per-file callback drivers.
    """

    migration_set: MigrationSet = field(repr=False)
    file: MigrationFile

    @property
    def directory(self) -> str:
        return self.migration_set.directory

    @property
    def path(self) -> str:
        return self.migration_set.relative_path(self.file)

    @property
    def version(self) -> int:
        return self.file.version

    def read_bytes(self) -> bytes:
        return self.migration_set.read_bytes(self.file)

    def read_text(self, encoding: str = "utf-8") -> str:
        return self.migration_set.read_text(self.file, encoding=encoding)

    def open(self, mode: str = "r", *args: Any, **kwargs: Any) -> IO[Any]:
        return self.migration_set.open(self.file, mode, *args, **kwargs)


@dataclass(frozen=True)
class OrderingSpec:
    """Directory priority and skip rules for one run.

    Leading ``/`` is stripped from every entry; skip patterns are compiled
    eagerly so a malformed glob raises ``ConfigError`` here.
    """

    priority_dirs: tuple[str, ...] = ()
    skip_patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "priority_dirs", tuple(normalize_pattern(d) for d in self.priority_dirs))
        object.__setattr__(self, "skip_patterns", tuple(normalize_pattern(p) for p in self.skip_patterns))
        object.__setattr__(self, "_filter", PathFilter(self.skip_patterns))

    @property
    def path_filter(self) -> PathFilter:
        return self._filter  # type: ignore[attr-defined]


@dataclass(frozen=True)
class AppliedMigrationRecord:
    """A row of the tracking table."""

    version: int
    directory: str
    file_name: str
    processed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "directory": self.directory,
            "file_name": self.file_name,
            "processed_at": self.processed_at.isoformat(),
        }


@dataclass
class MigrationReport:
    """Outcome of a successful migration run."""

    run_id: str
    directories: list[str] = field(default_factory=list)
    applied: list[AppliedMigrationRecord] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "directories": list(self.directories),
            "applied": [r.to_dict() for r in self.applied],
            "applied_count": self.applied_count,
        }


def _name(file: MigrationFile | str) -> str:
    return file.path if isinstance(file, MigrationFile) else file


__all__ = [
    "ROOT",
    "AppliedMigrationRecord",
    "MigrationEntry",
    "MigrationFile",
    "MigrationReport",
    "MigrationSet",
    "OrderingSpec",
    "join_relative",
]
