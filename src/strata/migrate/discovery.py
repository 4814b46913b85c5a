"""
Migration discovery: walk a source tree into ordered ``MigrationSet``\\ s.

Manifesto:
    The order migrations run in is a correctness property, not an
    implementation detail. Discovery therefore produces one deterministic
    total order from a directory tree, a priority list and skip rules, and
    hands it out one directory at a time so a consumer can stop early
    without scanning the rest of the tree.

Architecture:
    ::

        discover(root, ordering, extension)
            │
            ▼  first next()
        ┌──────────────────────────────────────────────────────────┐
        │ 1. walk directories depth-first, pre-order, from "."      │
        │      prunes(dir)   → do not enter                         │
        │      excludes(dir) → do not record, still enter           │
        │ 2. order: priority dirs (given order), then lexical       │
        └──────────────────────────────────────────────────────────┘
            │
            ▼  each next()
        ┌──────────────────────────────────────────────────────────┐
        │ list direct-child files of one directory                  │
        │   excludes(path) / extension / version == 0 → dropped     │
        │   sort (version, name) → DiscoveryResult(MigrationSet)     │
        └──────────────────────────────────────────────────────────┘

    Failures come back as ``DiscoveryResult(None, DiscoveryError)``. A failed
    walk ends the sequence; a failed listing only concerns its directory, and
    pulling again moves on to the next one.

Examples:
    >>> from pathlib import Path
    >>> for result in discover(Path("migrations"), OrderingSpec(priority_dirs=("schema",))):
    ...     if result.error:
    ...         raise result.error
    ...     print(result.migration_set.directory, result.migration_set.versions)

Tags:
    discovery, traversal, ordering, lazy-iterator, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import NamedTuple

from strata.core.errors import DiscoveryError
from strata.core.logging import get_logger
from strata.migrate.models import ROOT, MigrationFile, MigrationSet, OrderingSpec, join_relative
from strata.migrate.versions import extract_version, sort_key

logger = get_logger(__name__)


class DiscoveryResult(NamedTuple):
    """One step of discovery: either a migration set or the error that replaced it."""

    migration_set: MigrationSet | None
    error: DiscoveryError | None = None


def _is_symlink(node: Traversable, parent: str) -> bool:
    """True for a symlinked directory; the walker does not enter those."""
    if isinstance(node, Path) and node.is_symlink():
        logger.debug("discovery.symlink_skipped", directory=join_relative(parent, node.name))
        return True
    return False


def _child(root: Traversable, directory: str) -> Traversable:
    node = root
    if directory != ROOT:
        for part in directory.split("/"):
            node = node.joinpath(part)
    return node


def order_directories(directories: list[str], priority: tuple[str, ...] = ()) -> list[str]:
    """Priority directories first, in the given order; the rest lexically.

    A directory missing from *priority* is never dropped, only sorted after
    the prioritized ones. For duplicated priority entries the first one wins.
    """
    if not priority:
        return sorted(directories)

    rank: dict[str, int] = {}
    for index, name in enumerate(priority):
        rank.setdefault(name, index)

    def key(path: str) -> tuple[int, int, str]:
        if path in rank:
            return (0, rank[path], "")
        return (1, 0, path)

    return sorted(directories, key=key)


class Discovery:
    """Discovery configuration bound to one source tree.

    Iterating a ``Discovery`` directly is the strict form: it yields
    ``MigrationSet`` objects and raises the first ``DiscoveryError``.
    ``results()`` gives the error-as-value form.
    """

    def __init__(
        self,
        root: Traversable,
        ordering: OrderingSpec | None = None,
        extension: str | None = None,
    ) -> None:
        self.root = root
        self.ordering = ordering or OrderingSpec()
        self.extension = extension.lower() if extension else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def results(self) -> DiscoveryIterator:
        """Lazy sequence of ``DiscoveryResult`` pairs."""
        return DiscoveryIterator(self)

    def __iter__(self) -> Iterator[MigrationSet]:
        results = self.results()
        try:
            for result in results:
                if result.error is not None:
                    raise result.error
                yield result.migration_set  # type: ignore[misc]
        finally:
            results.close()

    def directories(self) -> list[str]:
        """Walk the tree and return the ordered list of candidate directories.

        Raises:
            DiscoveryError: If the tree cannot be traversed.
        """
        found = self._walk()
        return order_directories(found, self.ordering.priority_dirs)

    def scan(self, directory: str) -> MigrationSet:
        """Build the ``MigrationSet`` for one directory.

        Raises:
            DiscoveryError: If the directory cannot be listed.
        """
        path_filter = self.ordering.path_filter
        try:
            entries = list(_child(self.root, directory).iterdir())
        except OSError as exc:
            raise DiscoveryError(
                f"cannot list migration directory {directory!r}: {exc}",
                directory=directory,
                cause=exc,
            ) from exc

        files: list[MigrationFile] = []
        for entry in entries:
            if entry.is_dir():
                continue

            name = entry.name
            if path_filter.excludes(join_relative(directory, name)):
                logger.debug("discovery.file_skipped", directory=directory, file=name)
                continue

            if self.extension and not name.lower().endswith(self.extension):
                continue

            version = extract_version(name)
            if version > 0:
                files.append(MigrationFile(path=name, version=version))

        files.sort(key=sort_key)
        return MigrationSet(directory=directory, files=tuple(files), source=self.root)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _walk(self) -> list[str]:
        """Depth-first, pre-order list of recorded directories."""
        path_filter = self.ordering.path_filter
        found: list[str] = []
        stack: list[tuple[str, Traversable]] = [(ROOT, self.root)]

        while stack:
            path, node = stack.pop()

            if path_filter.prunes(path):
                logger.debug("discovery.directory_pruned", directory=path)
                continue

            if path_filter.excludes(path):
                logger.debug("discovery.directory_skipped", directory=path)
            else:
                found.append(path)

            try:
                children = sorted(
                    (child for child in node.iterdir() if child.is_dir() and not _is_symlink(child, path)),
                    key=lambda child: child.name,
                )
            except OSError as exc:
                raise DiscoveryError(
                    f"cannot walk migration directory {path!r}: {exc}",
                    directory=path,
                    cause=exc,
                ) from exc

            # Reversed so the lexically first child is popped first.
            for child in reversed(children):
                stack.append((join_relative(path, child.name), child))

        return found


class DiscoveryIterator:
    """Pull-based cursor over a ``Discovery``.

    The tree is walked on the first ``next()``; each later ``next()`` lists
    exactly one directory. ``close()`` ends the sequence early.
    """

    def __init__(self, discovery: Discovery) -> None:
        self._discovery = discovery
        self._pending: deque[str] | None = None
        self._closed = False

    def __iter__(self) -> DiscoveryIterator:
        return self

    def __next__(self) -> DiscoveryResult:
        if self._closed:
            raise StopIteration

        if self._pending is None:
            try:
                self._pending = deque(self._discovery.directories())
            except DiscoveryError as exc:
                self._closed = True
                return DiscoveryResult(None, exc)

        if not self._pending:
            self._closed = True
            raise StopIteration

        directory = self._pending.popleft()
        try:
            return DiscoveryResult(self._discovery.scan(directory))
        except DiscoveryError as exc:
            return DiscoveryResult(None, exc)

    def close(self) -> None:
        """Stop the sequence; no further directories are scanned."""
        self._closed = True
        self._pending = None

    def __enter__(self) -> DiscoveryIterator:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def discover(
    root: Traversable,
    ordering: OrderingSpec | None = None,
    extension: str | None = None,
) -> DiscoveryIterator:
    """Lazily discover migration sets under *root*.

    Args:
        root: Migration root — a ``pathlib.Path`` or any ``Traversable``
            (e.g. ``importlib.resources.files("myapp") / "migrations"``).
        ordering: Directory priority and skip patterns.
        extension: Optional case-insensitive file-name suffix filter
            (e.g. ``".sql"``).

    Returns:
        A ``DiscoveryIterator`` of ``DiscoveryResult`` pairs.
    """
    return Discovery(root, ordering, extension).results()


__all__ = [
    "Discovery",
    "DiscoveryIterator",
    "DiscoveryResult",
    "discover",
    "order_directories",
]
