"""
Shared pytest fixtures and configuration for strata tests.

This module provides:
- ``make_tree``: build a migration tree under ``tmp_path`` from a mapping
- ``sqlite_conn``: a file-backed stdlib ``sqlite3`` connection
- ``snapshot``: flatten discovery output for comparisons
- Location-based ``unit`` / ``integration`` markers
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

import pytest

from strata.migrate.models import MigrationSet


# =============================================================================
# Test Markers Configuration
# =============================================================================

INTEGRATION_DIRS = ("drivers", "cli")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if test_path.parts and test_path.parts[0] in INTEGRATION_DIRS:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Migration tree fixtures
# =============================================================================


TreeBuilder = Callable[[dict[str, str]], Path]


@pytest.fixture()
def make_tree(tmp_path: Path) -> TreeBuilder:
    """Return a builder that lays out ``{relative_path: content}`` under a fresh root.

    Keys ending in ``/`` create (empty) directories.
    """
    counter = iter(range(1_000))

    def build(entries: dict[str, str]) -> Path:
        root = tmp_path / f"migrations_{next(counter)}"
        root.mkdir()
        for relative, content in entries.items():
            target = root / relative
            if relative.endswith("/"):
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return root

    return build


@pytest.fixture()
def sqlite_conn(tmp_path: Path) -> Iterator[sqlite3.Connection]:
    """File-backed SQLite connection, closed after the test."""
    conn = sqlite3.connect(tmp_path / "strata.db")
    yield conn
    conn.close()


def _snapshot(sets: Iterable[MigrationSet]) -> list[tuple[str, list[tuple[str, int]]]]:
    return [(s.directory, [(f.path, f.version) for f in s]) for s in sets]


def _table_names(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


@pytest.fixture()
def snapshot() -> Callable[[Iterable[MigrationSet]], list]:
    """Flatten sets to ``[(directory, [(file, version), ...]), ...]``."""
    return _snapshot


@pytest.fixture()
def table_names() -> Callable[[sqlite3.Connection], set[str]]:
    """Names of the tables in a SQLite connection."""
    return _table_names
