"""Tests for strata.migrate.migrator — run protocol, atomicity and Migrator."""

from __future__ import annotations

import sqlite3
import threading
import zipfile
from pathlib import Path

import pytest

from strata.core.config import StrataSettings
from strata.core.errors import (
    ApplyError,
    ConfigError,
    DiscoveryError,
    FinalizeError,
    MigrationCancelled,
    SetupError,
)
from strata.drivers.sql import SQLDriver
from strata.migrate.discovery import Discovery
from strata.migrate.migrator import Migrator, run
from strata.migrate.models import MigrationSet, OrderingSpec


class RecordingDriver:
    """Driver double that records every phase call."""

    def __init__(self, *, start_error=None, process_error=None, end_error=None, on_process=None):
        self.calls: list[tuple] = []
        self.start_error = start_error
        self.process_error = process_error
        self.end_error = end_error
        self.on_process = on_process

    def start(self) -> None:
        self.calls.append(("start",))
        if self.start_error is not None:
            raise self.start_error

    def process(self, migration_set: MigrationSet) -> list:
        self.calls.append(("process", migration_set.directory))
        if self.on_process is not None:
            self.on_process(migration_set)
        if self.process_error is not None:
            raise self.process_error
        return []

    def end(self, error) -> None:
        self.calls.append(("end", error))
        if self.end_error is not None:
            raise self.end_error

    @property
    def phases(self) -> list[str]:
        return [call[0] for call in self.calls]


def migration_rows(conn: sqlite3.Connection, table: str = "migrations") -> list[tuple]:
    return conn.execute(f"SELECT directory, version, file_name FROM {table} ORDER BY directory, version").fetchall()


@pytest.fixture()
def two_file_tree(make_tree) -> Path:
    return make_tree({
        "schema/1_users.sql": "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);",
        "schema/2_posts.sql": "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER);",
    })


# ── Run protocol ──────────────────────────────────────────────────────


class TestRunProtocol:
    def test_phases_in_order(self, make_tree):
        driver = RecordingDriver()
        report = run(make_tree({"b/1_b.sql": "", "a/1_a.sql": ""}), None, driver)

        assert driver.calls == [
            ("start",),
            ("process", "."),
            ("process", "a"),
            ("process", "b"),
            ("end", None),
        ]
        assert report.directories == [".", "a", "b"]
        assert len(report.run_id) == 32

    def test_setup_failure_skips_everything(self, make_tree):
        driver = RecordingDriver(start_error=SetupError("no table"))
        with pytest.raises(SetupError):
            run(make_tree({"a/1_a.sql": ""}), None, driver)
        assert driver.phases == ["start"]

    def test_discovery_error_ends_driver(self, make_tree, monkeypatch):
        original = Discovery.scan

        def flaky(self, directory):
            if directory == "b":
                raise DiscoveryError("cannot list", directory=directory)
            return original(self, directory)

        monkeypatch.setattr(Discovery, "scan", flaky)
        driver = RecordingDriver()

        with pytest.raises(DiscoveryError) as exc_info:
            run(make_tree({"a/1_a.sql": "", "b/1_b.sql": "", "c/1_c.sql": ""}), None, driver)

        assert driver.calls[:-1] == [("start",), ("process", "."), ("process", "a")]
        assert driver.calls[-1] == ("end", exc_info.value)

    def test_unexpected_process_error_is_wrapped(self, make_tree):
        driver = RecordingDriver(process_error=RuntimeError("connection reset"))

        with pytest.raises(ApplyError) as exc_info:
            run(make_tree({}), None, driver)

        error = exc_info.value
        assert error.directory == "."
        assert isinstance(error.cause, RuntimeError)
        assert driver.calls[-1] == ("end", error)

    def test_apply_error_passes_through(self, make_tree):
        original = ApplyError("syntax error", directory=".", file="1_a.sql", version=1)
        driver = RecordingDriver(process_error=original)

        with pytest.raises(ApplyError) as exc_info:
            run(make_tree({"1_a.sql": ""}), None, driver)
        assert exc_info.value is original

    def test_keyboard_interrupt_reaches_end_and_propagates(self, make_tree):
        interrupt = KeyboardInterrupt()
        driver = RecordingDriver(process_error=interrupt)

        with pytest.raises(KeyboardInterrupt):
            run(make_tree({}), None, driver)
        assert driver.calls[-1] == ("end", interrupt)

    def test_finalize_failure_after_error_is_attached(self, make_tree):
        primary = ApplyError("syntax error", directory=".", file="1_a.sql", version=1)
        driver = RecordingDriver(process_error=primary, end_error=FinalizeError("rollback failed"))

        with pytest.raises(ApplyError) as exc_info:
            run(make_tree({"1_a.sql": ""}), None, driver)

        assert exc_info.value is primary
        assert primary.context.metadata["finalize_error"] == "rollback failed"
        assert any("rollback failed" in note for note in primary.__notes__)

    def test_finalize_failure_on_success_propagates(self, make_tree):
        driver = RecordingDriver(end_error=FinalizeError("commit failed"))
        with pytest.raises(FinalizeError, match="commit failed"):
            run(make_tree({}), None, driver)


class TestCancellation:
    def test_cancelled_before_first_set(self, make_tree):
        event = threading.Event()
        event.set()
        driver = RecordingDriver()

        with pytest.raises(MigrationCancelled) as exc_info:
            run(make_tree({"a/1_a.sql": ""}), None, driver, cancel_event=event)

        assert driver.phases == ["start", "end"]
        assert driver.calls[-1][1] is exc_info.value
        assert exc_info.value.context.run_id is not None

    def test_cancelled_between_sets(self, make_tree):
        event = threading.Event()
        driver = RecordingDriver(on_process=lambda s: event.set())

        with pytest.raises(MigrationCancelled):
            run(make_tree({"a/1_a.sql": "", "b/1_b.sql": ""}), None, driver, cancel_event=event)

        assert [c for c in driver.calls if c[0] == "process"] == [("process", ".")]
        assert isinstance(driver.calls[-1][1], MigrationCancelled)

    def test_no_directory_scanned_after_cancellation(self, make_tree, monkeypatch):
        scanned: list[str] = []
        original = Discovery.scan
        monkeypatch.setattr(Discovery, "scan", lambda self, d: scanned.append(d) or original(self, d))

        event = threading.Event()
        driver = RecordingDriver(on_process=lambda s: event.set() if s.directory == "a" else None)

        with pytest.raises(MigrationCancelled):
            run(make_tree({"a/1_a.sql": "", "b/1_b.sql": ""}), None, driver, cancel_event=event)

        assert scanned == [".", "a"]
        assert [c[1] for c in driver.calls if c[0] == "process"] == [".", "a"]


# ── End-to-end with SQLite ────────────────────────────────────────────


class TestSQLiteRuns:
    def test_two_files_recorded(self, two_file_tree, sqlite_conn, table_names):
        report = run(two_file_tree, None, SQLDriver(sqlite_conn, dialect="sqlite"))

        assert report.applied_count == 2
        assert [(r.directory, r.version, r.file_name) for r in report.applied] == [
            ("schema", 1, "1_users.sql"),
            ("schema", 2, "2_posts.sql"),
        ]
        assert migration_rows(sqlite_conn) == [("schema", 1, "1_users.sql"), ("schema", 2, "2_posts.sql")]
        assert {"users", "posts", "migrations"} <= table_names(sqlite_conn)

    def test_rerun_is_idempotent(self, two_file_tree, sqlite_conn):
        run(two_file_tree, None, SQLDriver(sqlite_conn, dialect="sqlite"))
        again = run(two_file_tree, None, SQLDriver(sqlite_conn, dialect="sqlite"))

        assert again.applied_count == 0
        assert len(migration_rows(sqlite_conn)) == 2

    def test_symlinked_directory_applied_once(self, two_file_tree, sqlite_conn):
        (two_file_tree / "schema_link").symlink_to(two_file_tree / "schema", target_is_directory=True)

        report = run(two_file_tree, None, SQLDriver(sqlite_conn, dialect="sqlite"))

        assert report.applied_count == 2
        assert {r[0] for r in migration_rows(sqlite_conn)} == {"schema"}

    def test_only_newer_versions_applied(self, two_file_tree, sqlite_conn):
        run(two_file_tree, None, SQLDriver(sqlite_conn, dialect="sqlite"))
        (two_file_tree / "schema" / "3_tags.sql").write_text("CREATE TABLE tags (id INTEGER);")
        (two_file_tree / "schema" / "1_late.sql").write_text("CREATE TABLE late (id INTEGER);")

        report = run(two_file_tree, None, SQLDriver(sqlite_conn, dialect="sqlite"))

        assert [r.file_name for r in report.applied] == ["3_tags.sql"]
        assert migration_rows(sqlite_conn)[-1] == ("schema", 3, "3_tags.sql")

    def test_high_water_mark_is_per_directory(self, make_tree, sqlite_conn):
        root = make_tree({
            "a/1_a.sql": "CREATE TABLE a1 (id INTEGER);",
            "a/2_a.sql": "CREATE TABLE a2 (id INTEGER);",
            "b/1_b.sql": "CREATE TABLE b1 (id INTEGER);",
        })
        report = run(root, None, SQLDriver(sqlite_conn, dialect="sqlite"))
        assert [(r.directory, r.version) for r in report.applied] == [("a", 1), ("a", 2), ("b", 1)]

    def test_priority_order(self, make_tree, sqlite_conn):
        root = make_tree({
            "data/1_seed.sql": "INSERT INTO users (name) VALUES ('ada');",
            "schema/1_users.sql": "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);",
            "other/1_misc.sql": "CREATE TABLE misc (id INTEGER);",
            "1_root.sql": "CREATE TABLE root_table (id INTEGER);",
        })
        report = run(
            root,
            OrderingSpec(priority_dirs=("schema", "data")),
            SQLDriver(sqlite_conn, dialect="sqlite"),
        )

        assert report.directories == ["schema", "data", ".", "other"]
        assert sqlite_conn.execute("SELECT name FROM users").fetchall() == [("ada",)]

    def test_failed_file_rolls_back_everything(self, make_tree, sqlite_conn, table_names):
        root = make_tree({
            "schema/1_users.sql": "CREATE TABLE users (id INTEGER);",
            "schema/2_broken.sql": "CREATE TABLE broken (",
            "zzz/1_later.sql": "CREATE TABLE later (id INTEGER);",
        })

        with pytest.raises(ApplyError) as exc_info:
            run(root, None, SQLDriver(sqlite_conn, dialect="sqlite"))

        error = exc_info.value
        assert (error.directory, error.file, error.version) == ("schema", "2_broken.sql", 2)
        assert isinstance(error.cause, sqlite3.Error)
        assert table_names(sqlite_conn) == set()

    def test_zip_archive_source(self, tmp_path, sqlite_conn):
        archive = tmp_path / "bundle.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("schema/1_users.sql", "CREATE TABLE users (id INTEGER);")
            zf.writestr("schema/2_posts.sql", "CREATE TABLE posts (id INTEGER);")

        with zipfile.ZipFile(archive) as zf:
            report = Migrator(source=zipfile.Path(zf)).run(SQLDriver(sqlite_conn, dialect="sqlite"))

        assert report.applied_count == 2


# ── Migrator ──────────────────────────────────────────────────────────


class TestMigrator:
    def test_missing_base_path(self, tmp_path):
        with pytest.raises(ConfigError, match="does not exist") as exc_info:
            Migrator(tmp_path / "nope")
        assert exc_info.value.context.path == str(tmp_path / "nope")

    def test_base_path_is_a_file(self, tmp_path):
        target = tmp_path / "migrations.sql"
        target.write_text("")
        with pytest.raises(ConfigError, match="not a directory"):
            Migrator(target)

    def test_default_base_path(self, tmp_path, monkeypatch):
        (tmp_path / "migrations" / "schema").mkdir(parents=True)
        (tmp_path / "migrations" / "schema" / "1_users.sql").write_text("")
        monkeypatch.chdir(tmp_path)

        assert [s.directory for s in Migrator().plan()] == [".", "schema"]

    def test_bad_skip_pattern(self, make_tree):
        with pytest.raises(ConfigError):
            Migrator(make_tree({}), skip=["[oops"])

    def test_plan(self, make_tree, snapshot):
        root = make_tree({
            "schema/1_users.sql": "",
            "schema/notes.md": "",
            "data/1_seed.sql": "",
            "scratch/1_tmp.sql": "",
        })
        migrator = Migrator(root, order=["/schema"], skip=["/scratch/**"], extension=".sql")

        assert snapshot(migrator.plan()) == [
            ("schema", [("1_users.sql", 1)]),
            (".", []),
            ("data", [("1_seed.sql", 1)]),
        ]

    def test_discover_is_lazy(self, make_tree):
        results = Migrator(make_tree({"a/1_a.sql": ""})).discover()
        assert next(results).migration_set.directory == "."
        results.close()

    def test_from_settings(self, make_tree):
        root = make_tree({"schema/1_users.sql": "", "data/1_seed.sql": ""})
        settings = StrataSettings(base_path=str(root), order=["schema"], extension=".sql")
        migrator = Migrator.from_settings(settings)

        assert migrator.ordering.priority_dirs == ("schema",)
        assert migrator.extension == ".sql"
        assert [s.directory for s in migrator.plan()] == ["schema", ".", "data"]

    def test_run(self, two_file_tree, sqlite_conn):
        report = Migrator(two_file_tree).run(SQLDriver(sqlite_conn, dialect="sqlite"))
        assert report.applied_count == 2

    def test_repr(self, make_tree):
        root = make_tree({})
        assert repr(Migrator(root, order=["a"])) == f"Migrator(source={str(root)!r}, order=['a'], skip=[])"
