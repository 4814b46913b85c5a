"""Tests for strata.drivers.sql — the DB-API driver against stdlib sqlite3."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from strata.core.errors import ApplyError, ConfigError, DriverStateError, FinalizeError, SetupError
from strata.drivers.base import Driver, DriverState
from strata.drivers.sql import SQLDriver
from strata.migrate.models import MigrationFile, MigrationSet

FIXED_NOW = datetime(2025, 3, 1, 9, 30, tzinfo=UTC)


@pytest.fixture()
def driver(sqlite_conn) -> SQLDriver:
    return SQLDriver(sqlite_conn, dialect="sqlite", clock=lambda: FIXED_NOW)


@pytest.fixture()
def schema_set(make_tree) -> MigrationSet:
    root = make_tree({
        "schema/1_users.sql": "CREATE TABLE users (id INTEGER PRIMARY KEY);",
        "schema/2_posts.sql": "CREATE TABLE posts (id INTEGER PRIMARY KEY);",
        "schema/3_empty.sql": "   \n",
    })
    return MigrationSet(
        directory="schema",
        files=(
            MigrationFile("1_users.sql", 1),
            MigrationFile("2_posts.sql", 2),
            MigrationFile("3_empty.sql", 3),
        ),
        source=root,
    )


class TestConstruction:
    def test_satisfies_driver_protocol(self, driver):
        assert isinstance(driver, Driver)

    def test_invalid_table_name(self, sqlite_conn):
        with pytest.raises(ConfigError):
            SQLDriver(sqlite_conn, dialect="sqlite", table_name="bad name")

    def test_unknown_dialect(self, sqlite_conn):
        with pytest.raises(ConfigError):
            SQLDriver(sqlite_conn, dialect="mssql")

    def test_repr(self, driver):
        assert repr(driver) == "SQLDriver(dialect='sqlite', table='migrations')"


class TestLifecycle:
    def test_apply_and_commit(self, driver, schema_set, sqlite_conn, table_names):
        driver.start()
        records = driver.process(schema_set)
        driver.end(None)

        assert [(r.version, r.file_name) for r in records] == [
            (1, "1_users.sql"),
            (2, "2_posts.sql"),
            (3, "3_empty.sql"),
        ]
        assert all(r.processed_at == FIXED_NOW for r in records)
        assert {"users", "posts", "migrations"} <= table_names(sqlite_conn)
        assert driver.high_water_mark("schema") == 3
        assert driver.high_water_mark("data") == 0

    def test_applied_records_round_trip_timestamps(self, driver, schema_set):
        driver.start()
        driver.process(schema_set)
        driver.end(None)

        records = driver.applied_records()
        assert [r.version for r in records] == [1, 2, 3]
        assert records[0].processed_at == FIXED_NOW

    def test_rollback_discards_everything(self, driver, schema_set, sqlite_conn, table_names):
        driver.start()
        driver.process(schema_set)
        driver.end(RuntimeError("later failure"))

        assert table_names(sqlite_conn) == set()

    def test_skips_applied_versions(self, sqlite_conn, schema_set):
        first = SQLDriver(sqlite_conn, dialect="sqlite")
        first.start()
        first.process(schema_set)
        first.end(None)

        second = SQLDriver(sqlite_conn, dialect="sqlite")
        second.start()
        assert second.process(schema_set) == []
        second.end(None)

    def test_custom_table_name(self, sqlite_conn, schema_set, table_names):
        driver = SQLDriver(sqlite_conn, dialect="sqlite", table_name="schema_migrations")
        driver.start()
        driver.process(schema_set)
        driver.end(None)
        assert "schema_migrations" in table_names(sqlite_conn)
        assert "migrations" not in table_names(sqlite_conn)


class TestPhaseGuards:
    def test_process_before_start(self, driver, schema_set):
        with pytest.raises(DriverStateError, match="process"):
            driver.process(schema_set)

    def test_end_before_start(self, driver):
        with pytest.raises(DriverStateError):
            driver.end(None)

    def test_start_twice(self, driver):
        driver.start()
        with pytest.raises(DriverStateError):
            driver.start()
        driver.end(None)

    def test_process_after_end(self, driver, schema_set):
        driver.start()
        driver.end(None)
        assert driver._phase.state is DriverState.ENDED
        with pytest.raises(DriverStateError):
            driver.process(schema_set)


class TestFailures:
    def test_bad_sql_raises_apply_error(self, driver, make_tree):
        root = make_tree({"1_ok.sql": "CREATE TABLE ok (id INTEGER);", "2_bad.sql": "CREAT TABLE nope"})
        migration_set = MigrationSet(
            directory=".",
            files=(MigrationFile("1_ok.sql", 1), MigrationFile("2_bad.sql", 2)),
            source=root,
        )
        driver.start()
        with pytest.raises(ApplyError) as exc_info:
            driver.process(migration_set)
        driver.end(exc_info.value)

        error = exc_info.value
        assert error.file == "2_bad.sql"
        assert error.version == 2
        assert error.directory == "."
        assert str(error).startswith("applying migration 2_bad.sql: ")
        assert isinstance(error.cause, sqlite3.OperationalError)

    def test_unreadable_file_raises_apply_error(self, driver, make_tree):
        root = make_tree({})
        migration_set = MigrationSet(directory=".", files=(MigrationFile("1_gone.sql", 1),), source=root)
        driver.start()
        with pytest.raises(ApplyError, match="cannot read file") as exc_info:
            driver.process(migration_set)
        assert isinstance(exc_info.value.cause, OSError)
        driver.end(exc_info.value)

    def test_setup_failure_rolls_back_and_resets(self):
        conn = MagicMock()
        conn.cursor.return_value.execute.side_effect = sqlite3.OperationalError("database is locked")
        driver = SQLDriver(conn, dialect="sqlite")

        with pytest.raises(SetupError, match="database is locked") as exc_info:
            driver.start()

        assert exc_info.value.context.table == "migrations"
        conn.rollback.assert_called_once()
        conn.cursor.return_value.close.assert_called_once()
        assert driver._phase.state is DriverState.NOT_STARTED

    def test_commit_failure_raises_finalize_error(self):
        conn = MagicMock()
        conn.commit.side_effect = sqlite3.OperationalError("disk I/O error")
        driver = SQLDriver(conn, dialect="postgresql")
        driver.start()

        with pytest.raises(FinalizeError, match="commit failed"):
            driver.end(None)

    def test_rollback_failure_raises_finalize_error(self):
        conn = MagicMock()
        conn.rollback.side_effect = sqlite3.OperationalError("disk I/O error")
        driver = SQLDriver(conn, dialect="postgresql")
        driver.start()

        with pytest.raises(FinalizeError, match="rollback failed"):
            driver.end(RuntimeError("boom"))


class TestPostgresSQL:
    def test_statements_use_pyformat(self, schema_set):
        conn = MagicMock()
        cursor = conn.cursor.return_value
        cursor.fetchone.return_value = (1,)
        driver = SQLDriver(conn, table_name="public.schema_migrations", clock=lambda: FIXED_NOW)

        driver.start()
        records = driver.process(schema_set)
        driver.end(None)

        statements = [c.args[0] for c in cursor.execute.call_args_list]
        assert statements[0].startswith("CREATE TABLE IF NOT EXISTS public.schema_migrations")
        assert statements[1] == "SELECT MAX(version) FROM public.schema_migrations WHERE directory = %s"
        assert statements[2] == "CREATE TABLE posts (id INTEGER PRIMARY KEY);"
        assert statements[3].startswith("INSERT INTO public.schema_migrations")
        assert cursor.execute.call_args_list[3].args[1] == (2, "schema", "2_posts.sql", FIXED_NOW)
        assert [r.version for r in records] == [2, 3]
        conn.commit.assert_called_once()
