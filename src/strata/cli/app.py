"""
Root Typer application for the strata CLI.

    strata up       apply pending migrations
    strata plan     show discovered migrations in run order
    strata status   show which discovered migrations are applied
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Annotated

import typer
from sqlalchemy.exc import SQLAlchemyError

from strata.cli.utils import console, fail, load_settings, print_json, print_table
from strata.core.errors import SetupError, StrataError
from strata.drivers.engine import create_driver
from strata.migrate.migrator import Migrator

app = typer.Typer(
    name="strata",
    help="strata — ordered, transactional schema migrations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Shared options ───────────────────────────────────────────────────────

PathOption = Annotated[str | None, typer.Option("--path", "-p", help="Migrations directory")]
OrderOption = Annotated[list[str] | None, typer.Option("--order", "-o", help="Directory to run first (repeatable)")]
SkipOption = Annotated[list[str] | None, typer.Option("--skip", "-s", help="Glob pattern to skip (repeatable)")]
ExtensionOption = Annotated[str | None, typer.Option("--extension", "-e", help="File suffix filter, e.g. .sql")]
DatabaseOption = Annotated[str | None, typer.Option("--database", "-d", help="SQLAlchemy database URL")]
TableOption = Annotated[str | None, typer.Option("--table", "-t", help="Tracking table name")]
ConfigOption = Annotated[Path | None, typer.Option("--config", "-c", help="strata.toml or pyproject.toml")]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", help="DEBUG, INFO, WARNING, ERROR")]
JsonOption = Annotated[bool, typer.Option("--json", help="JSON output")]


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("strata-migrate")
        except PackageNotFoundError:
            from strata import __version__ as v
        typer.echo(f"strata {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """strata CLI — discover, plan and apply migrations."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def up(
    path: PathOption = None,
    order: OrderOption = None,
    skip: SkipOption = None,
    extension: ExtensionOption = None,
    database: DatabaseOption = None,
    table: TableOption = None,
    config: ConfigOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Apply every pending migration in one transaction."""
    try:
        settings = load_settings(
            config=config, path=path, order=order, skip=skip, extension=extension,
            database=database, table=table, log_level=log_level,
        )
        migrator = Migrator.from_settings(settings)
        driver = create_driver(settings.database_url, table_name=settings.table_name)
        try:
            report = migrator.run(driver)
        finally:
            driver.engine.dispose()
    except StrataError as exc:
        fail(exc)

    console.print(
        f"[green]Applied {report.applied_count} migration(s)[/green] "
        f"across {len(report.directories)} director{'y' if len(report.directories) == 1 else 'ies'}."
    )


@app.command()
def plan(
    path: PathOption = None,
    order: OrderOption = None,
    skip: SkipOption = None,
    extension: ExtensionOption = None,
    config: ConfigOption = None,
    log_level: LogLevelOption = None,
    json_out: JsonOption = False,
) -> None:
    """Show discovered migrations in the order they would run."""
    try:
        settings = load_settings(
            config=config, path=path, order=order, skip=skip, extension=extension, log_level=log_level,
        )
        sets = Migrator.from_settings(settings).plan()
    except StrataError as exc:
        fail(exc)

    if json_out:
        print_json([
            {"directory": s.directory, "files": [{"file": f.path, "version": f.version} for f in s]}
            for s in sets
        ])
        return

    rows = [{"directory": s.directory, "file": f.path, "version": f.version} for s in sets for f in s]
    print_table(rows, title="Migration Plan")


@app.command()
def status(
    path: PathOption = None,
    order: OrderOption = None,
    skip: SkipOption = None,
    extension: ExtensionOption = None,
    database: DatabaseOption = None,
    table: TableOption = None,
    config: ConfigOption = None,
    log_level: LogLevelOption = None,
    json_out: JsonOption = False,
) -> None:
    """Show which discovered migrations are applied and which are pending."""
    try:
        settings = load_settings(
            config=config, path=path, order=order, skip=skip, extension=extension,
            database=database, table=table, log_level=log_level,
        )
        sets = Migrator.from_settings(settings).plan()
        driver = create_driver(settings.database_url, table_name=settings.table_name)
        try:
            try:
                records = driver.applied_records()
            except SQLAlchemyError as exc:
                raise SetupError(f"cannot read migration table {settings.table_name}: {exc}", cause=exc) from exc
        finally:
            driver.engine.dispose()
    except StrataError as exc:
        fail(exc)

    marks: dict[str, int] = {}
    for record in records:
        marks[record.directory] = max(marks.get(record.directory, 0), record.version)

    rows = [
        {
            "directory": s.directory,
            "file": f.path,
            "version": f.version,
            "status": "applied" if f.version <= marks.get(s.directory, 0) else "pending",
        }
        for s in sets
        for f in s
    ]

    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Migration Status")
