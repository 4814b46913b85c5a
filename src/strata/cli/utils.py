"""
CLI utility helpers — settings resolution and output formatting.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from strata.core.config import StrataSettings, get_settings
from strata.core.errors import StrataError
from strata.core.logging import configure_logging

console = Console()
err_console = Console(stderr=True)


# ── Settings helper ──────────────────────────────────────────────────────


def load_settings(
    *,
    config: Path | None = None,
    path: str | None = None,
    order: list[str] | None = None,
    skip: list[str] | None = None,
    extension: str | None = None,
    database: str | None = None,
    table: str | None = None,
    log_level: str | None = None,
) -> StrataSettings:
    """Resolve settings from CLI options and configure logging from them."""
    settings = get_settings(
        config_file=config,
        base_path=path,
        order=order or None,
        skip=skip or None,
        extension=extension,
        database_url=database,
        table_name=table,
        log_level=log_level,
    )
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    return settings


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: StrataError) -> NoReturn:
    """Print *error* to stderr and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {escape(error.message)}")
    raise typer.Exit(code=1)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No migrations.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(str(v) for v in row.values()))
    console.print(table)
