"""Version numbers from migration file names.

A migration's version is the run of ASCII digits at the start of its base
name: ``001_init.sql`` and ``1_init.sql`` are both version 1. Names without
a leading digit get version 0, which means "not a migration".
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from strata.migrate.models import MigrationFile

# ASCII only: str.isdigit() would also accept e.g. Arabic-Indic digits.
_LEADING_DIGITS = re.compile(r"[0-9]+")


def extract_version(name: str) -> int:
    """Return the integer value of the leading digit run of *name*, or 0.

    >>> extract_version("001_create_users.sql")
    1
    >>> extract_version("20240101_backfill.sql")
    20240101
    >>> extract_version("readme.md")
    0
    """
    match = _LEADING_DIGITS.match(name)
    if match is None:
        return 0
    return int(match.group())


def sort_key(file: MigrationFile) -> tuple[int, str]:
    """Ordering key: version first, full file name as the tie-break."""
    return (file.version, file.path)


__all__ = ["extract_version", "sort_key"]
