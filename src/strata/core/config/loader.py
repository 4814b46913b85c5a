"""
Config-file discovery and loading.

Settings can live in a dedicated ``strata.toml`` or in the
``[tool.strata]`` table of the project's ``pyproject.toml``::

    # strata.toml
    base_path = "db/migrations"
    order = ["schema", "data"]
    skip = ["scratch/**"]
    extension = ".sql"

Keys may be written with dashes (``table-name``); they are normalized to
the settings field names.

Tags:
    configuration, toml, loader, strata

Doc-Types:
    api-reference
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from strata.core.errors import ConfigError

CONFIG_FILE_NAME = "strata.toml"
PYPROJECT_FILE_NAME = "pyproject.toml"


def find_project_root(start: Path | None = None) -> Path:
    """Walk upward from *start* to find the project root.

    Recognised root markers (checked in order):

    * ``strata.toml``
    * ``pyproject.toml``
    * ``.git`` directory

    Falls back to *start* (or cwd) when no marker is found.
    """
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        if (directory / CONFIG_FILE_NAME).exists():
            return directory
        if (directory / PYPROJECT_FILE_NAME).exists():
            return directory
        if (directory / ".git").exists():
            return directory
    return current


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}", path=str(path), cause=exc) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}", path=str(path), cause=exc) from exc


def load_config_file(path: Path) -> dict[str, Any]:
    """Return the strata settings mapping stored in *path*.

    For ``pyproject.toml`` only the ``[tool.strata]`` table is read; any
    other file is read whole.

    Raises:
        ConfigError: If the file cannot be read or is not valid TOML.
    """
    path = Path(path)
    data = _read_toml(path)
    if path.name == PYPROJECT_FILE_NAME:
        data = data.get("tool", {}).get("strata", {})
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a table of settings in {path}", path=str(path))
    return {key.replace("-", "_"): value for key, value in data.items()}


def discover_config_file(project_root: Path | None = None) -> Path | None:
    """Locate the config file for *project_root*.

    ``strata.toml`` wins; otherwise ``pyproject.toml`` is used when it has a
    ``[tool.strata]`` table.
    """
    root = (project_root or find_project_root()).resolve()

    candidate = root / CONFIG_FILE_NAME
    if candidate.is_file():
        return candidate

    pyproject = root / PYPROJECT_FILE_NAME
    if pyproject.is_file() and "strata" in _read_toml(pyproject).get("tool", {}):
        return pyproject

    return None


__all__ = [
    "CONFIG_FILE_NAME",
    "PYPROJECT_FILE_NAME",
    "discover_config_file",
    "find_project_root",
    "load_config_file",
]
