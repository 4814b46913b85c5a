"""
Centralized settings for strata.

Manifesto:
    The CLI, the library entry points and the tests must agree on where
    migrations live and which table records them. ``StrataSettings``
    resolves those values once, validated, from keyword overrides,
    ``STRATA_*`` environment variables, a TOML config file and defaults.

Resolution order (first wins)::

    overrides  →  STRATA_* env vars  →  strata.toml / [tool.strata]  →  .env  →  defaults

Tags:
    configuration, settings, pydantic, validation, strata

Doc-Types:
    api-reference
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from strata.core.dialect import validate_table_name
from strata.core.errors import ConfigError
from strata.migrate.filters import compile_glob, normalize_pattern

from .loader import discover_config_file, find_project_root, load_config_file

ENV_PREFIX = "STRATA_"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class StrataSettings(BaseSettings):
    """Strata configuration.

    List fields accept comma-separated environment values
    (``STRATA_ORDER=schema,data``).
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Discovery ────────────────────────────────────────────────
    base_path: str = Field(default="migrations", description="Root directory of migration files")
    order: Annotated[list[str], NoDecode] = Field(default_factory=list, description="Directories to run first")
    skip: Annotated[list[str], NoDecode] = Field(default_factory=list, description="Glob patterns to skip")
    extension: str | None = Field(default=None, description="File-name suffix filter, e.g. '.sql'")

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///strata.db")
    table_name: str = Field(default="migrations")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    @field_validator("order", "skip", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("order")
    @classmethod
    def _normalize_order(cls, value: list[str]) -> list[str]:
        return [normalize_pattern(item) for item in value]

    @field_validator("skip")
    @classmethod
    def _validate_skip(cls, value: list[str]) -> list[str]:
        patterns = [normalize_pattern(item) for item in value]
        for pattern in patterns:
            try:
                compile_glob(pattern)
            except ConfigError as exc:
                raise ValueError(exc.message) from exc
        return patterns

    @field_validator("extension")
    @classmethod
    def _normalize_extension(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("table_name")
    @classmethod
    def _validate_table_name(cls, value: str) -> str:
        try:
            return validate_table_name(value)
        except ConfigError as exc:
            raise ValueError(exc.message) from exc

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return level

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"


def get_settings(
    config_file: Path | str | None = None,
    project_root: Path | None = None,
    **overrides: Any,
) -> StrataSettings:
    """Load and validate a :class:`StrataSettings` instance.

    Parameters
    ----------
    config_file:
        Explicit ``strata.toml`` / ``pyproject.toml``. When omitted, one is
        looked up in *project_root* (see :func:`discover_config_file`).
    project_root:
        Override the auto-detected project root.
    **overrides:
        Field values that beat every other source. ``None`` values are
        ignored so unset CLI options can be passed through as-is.

    Raises:
        ConfigError: If the config file is unreadable or any value is invalid.
    """
    if config_file is None:
        root = (project_root or find_project_root()).resolve()
        config_file = discover_config_file(root)

    file_values: dict[str, Any] = {}
    if config_file is not None:
        config_path = Path(config_file)
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}", path=str(config_path))
        file_values = load_config_file(config_path)
        base_path = file_values.get("base_path")
        if isinstance(base_path, str) and not Path(base_path).is_absolute():
            file_values["base_path"] = str(config_path.parent / base_path)

    # Init kwargs outrank the environment, so file values already set there are dropped.
    init: dict[str, Any] = {
        key: value
        for key, value in file_values.items()
        if f"{ENV_PREFIX}{key.upper()}" not in os.environ
    }
    init.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return StrataSettings(**init)
    except ValidationError as exc:
        raise ConfigError(f"Invalid strata settings: {exc}", cause=exc) from exc


__all__ = ["ENV_PREFIX", "StrataSettings", "get_settings"]
