"""
Structured logging for migration runs.

Manifesto:
    A migration run is an audit trail: which files were applied, which were
    skipped as already recorded, and where a run stopped. Every event is a
    dotted name plus key-value fields, so the trail can be grepped on a
    terminal or queried once shipped as JSON.

    - **Run correlation:** ``run_id`` is bound for the duration of a run
    - **Error fields:** a ``StrataError`` passed as ``error=`` is flattened
      into its category, message and migration coordinates

Architecture:
    ::

        configure_logging(level, json_format, service)
            │
            ▼
        ┌────────────────────────────────────────────────────────────┐
        │ TimeStamper(iso)          optional                          │
        │ merge_contextvars         run_id, table, ...                │
        │ add_log_level                                               │
        │ service processor         service.name                      │
        │ error processor           error=<exc> → error.* fields      │
        │ ECS field names           @timestamp, log.level (JSON only) │
        │ JSONRenderer | ConsoleRenderer                              │
        └────────────────────────────────────────────────────────────┘

Event names used across the package::

    migration.run_started     migration.set_started    migration.applied
    migration.skipped         migration.run_completed  migration.run_failed
    migration.finalize_failed migration.setup_rollback_failed
    discovery.directory_pruned discovery.directory_skipped discovery.file_skipped

Examples:
    >>> from strata.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("migration.applied", directory="schema", file="1_users.sql")

Tags:
    logging, structlog, json-logging, strata

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from strata.core.errors import StrataError

DEFAULT_SERVICE = "strata"


# ── Processors ───────────────────────────────────────────────────────────


def _service_processor(service: str) -> Processor:
    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", service)
        return event_dict

    return add_service


def _flatten_error(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace an ``error=<exception>`` field with flat ``error.*`` fields."""
    error = event_dict.get("error")
    if not isinstance(error, BaseException):
        return event_dict

    del event_dict["error"]
    event_dict["error.type"] = type(error).__name__
    if isinstance(error, StrataError):
        event_dict["error.category"] = error.category.value
        event_dict["error.message"] = error.message
        for key, value in error.context.to_dict().items():
            event_dict.setdefault(key, value)
    else:
        event_dict["error.message"] = str(error)
    return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


# ── Configuration ────────────────────────────────────────────────────────


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = DEFAULT_SERVICE,
    *,
    timestamps: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog for strata.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: JSON lines when True, console output when False;
            ``None`` picks JSON unless stdout is a terminal.
        service: Value of the ``service.name`` field.
        timestamps: Add an ISO-8601 timestamp to every event.
        stream: Output stream. Defaults to whatever ``sys.stdout`` is at
            the time of each call.

    Raises:
        ValueError: If *level* is not a logging level name.
    """
    numeric_level = _resolve_level(level)

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _service_processor(service),
        _flatten_error,
    ]
    if timestamps:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors += [_ecs_field_names, structlog.processors.JSONRenderer()]
    else:
        colors = (stream or sys.stdout).isatty()
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        # A new logger per call picks up a redirected sys.stdout.
        cache_logger_on_first_use=False,
    )

    # Libraries logging through stdlib (SQLAlchemy echo) share the level.
    logging.basicConfig(format="%(message)s", stream=stream or sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger; *name* is bound as the ``logger_name`` field.

    Binding happens lazily on each call, so loggers created at import time
    follow a later ``configure_logging``.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


# ── Context ──────────────────────────────────────────────────────────────


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every event logged from this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` block.

    Example:
        with LogContext(run_id=run_id):
            logger.info("migration.run_started")
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields

    def __enter__(self) -> LogContext:
        bind_context(**self.fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        unbind_context(*self.fields)


__all__ = [
    "DEFAULT_SERVICE",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
