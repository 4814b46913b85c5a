"""
Structured error types for strata.

Every failure a migration run can produce is a ``StrataError`` subclass that
carries a category, a structured ``ErrorContext`` (directory, file, version,
table) and the chained underlying exception. A run either succeeds or raises
exactly one of these.

Manifesto:
    A failed migration must be pinpointed without reading a traceback:
    which directory, which file, which version, and what the database said.
    Generic exceptions lose that context the moment they cross a layer.

    - **Typed hierarchy:** one class per phase of a run
    - **Rich context:** errors carry the migration coordinates
    - **Error chaining:** the original driver exception is never swallowed

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        StrataError                            │
        │                 (category, context, cause)                    │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError        DiscoveryError       SetupError           │
        │  (CONFIG)           (DISCOVERY)          (STORAGE)            │
        │                                                               │
        │  ApplyError         FinalizeError        MigrationCancelled   │
        │  (MIGRATION)        (STORAGE)            (CANCELLED)          │
        │                                                               │
        │  DriverStateError                                             │
        │  (INTERNAL)                                                   │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ApplyError("syntax error", directory="schema", file="2_posts.sql", version=2)
    >>> error.context.file
    '2_posts.sql'
    >>> error.to_dict()["category"]
    'MIGRATION'

Tags:
    error-handling, exception-hierarchy, error-context, strata, migrations

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Which phase of a run failed; drives CLI output and log fields."""

    CONFIG = "CONFIG"             # base path, glob, table name, settings
    DISCOVERY = "DISCOVERY"       # walking or listing the migration tree
    STORAGE = "STORAGE"           # tracking table, transaction open/close
    MIGRATION = "MIGRATION"       # executing or recording a migration file
    CANCELLED = "CANCELLED"       # cancel event observed between sets
    INTERNAL = "INTERNAL"         # driver misuse and other bugs


@dataclass
class ErrorContext:
    """
    Where in a run an error happened.

    Attributes:
        directory: Migration set directory (``"."`` for the root)
        file: Migration file name within ``directory``
        version: Version parsed from ``file``
        path: Filesystem path involved (base path, listed directory)
        table: Tracking table name
        run_id: Identifier of the migration run
        metadata: Anything else, e.g. ``finalize_error``
    """

    directory: str | None = None
    file: str | None = None
    version: int | None = None
    path: str | None = None
    table: str | None = None
    run_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls) if f.name != "metadata")

    def set(self, key: str, value: Any) -> None:
        """Store *key* as a typed field when there is one, else in ``metadata``."""
        if key in self.field_names():
            setattr(self, key, value)
        else:
            self.metadata[key] = value

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, with ``metadata`` merged in; suitable as log kwargs."""
        values = {name: getattr(self, name) for name in self.field_names()}
        return {k: v for k, v in values.items() if v is not None} | self.metadata


class StrataError(Exception):
    """
    Base class of every error a migration run raises.

    Context fields can be passed as keywords; unknown keywords land in
    ``context.metadata``. ``cause`` is also set as ``__cause__``.

    Examples:
        >>> StrataError("Something went wrong").category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = DiscoveryError("cannot list", path="schema", cause=OSError("disk gone"))
        >>> error.cause
        OSError('disk gone')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
        **context_fields: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category if category is not None else self.default_category
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        self.with_context(**context_fields)
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StrataError:
        """Add context fields and return ``self``.

        Usage:
            raise DiscoveryError("listing failed").with_context(path="schema")
        """
        for key, value in kwargs.items():
            self.context.set(key, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serializable summary: type, message, category, context and cause."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if context := self.context.to_dict():
            data["context"] = context
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SETUP-TIME ERRORS
# =============================================================================


class ConfigError(StrataError):
    """
    Invalid configuration, raised before any storage work.

    Covers a missing base path, a malformed glob pattern, a bad table name
    and settings that fail validation.
    """

    default_category = ErrorCategory.CONFIG


# =============================================================================
# RUN-PHASE ERRORS
# =============================================================================


class DiscoveryError(StrataError):
    """Filesystem read or traversal failure while discovering migrations."""

    default_category = ErrorCategory.DISCOVERY


class SetupError(StrataError):
    """The driver could not prepare bookkeeping or open its atomic scope."""

    default_category = ErrorCategory.STORAGE


class ApplyError(StrataError):
    """
    A migration file could not be executed or recorded.

    ``directory``, ``file`` and ``version`` identify the offending
    migration; the message is prefixed with its relative path.
    """

    default_category = ErrorCategory.MIGRATION

    def __init__(
        self,
        message: str,
        *,
        directory: str | None = None,
        file: str | None = None,
        version: int | None = None,
        **kwargs: Any,
    ):
        if file is not None:
            location = file if directory in (None, ".") else f"{directory}/{file}"
            message = f"applying migration {location}: {message}"
        super().__init__(message, directory=directory, file=file, version=version, **kwargs)

    @property
    def directory(self) -> str | None:
        return self.context.directory

    @property
    def file(self) -> str | None:
        return self.context.file

    @property
    def version(self) -> int | None:
        return self.context.version


class FinalizeError(StrataError):
    """Commit or rollback failed while ending a run."""

    default_category = ErrorCategory.STORAGE


class MigrationCancelled(StrataError):
    """The caller asked the run to stop; observed between migration sets."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "migration run cancelled", **kwargs: Any):
        super().__init__(message, **kwargs)


class DriverStateError(StrataError):
    """A driver phase was called out of order (e.g. ``process`` before ``start``)."""

    default_category = ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StrataError",
    "ConfigError",
    "DiscoveryError",
    "SetupError",
    "ApplyError",
    "FinalizeError",
    "MigrationCancelled",
    "DriverStateError",
]
