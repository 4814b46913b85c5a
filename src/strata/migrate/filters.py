"""
Glob-based skip rules for migration discovery.

Skip patterns are matched against paths relative to the migration root,
using ``/`` as the separator:

- ``*`` matches within one path segment, ``?`` one non-separator character
- ``**`` as a whole segment matches zero or more segments
  (``schema/**`` matches ``schema`` itself and everything below it)
- ``[abc]``, ``[a-z]``, ``[!abc]`` / ``[^abc]`` character classes
- ``{sql,psql}`` alternation
- ``\\`` escapes the next character
- a leading ``/`` is ignored (``/test/*`` == ``test/*``)

Two kinds of exclusion fall out of a pattern set:

- **prune** (subtree skip): the pattern equals a directory path, or is
  ``<dir>/**``. The walker never enters the directory.
- **exclude** (soft skip): the pattern glob-matches the path. The entry is
  hidden but, for directories, traversal still continues below it.

Tags:
    glob, doublestar, filter, discovery, strata
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache

from strata.core.errors import ConfigError

_GLOBSTAR_SUFFIX = "/**"


def normalize_pattern(pattern: str) -> str:
    """Strip the optional leading ``/`` from a skip pattern or order entry."""
    return pattern.lstrip("/")


def _is_globstar_segment(pattern: str, i: int) -> bool:
    """True if ``pattern[i:i+2]`` is ``**`` occupying a whole segment."""
    if not pattern.startswith("**", i):
        return False
    at_start = i == 0 or pattern[i - 1] == "/"
    at_end = i + 2 == len(pattern) or pattern[i + 2] == "/"
    return at_start and at_end


def _translate_class(pattern: str, i: int) -> tuple[str, int]:
    """Translate the character class starting at ``pattern[i] == '['``."""
    j = i + 1
    negate = False
    if j < len(pattern) and pattern[j] in "!^":
        negate = True
        j += 1
    # A ']' right after the opening bracket is a literal member.
    if j < len(pattern) and pattern[j] == "]":
        j += 1
    end = pattern.find("]", j)
    if end == -1:
        raise ConfigError(f"Invalid skip pattern {pattern!r}: unterminated character class")

    body = pattern[i + 1 + (1 if negate else 0):end]
    body = body.replace("\\", "\\\\")
    if negate:
        return f"[^/{body}]", end + 1
    return f"(?!/)[{body}]", end + 1


def translate(pattern: str) -> str:
    """Translate a glob pattern into an (unanchored) regular expression."""
    out: list[str] = []
    depth = 0
    i, n = 0, len(pattern)

    while i < n:
        c = pattern[i]

        if c == "*":
            if _is_globstar_segment(pattern, i):
                if i + 2 == n:
                    out.append(".*")
                    i += 2
                else:
                    out.append("(?:.*/)?")
                    i += 3
                continue
            while i < n and pattern[i] == "*":
                i += 1
            out.append("[^/]*")
            continue

        if c == "/" and _is_globstar_segment(pattern, i + 1):
            if i + 3 == n:
                # "dir/**" also matches "dir" itself
                out.append("(?:/.*)?")
                i += 3
            else:
                out.append("/(?:.*/)?")
                i += 4
            continue

        if c == "?":
            out.append("[^/]")
        elif c == "[":
            fragment, i = _translate_class(pattern, i)
            out.append(fragment)
            continue
        elif c == "{":
            depth += 1
            out.append("(?:")
        elif c == "," and depth > 0:
            out.append("|")
        elif c == "}" and depth > 0:
            depth -= 1
            out.append(")")
        elif c == "\\":
            if i + 1 == n:
                raise ConfigError(f"Invalid skip pattern {pattern!r}: trailing escape")
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1

    if depth:
        raise ConfigError(f"Invalid skip pattern {pattern!r}: unterminated '{{'")

    return "".join(out)


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a (normalized) glob pattern into a full-match regex.

    Raises:
        ConfigError: If the pattern is malformed.
    """
    try:
        return re.compile(f"(?s:{translate(pattern)})")
    except re.error as exc:
        raise ConfigError(f"Invalid skip pattern {pattern!r}: {exc}", cause=exc) from exc


class PathFilter:
    """Decides which relative paths are pruned or excluded by skip patterns.

    Patterns are normalized and compiled once, at construction, so a bad
    pattern fails before any traversal starts.
    """

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._patterns = tuple(normalize_pattern(p) for p in patterns)
        self._compiled = tuple(compile_glob(p) for p in self._patterns)

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def prunes(self, path: str) -> bool:
        """True if *path* (a directory) and its whole subtree are skipped."""
        for pattern in self._patterns:
            if pattern == path:
                return True
            if pattern.endswith(_GLOBSTAR_SUFFIX):
                base = pattern[: -len(_GLOBSTAR_SUFFIX)]
                if path == base or path.startswith(base + "/"):
                    return True
        return False

    def excludes(self, path: str) -> bool:
        """True if any pattern matches *path*."""
        return any(regex.fullmatch(path) for regex in self._compiled)

    def __bool__(self) -> bool:
        return bool(self._patterns)

    def __repr__(self) -> str:
        return f"PathFilter({list(self._patterns)!r})"


__all__ = ["PathFilter", "compile_glob", "normalize_pattern", "translate"]
