# captra/globs.py
"""
Glob patterns for capability grants.

Dialect:
  - Patterns and paths are split on "/" and matched component by component,
    so wildcards never cross a separator.
  - `*`   any run of characters within one component (including empty)
  - `?`   exactly one character within one component
  - `[...]` / `[!...]` character class / negated class (fnmatch rules; a `]`
    directly after the opening bracket is a literal)
  - `**`  as a whole component: zero or more components
  - No escape character; use `[*]` for a literal star.
  - The "." and ".." components match only themselves, written literally:
    no wildcard matches them and `**` never steps over a "..".

Compilation fails (GlobError) for an empty pattern, an unclosed character
class, or `**` mixed with other characters in one component.
"""
from __future__ import annotations

from fnmatch import fnmatchcase
from typing import List, Sequence

RECURSIVE = "**"
DOT_COMPONENTS = (".", "..")


class GlobError(ValueError):
    def __init__(self, pattern: str, detail: str) -> None:
        super().__init__(f"invalid glob {pattern!r}: {detail}")
        self.pattern = pattern
        self.detail = detail


def _check_component(pattern: str, comp: str) -> None:
    if RECURSIVE in comp and comp != RECURSIVE:
        raise GlobError(pattern, "recursive wildcard '**' must form a whole path component")

    i = 0
    n = len(comp)
    while i < n:
        if comp[i] != "[":
            i += 1
            continue
        j = i + 1
        if j < n and comp[j] == "!":
            j += 1
        if j < n and comp[j] == "]":
            j += 1
        while j < n and comp[j] != "]":
            j += 1
        if j >= n:
            raise GlobError(pattern, f"unclosed character class at offset {i}")
        i = j + 1


class GlobPattern:
    """A compiled pattern; build with compile_glob()."""

    __slots__ = ("pattern", "_components")

    def __init__(self, pattern: str, components: Sequence[str]) -> None:
        self.pattern = pattern
        self._components = tuple(components)

    def __repr__(self) -> str:
        return f"GlobPattern({self.pattern!r})"

    def matches(self, path: str) -> bool:
        return _match(self._components, tuple(path.split("/")))


def _match(pcomps: Sequence[str], scomps: Sequence[str]) -> bool:
    if not pcomps:
        return not scomps
    head = pcomps[0]
    if head == RECURSIVE:
        rest = pcomps[1:]
        for k in range(len(scomps) + 1):
            if _match(rest, scomps[k:]):
                return True
            if k < len(scomps) and scomps[k] == "..":
                return False
        return False
    if not scomps:
        return False
    comp = scomps[0]
    if comp in DOT_COMPONENTS:
        matched = comp == head
    else:
        matched = fnmatchcase(comp, head)
    return matched and _match(pcomps[1:], scomps[1:])


def compile_glob(pattern: str) -> GlobPattern:
    if not isinstance(pattern, str):
        raise GlobError(str(pattern), "pattern must be a string")
    if not pattern:
        raise GlobError(pattern, "empty pattern")

    components: List[str] = pattern.split("/")
    for comp in components:
        _check_component(pattern, comp)
    return GlobPattern(pattern, components)


def glob_matches(pattern: str, path: str) -> bool:
    return compile_glob(pattern).matches(path)


__all__ = [
    "GlobError",
    "GlobPattern",
    "compile_glob",
    "glob_matches",
]
