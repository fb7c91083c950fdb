# wildcards.py
"""
Wildcard patterns: `results/{sample}_{read}.fq`, optionally constrained
as `{name,regex}`. A plain placeholder matches one or more characters,
non-greedy, and never spans a `/`.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import InconsistentWildcard

# {name} or {name,constraint}; constraint may itself contain {m,n}
_PLACEHOLDER = re.compile(r"\{\s*(\w+)\s*(?:,\s*((?:[^{}]+|\{\d+(?:,\d*)?\})*))?\s*\}")

DEFAULT_CONSTRAINT = r"[^/]+?"


def wildcard_names(pattern: str) -> List[str]:
    """Wildcard names in order of first appearance."""
    seen: List[str] = []
    for m in _PLACEHOLDER.finditer(pattern):
        if m.group(1) not in seen:
            seen.append(m.group(1))
    return seen


@lru_cache(maxsize=None)
def _compile(pattern: str) -> Tuple[re.Pattern, Tuple[Tuple[str, str], ...]]:
    """
    Returns (regex, groups) where groups maps each regex group name to the
    wildcard it binds. Repeated wildcards get their own group and are
    compared after matching.
    """
    parts: List[str] = []
    groups: List[Tuple[str, str]] = []
    constraints: Dict[str, str] = {}
    pos = 0
    for m in _PLACEHOLDER.finditer(pattern):
        parts.append(re.escape(pattern[pos:m.start()]))
        name, constraint = m.group(1), m.group(2)
        if constraint:
            constraints.setdefault(name, constraint)
        group = f"_w{len(groups)}"
        groups.append((group, name))
        parts.append(f"(?P<{group}>{constraints.get(name, DEFAULT_CONSTRAINT)})")
        pos = m.end()
    parts.append(re.escape(pattern[pos:]))
    return re.compile("".join(parts) + r"\Z"), tuple(groups)


def match(pattern: str, path: str) -> Optional[Dict[str, str]]:
    """
    Match a concrete path against a pattern.

    Returns the wildcard binding, or None when the path does not fit the
    pattern. Raises InconsistentWildcard when a wildcard repeated inside the
    pattern binds to different values.
    """
    regex, groups = _compile(pattern)
    m = regex.match(path)
    if m is None:
        return None

    binding: Dict[str, str] = {}
    for group, name in groups:
        value = m.group(group)
        if name in binding and binding[name] != value:
            raise InconsistentWildcard(
                name,
                f"bound to both {binding[name]!r} and {value!r} while matching {path!r} against {pattern!r}",
            )
        binding[name] = value
    return binding


def fill(pattern: str, binding: Mapping[str, str], rule: str | None = None) -> str:
    """Substitute a binding into a pattern. Every wildcard must be bound."""
    def _sub(m: re.Match) -> str:
        name = m.group(1)
        if name not in binding:
            raise InconsistentWildcard(
                name,
                f"used in {pattern!r} but not bound by the matched output",
                rule=rule,
            )
        return str(binding[name])

    return _PLACEHOLDER.sub(_sub, pattern)


def check_same_wildcards(patterns: Iterable[str], rule: str) -> None:
    """All output patterns of one rule must use the same wildcard names."""
    patterns = list(patterns)
    if len(patterns) < 2:
        return
    first = set(wildcard_names(patterns[0]))
    for p in patterns[1:]:
        diff = first.symmetric_difference(wildcard_names(p))
        if diff:
            raise InconsistentWildcard(
                sorted(diff)[0],
                f"outputs {patterns[0]!r} and {p!r} do not use the same wildcards",
                rule=rule,
            )


class WildcardMatcher:
    """Thin object facade so callers can swap matching strategy."""

    def match(self, pattern: str, path: str) -> Optional[Dict[str, str]]:
        return match(pattern, path)

    def fill(self, pattern: str, binding: Mapping[str, str], rule: str | None = None) -> str:
        return fill(pattern, binding, rule=rule)
