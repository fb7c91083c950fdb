# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union


# ---------------------------------------------------------------------
# Path flags
# ---------------------------------------------------------------------

TEMP = "temp"
DIRECTORY = "directory"


class FlaggedPath(str):
    """A path pattern carrying flags such as temp or directory."""

    flags: FrozenSet[str]

    def __new__(cls, value: str, flags: Iterable[str] = ()):
        obj = super().__new__(cls, value)
        obj.flags = frozenset(getattr(value, "flags", frozenset())) | frozenset(flags)
        return obj


def flags_of(path: str) -> FrozenSet[str]:
    return getattr(path, "flags", frozenset())


# ---------------------------------------------------------------------
# Parameter expressions
# ---------------------------------------------------------------------

_NO_DEFAULT = object()


@dataclass(frozen=True)
class ConfigParam:
    """Parameter read from config; mandatory unless a default is given."""
    key: str
    default: Any = _NO_DEFAULT

    @property
    def mandatory(self) -> bool:
        return self.default is _NO_DEFAULT


@dataclass(frozen=True)
class WildcardParam:
    """Parameter computed from the job's wildcard binding (pure function)."""
    fn: Callable[[Mapping[str, str]], Any]


# Anything else in a params mapping is a literal.
ParamSpec = Union[ConfigParam, WildcardParam, Any]

InputSpec = Union[str, Callable[[Mapping[str, str]], Union[str, Sequence[str]]]]


# ---------------------------------------------------------------------
# Named file lists (what shell templates see as {input} / {output})
# ---------------------------------------------------------------------

class FileList(tuple):
    """Tuple of paths with optional names; str() joins with spaces."""

    def __new__(cls, items: Iterable[str] = (), names: Optional[Mapping[str, Any]] = None):
        obj = super().__new__(cls, items)
        obj._names = dict(names or {})
        return obj

    def __getattr__(self, name: str):
        try:
            return self.__dict__.get("_names", {})[name]
        except KeyError:
            raise AttributeError(name) from None

    def __str__(self) -> str:
        return " ".join(str(p) for p in self)

    @property
    def names(self) -> Dict[str, Any]:
        return dict(self._names)


class Namespace:
    """Attribute-style read-only view of a mapping, used for {params.x} / {wildcards.x}."""

    def __init__(self, values: Mapping[str, Any]):
        self._values = dict(values)

    def __getattr__(self, name: str):
        try:
            return self.__dict__.get("_values", {})[name]
        except KeyError:
            raise AttributeError(name) from None

    def __getitem__(self, key: str):
        return self._values[key]

    def __str__(self) -> str:
        return " ".join(str(v) for v in self._values.values())


# ---------------------------------------------------------------------
# Rules and jobs
# ---------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class RuleTemplate:
    """
    Declared rule: how to produce output file(s) from input file(s) and params.

    `inputs` / `outputs` are (name or None, pattern) pairs so both positional
    and named access work in shell templates. Immutable once registered.
    """
    name: str
    outputs: Tuple[Tuple[Optional[str], str], ...] = ()
    inputs: Tuple[Tuple[Optional[str], InputSpec], ...] = ()
    params: Mapping[str, ParamSpec] = field(default_factory=dict)
    shell: Optional[str] = None
    threads: int = 1
    default: bool = False
    message: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def output_patterns(self) -> List[str]:
        return [p for _, p in self.outputs]

    @property
    def has_wildcards(self) -> bool:
        return any("{" in p for p in self.output_patterns)


JobKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass(frozen=True, eq=False)
class Job:
    """One concrete, fully bound instantiation of a rule."""
    rule: RuleTemplate
    wildcards: Mapping[str, str]
    output: FileList
    input: FileList
    params: Mapping[str, Any]
    shell: Optional[str]
    threads: int = 1

    @property
    def key(self) -> JobKey:
        return (self.rule.name, tuple(sorted(self.wildcards.items())))

    @property
    def name(self) -> str:
        if not self.wildcards:
            return self.rule.name
        bound = ", ".join(f"{k}={v}" for k, v in sorted(self.wildcards.items()))
        return f"{self.rule.name}[{bound}]"

    @property
    def temp_outputs(self) -> List[str]:
        return [p for p in self.output if TEMP in flags_of(p)]

    @property
    def directory_outputs(self) -> List[str]:
        return [p for p in self.output if DIRECTORY in flags_of(p)]

    def __hash__(self) -> int:
        return hash(self.key)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Job) and other.key == self.key
