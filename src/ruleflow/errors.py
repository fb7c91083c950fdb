# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class WorkflowError(Exception):
    """Base class for every planning-phase error. Aborts the run before execution."""


@dataclass
class MissingConfigKey(WorkflowError, KeyError):
    key: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        msg = f"Missing mandatory config key '{self.key}'"
        if self.known:
            msg += f" (known keys: {', '.join(sorted(self.known))})"
        return msg


@dataclass
class ConfigFileError(WorkflowError):
    source: str
    message: str

    def __str__(self) -> str:
        return f"{self.source}: {self.message}"


@dataclass
class WorkflowLoadError(WorkflowError):
    path: str
    message: str

    def __str__(self) -> str:
        return f"Cannot load workflow {self.path}: {self.message}"


@dataclass
class DuplicateRuleName(WorkflowError):
    name: str

    def __str__(self) -> str:
        return f"Rule '{self.name}' is declared more than once"


@dataclass
class InconsistentWildcard(WorkflowError):
    name: str
    message: str
    rule: Optional[str] = None

    def __str__(self) -> str:
        where = f" in rule '{self.rule}'" if self.rule else ""
        return f"Inconsistent wildcard '{self.name}'{where}: {self.message}"


@dataclass
class NoRuleToMakeTarget(WorkflowError):
    target: str
    requested_by: Optional[str] = None

    def __str__(self) -> str:
        msg = f"No rule to produce '{self.target}' and the file does not exist"
        if self.requested_by:
            msg += f" (required by rule '{self.requested_by}')"
        return msg


@dataclass
class AmbiguousRule(WorkflowError):
    target: str
    rules: List[str]

    def __str__(self) -> str:
        return (
            f"Rules {', '.join(self.rules)} can all produce '{self.target}'. "
            "Mark one of them default=True or pass --allow-ambiguity."
        )


@dataclass
class CyclicDependency(WorkflowError):
    chain: List[str]

    def __str__(self) -> str:
        return "Cyclic dependency: " + " -> ".join(self.chain)


@dataclass
class TemplateError(WorkflowError):
    rule: str
    placeholder: str
    message: str = "unresolved placeholder"

    def __str__(self) -> str:
        return f"Rule '{self.rule}': {self.message} '{{{self.placeholder}}}'"


# ----------------------------------------------------------------------
# Execution-phase failures (reported per job, never abort planning)
# ----------------------------------------------------------------------

@dataclass
class JobFailure(Exception):
    job: str
    cmd: str
    exit_code: int
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] command failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class MissingOutputError(Exception):
    job: str
    missing: List[str]

    def __str__(self) -> str:
        return f"[{self.job}] finished but did not create: {', '.join(self.missing)}"
