# dag.py
from __future__ import annotations

import os
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .config import ConfigMapping
from .errors import AmbiguousRule, CyclicDependency, NoRuleToMakeTarget, WorkflowError
from .expand import JobExpander
from .model import Job, JobKey, RuleTemplate
from .registry import RuleRegistry
from .ui.console import get_console
from .wildcards import WildcardMatcher


@dataclass
class DependencyGraph:
    """
    Jobs plus pre-existing leaf files.

    deps[k] holds the keys of the jobs producing inputs of job k.
    Built once by DAGBuilder and read-only afterwards.
    """
    jobs: Dict[JobKey, Job] = field(default_factory=dict)
    deps: Dict[JobKey, Set[JobKey]] = field(default_factory=dict)
    producers: Dict[str, JobKey] = field(default_factory=dict)
    sources: Set[str] = field(default_factory=set)
    targets: List[str] = field(default_factory=list)
    target_jobs: List[JobKey] = field(default_factory=list)

    def dependents(self) -> Dict[JobKey, Set[JobKey]]:
        """Reverse edges: producer -> jobs consuming its outputs."""
        adj: Dict[JobKey, Set[JobKey]] = {k: set() for k in self.jobs}
        for k, ds in self.deps.items():
            for d in ds:
                adj[d].add(k)
        return adj

    def levels(self) -> List[List[JobKey]]:
        indeg = {k: len(self.deps.get(k, ())) for k in self.jobs}
        return topo_levels(self.dependents(), indeg)

    def jobs_in_order(self) -> List[Job]:
        return [self.jobs[k] for level in self.levels() for k in level]

    def to_dot(self) -> str:
        """Graphviz rendering of the job graph."""
        ids = {k: i for i, k in enumerate(sorted(self.jobs))}
        lines = ["digraph ruleflow {", "    node [shape=box, style=rounded];"]
        for k, i in ids.items():
            label = self.jobs[k].name.replace('"', '\\"')
            lines.append(f'    {i} [label="{label}"];')
        for k in sorted(self.deps):
            for d in sorted(self.deps[k]):
                lines.append(f"    {ids[d]} -> {ids[k]};")
        lines.append("}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.jobs)


def topo_levels(adj: Dict[JobKey, Set[JobKey]], indeg: Dict[JobKey, int]) -> List[List[JobKey]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[JobKey]] = []
    processed = 0

    while q:
        level: List[JobKey] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        stuck = sorted(n for n, d in indeg.items() if d > 0)
        raise CyclicDependency([k[0] for k in stuck])

    return levels


class DAGBuilder:
    """
    Target-driven, depth-first resolution of files to the jobs producing them.

    Single-threaded; must finish before any execution starts.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        config: ConfigMapping,
        *,
        exists: Callable[[str], bool] = os.path.exists,
        allow_ambiguity: bool = False,
        matcher: Optional[WildcardMatcher] = None,
        expander: Optional[JobExpander] = None,
    ):
        self.registry = registry
        self.config = config
        self.exists = exists
        self.allow_ambiguity = allow_ambiguity
        self.matcher = matcher or WildcardMatcher()
        self.expander = expander or JobExpander(self.matcher)

    def plan(self, targets: Iterable[str] = ()) -> DependencyGraph:
        targets = list(dict.fromkeys(targets))
        if not targets:
            first = self.registry.first
            if first is None:
                raise WorkflowError("Workflow declares no rules")
            targets = [first.name]

        self._graph = DependencyGraph(targets=list(targets))
        self._stack: List[str] = []
        self._resolving: Set[JobKey] = set()
        self._bindings: List[Tuple[str, Dict[str, str]]] = []

        for target in targets:
            rule = self.registry.get(target)
            if rule is not None and not rule.has_wildcards:
                key = self._resolve_job(rule, {}, label=target)
            else:
                key = self._resolve_path(target, requested_by=None)
            if key is not None and key not in self._graph.target_jobs:
                self._graph.target_jobs.append(key)

        return self._graph

    # -----------------------------------------------------------------

    def _resolve_path(self, path: str, requested_by: Optional[str]) -> Optional[JobKey]:
        g = self._graph
        if path in self._stack:
            raise CyclicDependency(self._stack[self._stack.index(path):] + [path])
        if path in g.producers:
            key = g.producers[path]
            if key in self._resolving:
                raise CyclicDependency(self._stack + [path])
            return key
        if path in g.sources:
            return None

        candidates = self._candidates(path)
        if not candidates:
            if self.exists(path):
                g.sources.add(path)
                return None
            raise NoRuleToMakeTarget(path, requested_by)

        rule, binding = self._choose(path, candidates)
        get_console().print_debug(f"{path}: rule {rule.name} {binding}")
        if not self.exists(path):
            return self._resolve_job(rule, binding, label=path)

        # existing file: fall back to a leaf when its producer cannot be satisfied
        n_jobs, n_producers = len(g.jobs), len(g.producers)
        try:
            return self._resolve_job(rule, binding, label=path)
        except NoRuleToMakeTarget:
            # entries are only ever appended, so dropping the tail undoes the subtree
            for key in list(g.jobs)[n_jobs:]:
                del g.jobs[key]
                del g.deps[key]
            for out in list(g.producers)[n_producers:]:
                del g.producers[out]
            g.sources.add(path)
            return None

    def _resolve_job(self, rule: RuleTemplate, binding: Dict[str, str], label: str) -> JobKey:
        g = self._graph
        job = self.expander.expand(rule, binding, self.config)
        key = job.key
        if key in self._resolving:
            raise CyclicDependency(self._stack + [label])
        if key in g.jobs:
            return key

        g.jobs[key] = job
        g.deps[key] = set()
        for out in job.output:
            g.producers.setdefault(str(out), key)

        self._stack.append(label)
        self._resolving.add(key)
        self._bindings.append((rule.name, dict(binding)))
        try:
            for inp in job.input:
                dep = self._resolve_path(str(inp), requested_by=rule.name)
                if dep is not None:
                    g.deps[key].add(dep)
        finally:
            self._bindings.pop()
            self._resolving.discard(key)
            self._stack.pop()
        return key

    def _candidates(self, path: str) -> List[Tuple[RuleTemplate, Dict[str, str]]]:
        found: List[Tuple[RuleTemplate, Dict[str, str]]] = []
        for rule in self.registry.all():
            for pattern in rule.output_patterns:
                binding = self.matcher.match(pattern, path)
                if binding is not None and not self._is_periodic(rule, binding):
                    found.append((rule, binding))
                    break
        return found

    def _is_periodic(self, rule: RuleTemplate, binding: Dict[str, str]) -> bool:
        """
        True when the same rule is already being resolved with a wildcard value
        that the new value merely extends, e.g. {f}=a.fq then {f}=a.fq.gz.
        Such candidates would recurse forever and are skipped.
        """
        for name, active in self._bindings:
            if name != rule.name:
                continue
            for wildcard, value in binding.items():
                old = active.get(wildcard)
                if old is not None and value != old and (value.startswith(old) or value.endswith(old)):
                    return True
        return False

    def _choose(self, path: str, candidates):
        if len(candidates) == 1:
            return candidates[0]
        defaults = [c for c in candidates if c[0].default]
        if len(defaults) == 1:
            return defaults[0]
        if self.allow_ambiguity:
            return candidates[0]
        raise AmbiguousRule(path, [r.name for r, _ in candidates])


def plan(
    targets: Iterable[str],
    registry: RuleRegistry,
    config: ConfigMapping,
    **kwargs,
) -> DependencyGraph:
    return DAGBuilder(registry, config, **kwargs).plan(targets)
