# dsl.py
from __future__ import annotations

import itertools
import runpy
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .config import ConfigMapping, ConfigResolver
from .errors import WorkflowLoadError
from .model import DIRECTORY, TEMP, ConfigParam, FlaggedPath, RuleTemplate, WildcardParam, _NO_DEFAULT
from .registry import RuleRegistry


# ---------------------------------------------------------------------
# Path and parameter helpers
# ---------------------------------------------------------------------

def temp(path: str) -> FlaggedPath:
    """Output deleted once every job consuming it has finished."""
    return FlaggedPath(path, {TEMP})


def directory(path: str) -> FlaggedPath:
    """Output is a directory rather than a file."""
    return FlaggedPath(path, {DIRECTORY})


def config_value(key: str, default: Any = _NO_DEFAULT) -> ConfigParam:
    """Param read from config at expansion time; mandatory unless default is given."""
    return ConfigParam(key, default)


def from_wildcards(fn: Callable[[Mapping[str, str]], Any]) -> WildcardParam:
    """Param computed from the job's wildcards, e.g. lambda w: f"@RG\\tID:{w.sample}"."""
    return WildcardParam(fn)


# expand() takes a zip= keyword
_zip = zip


def expand(pattern: Union[str, Sequence[str]], *, zip: bool = False, **wildcards: Any) -> List[str]:
    """
    Fill pattern(s) with every combination of the given values.

        expand("mapped/{sample}.bam", sample=["A", "B"])
        -> ["mapped/A.bam", "mapped/B.bam"]

    With zip=True values are paired positionally instead of combined.
    """
    patterns = [pattern] if isinstance(pattern, str) else list(pattern)
    names = list(wildcards)
    values = [[v] if isinstance(v, (str, int, float)) else list(v) for v in wildcards.values()]

    if zip:
        if len({len(v) for v in values}) > 1:
            raise ValueError("expand(zip=True) needs value lists of equal length")
        combos = list(_zip(*values))
    else:
        combos = list(itertools.product(*values))

    out: List[str] = []
    for p in patterns:
        for combo in combos:
            out.append(p.format(**dict(_zip(names, combo))))
    return out


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------

PathSpec = Union[None, str, Callable, Sequence[Any], Mapping[str, Any]]


def _normalize(spec: PathSpec) -> Tuple[Tuple[Optional[str], Any], ...]:
    if spec is None:
        return ()
    if isinstance(spec, str) or callable(spec):
        return ((None, spec),)
    if isinstance(spec, Mapping):
        items: List[Tuple[Optional[str], Any]] = []
        for name, value in spec.items():
            if isinstance(value, str) or callable(value):
                items.append((name, value))
            else:
                items.append((name, tuple(value)))
        return tuple(items)
    return tuple((None, item) for item in spec)


class Workflow:
    """
    Rule declarations plus the config they are expanded against.

    Workflow files receive an instance as the global `workflow`:

        config = workflow.configfile("config.yaml")

        workflow.rule(
            "all",
            input=expand("counts/{sample}.txt", sample=config["samples"]),
        )
        workflow.rule(
            "count",
            input="mapped/{sample}.bam",
            output="counts/{sample}.txt",
            shell="samtools view -c {input} > {output}",
        )
    """

    def __init__(
        self,
        *,
        configfile: str | Path | None = None,
        overrides: Sequence[str] = (),
        basedir: str | Path | None = None,
    ):
        self.registry = RuleRegistry()
        self.basedir = Path(basedir) if basedir is not None else Path(".")
        self._cli_configfile = configfile
        self._overrides = list(overrides)
        self._default_configfile: Optional[Path] = None
        self._resolver = ConfigResolver()
        self._config = self._resolve()

    def _resolve(self) -> ConfigMapping:
        return self._resolver.resolve(self._default_configfile, self._cli_configfile, self._overrides)

    @property
    def config(self) -> ConfigMapping:
        return self._config

    def configfile(self, path: str | Path) -> ConfigMapping:
        """Declare the workflow's default config file; returns the resolved config."""
        p = Path(path)
        if not p.is_absolute():
            p = self.basedir / p
        self._default_configfile = p
        self._config = self._resolve()
        return self._config

    def rule(
        self,
        name: str,
        *,
        input: PathSpec = None,
        output: PathSpec = None,
        params: Optional[Dict[str, Any]] = None,
        shell: Optional[str] = None,
        threads: int = 1,
        default: bool = False,
        message: Optional[str] = None,
    ) -> RuleTemplate:
        if threads < 1:
            raise ValueError(f"rule {name!r}: threads must be >= 1")
        outputs = _normalize(output)
        for _, pattern in outputs:
            if not isinstance(pattern, str):
                raise TypeError(f"rule {name!r}: outputs must be path patterns, not {type(pattern).__name__}")
        return self.registry.register(
            RuleTemplate(
                name=name,
                outputs=outputs,
                inputs=_normalize(input),
                params=params or {},
                shell=shell,
                threads=threads,
                default=default,
                message=message,
            )
        )

    @property
    def rules(self) -> List[RuleTemplate]:
        return self.registry.all()


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(
    path: str | Path,
    *,
    configfile: str | Path | None = None,
    overrides: Sequence[str] = (),
) -> Workflow:
    """
    Load a workflow from a python file path.

    The file is executed with a `workflow` global (a Workflow instance) and
    registers rules on it, either at module level or from a
    `workflow_rules(workflow)` function.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(str(wf_path), "file not found")
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(str(wf_path), f"workflow must be a .py file, got {wf_path.name}")

    wf = Workflow(configfile=configfile, overrides=overrides, basedir=wf_path.parent)
    module_name = f"ruleflow_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), init_globals={"workflow": wf}, run_name=module_name)

    hook = globals_dict.get("workflow_rules")
    if callable(hook):
        hook(wf)

    return wf
