# expand.py
"""Turn a rule plus a wildcard binding into a concrete Job."""
from __future__ import annotations

import string
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .config import ConfigMapping
from .errors import MissingConfigKey, TemplateError
from .model import ConfigParam, FileList, FlaggedPath, Job, Namespace, RuleTemplate, WildcardParam, flags_of
from .wildcards import WildcardMatcher


class _TemplateFormatter(string.Formatter):
    def get_value(self, key, args, kwargs):
        if isinstance(key, int):
            raise KeyError(key)
        return kwargs[key]


_FORMATTER = _TemplateFormatter()


def _fields(template: str):
    """Field names of a template, including those nested in format specs."""
    for _, field_name, format_spec, _ in _FORMATTER.parse(template):
        if field_name is None:
            continue
        yield field_name
        if format_spec and "{" in format_spec:
            yield from _fields(format_spec)


def render_template(template: str, namespace: Mapping[str, Any], rule: str) -> str:
    """
    str.format-style substitution with {input}, {output[0]}, {params.x} ...
    Any unresolvable field raises TemplateError naming it.
    """
    try:
        fields = list(_fields(template))
    except ValueError as e:
        raise TemplateError(rule, template, message=f"malformed template ({e})") from e

    for field_name in fields:
        if not field_name:
            raise TemplateError(rule, field_name, message="positional placeholder not allowed")
        try:
            _FORMATTER.get_field(field_name, (), namespace)
        except MissingConfigKey:
            raise
        except (KeyError, AttributeError, IndexError, TypeError) as e:
            raise TemplateError(rule, field_name) from e

    try:
        return _FORMATTER.vformat(template, (), namespace)
    except MissingConfigKey:
        raise
    except (KeyError, AttributeError, IndexError, TypeError, ValueError) as e:
        raise TemplateError(rule, template, message=f"cannot render template ({e})") from e


class JobExpander:
    """Pure transformation: (rule, binding, config) -> Job. Never touches the filesystem."""

    def __init__(self, matcher: Optional[WildcardMatcher] = None):
        self.matcher = matcher or WildcardMatcher()

    def expand(self, rule: RuleTemplate, binding: Mapping[str, str], config: ConfigMapping) -> Job:
        wildcards = MappingProxyType(dict(binding))

        outputs = self._files(rule, rule.outputs, wildcards, keep_flags=True)
        inputs = self._files(rule, rule.inputs, wildcards, keep_flags=False)
        params = MappingProxyType(
            {name: self._param(rule, name, spec, wildcards, config) for name, spec in rule.params.items()}
        )

        shell = None
        if rule.shell is not None:
            namespace = {
                "input": inputs,
                "output": outputs,
                "params": Namespace(params),
                "wildcards": Namespace(wildcards),
                "threads": rule.threads,
                "rule": rule.name,
                "config": config,
            }
            shell = render_template(rule.shell, namespace, rule.name)

        return Job(
            rule=rule,
            wildcards=wildcards,
            output=outputs,
            input=inputs,
            params=params,
            shell=shell,
            threads=rule.threads,
        )

    # -----------------------------------------------------------------

    def _files(self, rule: RuleTemplate, specs, wildcards: Mapping[str, str], *, keep_flags: bool) -> FileList:
        paths: List[str] = []
        names: Dict[str, Any] = {}
        for name, spec in specs:
            resolved = self._resolve_spec(rule, spec, wildcards, keep_flags)
            paths.extend(resolved)
            if name is not None:
                names[name] = resolved[0] if len(resolved) == 1 else FileList(resolved)
        return FileList(paths, names)

    def _resolve_spec(self, rule: RuleTemplate, spec, wildcards: Mapping[str, str], keep_flags: bool) -> List[str]:
        if callable(spec):
            value = spec(Namespace(wildcards))
            items = [value] if isinstance(value, str) else list(value)
            return [str(v) for v in items]

        items = [spec] if isinstance(spec, str) else list(spec)
        out: List[str] = []
        for pattern in items:
            path = self.matcher.fill(pattern, wildcards, rule=rule.name)
            out.append(FlaggedPath(path, flags_of(pattern)) if keep_flags and flags_of(pattern) else path)
        return out

    def _param(self, rule: RuleTemplate, name: str, spec: Any, wildcards: Mapping[str, str], config: ConfigMapping) -> Any:
        if isinstance(spec, ConfigParam):
            if spec.mandatory:
                return config.get(spec.key)
            return config.get(spec.key, spec.default)
        if isinstance(spec, WildcardParam):
            return spec.fn(Namespace(wildcards))
        return spec

