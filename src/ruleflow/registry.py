# registry.py
from __future__ import annotations

from typing import Dict, Iterator, List, Optional

from .errors import DuplicateRuleName
from .model import RuleTemplate
from .wildcards import check_same_wildcards


class RuleRegistry:
    """Declared rules, kept in declaration order."""

    def __init__(self) -> None:
        self._rules: Dict[str, RuleTemplate] = {}

    def register(self, rule: RuleTemplate) -> RuleTemplate:
        if rule.name in self._rules:
            raise DuplicateRuleName(rule.name)
        check_same_wildcards(rule.output_patterns, rule.name)
        self._rules[rule.name] = rule
        return rule

    def all(self) -> List[RuleTemplate]:
        return list(self._rules.values())

    def get(self, name: str) -> Optional[RuleTemplate]:
        return self._rules.get(name)

    @property
    def first(self) -> Optional[RuleTemplate]:
        """The default target rule (first declared)."""
        return next(iter(self._rules.values()), None)

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __iter__(self) -> Iterator[RuleTemplate]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)
