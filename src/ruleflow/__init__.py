from .config import ConfigMapping, ConfigResolver
from .dag import DAGBuilder, DependencyGraph, plan
from .dsl import Workflow, config_value, directory, expand, from_wildcards, load_workflow, temp
from .expand import JobExpander
from .model import Job, RuleTemplate
from .registry import RuleRegistry
from .runner import RunResult, execute
from .wildcards import WildcardMatcher

__all__ = [
    "ConfigMapping", "ConfigResolver", "DAGBuilder", "DependencyGraph", "plan",
    "Workflow", "config_value", "directory", "expand", "from_wildcards", "load_workflow", "temp",
    "JobExpander", "Job", "RuleTemplate", "RuleRegistry", "RunResult", "execute", "WildcardMatcher",
]
