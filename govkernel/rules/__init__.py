"""Governance rules: data, compiled-in catalog, predicate bodies, registry."""

from .catalog import builtin_rules
from .registry import RuleRegistry, default_registry, install_builtin_rules
from .schema import PredicateKind, Rule

__all__ = [
    "PredicateKind",
    "Rule",
    "RuleRegistry",
    "builtin_rules",
    "default_registry",
    "install_builtin_rules",
]
