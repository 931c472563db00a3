"""Rule catalog listing."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..rules.catalog import builtin_rules
from ..rules.registry import RuleRegistry


def run_rules(*, category: str | None = None, output_json: bool = False) -> int:
    """List the compiled-in rules, optionally for one category.

    Returns:
        Exit code (0 = success, 1 = unknown category)
    """
    registry = RuleRegistry(builtin_rules())
    rules = registry.by_category(category) if category else registry.all()

    if category and not rules:
        err = Console(stderr=True)
        err.print(f"Unknown category: {category}", style="bold red")
        err.print(f"Available: {', '.join(registry.categories())}", style="dim")
        return 1

    if output_json:
        print(json.dumps([rule.summary() for rule in rules], indent=2))
        return 0

    console = Console()
    table = Table(title="Governance Rules" + (f" ({category})" if category else ""))
    table.add_column("id", justify="right", style="cyan", no_wrap=True)
    table.add_column("name")
    table.add_column("category", style="magenta")
    table.add_column("checks", style="dim")
    for rule in rules:
        checks = []
        if rule.has_finalize:
            checks.append(f"finalize:{rule.finalize.value}")
        if rule.has_streaming:
            checks.append(f"streaming:{rule.streaming.value}")
        table.add_row(str(rule.id), rule.name, rule.category, ", ".join(checks))
    console.print(table)
    return 0
