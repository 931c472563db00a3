"""
Rule registry: id-indexed catalog with a derived category index.

Writes are copy-on-write under a lock; reads take a reference to the current
maps, so evaluation from many sessions never blocks on a writer and never
sees a half-applied mutation.
"""

from __future__ import annotations

import threading
from typing import Any, Iterable, Sequence

from . import catalog
from .predicates import PredicateContext, run_finalize
from .schema import Rule


def _index_by_category(rules_by_id: dict[int, Rule]) -> dict[str, list[Rule]]:
    by_category: dict[str, list[Rule]] = {}
    for rule_id in sorted(rules_by_id):
        rule = rules_by_id[rule_id]
        by_category.setdefault(rule.category, []).append(rule)
    return by_category


class RuleRegistry:
    """Catalog of governance rules, ordered by id."""

    def __init__(self, rules: Iterable[Rule] = ()):
        self._lock = threading.Lock()
        # (by_id, by_category), swapped as one reference
        self._maps: tuple[dict[int, Rule], dict[str, list[Rule]]] = ({}, {})
        initial = list(rules)
        if initial:
            self.replace_all(initial)

    # --- Mutation ---

    def _swap(self, by_id: dict[int, Rule]) -> None:
        self._maps = (by_id, _index_by_category(by_id))

    def register(self, rule: Rule) -> None:
        """Add or replace a rule (last write wins by id)."""
        with self._lock:
            by_id = dict(self._maps[0])
            by_id[rule.id] = rule
            self._swap(by_id)

    def unregister(self, rule_id: int) -> None:
        with self._lock:
            if rule_id not in self._maps[0]:
                return
            by_id = dict(self._maps[0])
            del by_id[rule_id]
            self._swap(by_id)

    def clear(self) -> None:
        with self._lock:
            self._swap({})

    def replace_all(self, rules: Iterable[Rule]) -> None:
        """Atomically replace the whole catalog."""
        by_id = {rule.id: rule for rule in rules}
        with self._lock:
            self._swap(by_id)

    # --- Queries ---

    def get(self, rule_id: int) -> Rule | None:
        return self._maps[0].get(rule_id)

    def by_category(self, category: str) -> list[Rule]:
        return list(self._maps[1].get(category, []))

    def categories(self) -> list[str]:
        return sorted(self._maps[1])

    def all(self) -> list[Rule]:
        by_id = self._maps[0]
        return [by_id[rule_id] for rule_id in sorted(by_id)]

    def count(self) -> int:
        return len(self._maps[0])

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._maps[0]

    # --- Evaluation ---

    def evaluate(
        self,
        text: str,
        category: str | None = None,
        *,
        context: PredicateContext | None = None,
    ) -> str | None:
        """Run finalize checks in id order; return the first veto message."""
        ctx = context or PredicateContext()
        rules: Sequence[Rule] = self.by_category(category) if category else self.all()
        for rule in rules:
            result = run_finalize(rule, text, ctx)
            if result:
                return result
        return None

    # --- Reporting ---

    def status_report(self) -> str:
        """Markdown listing of rules grouped by category."""
        by_category = self._maps[1]
        lines = ["## Governance Rules Status", ""]
        for category in sorted(by_category):
            lines.append(f"### Category: {category}")
            lines.append("")
            for rule in by_category[category]:
                lines.append(f"- **Rule {rule.id}**: {rule.name}")
                lines.append(f"  {rule.description}")
                lines.append("")
        return "\n".join(lines) + "\n"

    # --- Snapshot ---

    def to_dict(self) -> dict[str, Any]:
        return {"rules": [rule.summary() for rule in self.all()]}

    def restore(self, data: dict[str, Any]) -> None:
        """
        Replace the catalog from a persisted summary.

        Check logic is never read from the snapshot: predicate kinds are
        re-attached from the compiled-in catalog for rules whose flags say a
        check was present.

        Raises:
            ValueError: If the snapshot is malformed (registry left untouched)
        """
        raw_rules = data.get("rules")
        if not isinstance(raw_rules, list):
            raise ValueError("snapshot has no rules list")

        rules: list[Rule] = []
        for raw in raw_rules:
            if not isinstance(raw, dict):
                raise ValueError("rule entry must be an object")
            try:
                rule_id = raw["id"]
                name = raw["name"]
                description = raw["description"]
                category = raw["category"]
            except KeyError as e:
                raise ValueError(f"rule entry missing field {e}") from e
            if not all(isinstance(v, str) for v in (name, description, category)):
                raise ValueError(f"rule {rule_id!r} has non-string text fields")

            finalize, streaming = catalog.predicate_kinds(rule_id) if isinstance(rule_id, int) else (None, None)
            rules.append(
                Rule(
                    id=rule_id,
                    name=name,
                    description=description,
                    category=category,
                    finalize=finalize if raw.get("has_finalize", False) else None,
                    streaming=streaming if raw.get("has_streaming", False) else None,
                )
            )

        self.replace_all(rules)


def install_builtin_rules(registry: RuleRegistry) -> None:
    registry.replace_all(catalog.builtin_rules())


_DEFAULT: RuleRegistry | None = None
_DEFAULT_LOCK = threading.Lock()


def default_registry() -> RuleRegistry:
    """Process-wide registry holding the compiled-in rules, built on first use."""
    global _DEFAULT
    if _DEFAULT is None:
        with _DEFAULT_LOCK:
            if _DEFAULT is None:
                _DEFAULT = RuleRegistry(catalog.builtin_rules())
    return _DEFAULT
