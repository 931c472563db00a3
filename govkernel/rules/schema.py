from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class PredicateKind(str, Enum):
    """Built-in predicate bodies a rule can select.

    Rules carry only the kind; the engine dispatches kind -> behaviour and
    passes the session state a predicate needs as an argument.
    """

    ADVERSARIAL = "adversarial"
    REPETITION = "repetition"


@dataclass(frozen=True)
class Rule:
    id: int
    name: str
    description: str
    category: str
    finalize: PredicateKind | None = None
    streaming: PredicateKind | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, int) or isinstance(self.id, bool) or self.id <= 0:
            raise ValueError(f"rule id must be a positive integer, got {self.id!r}")

    @property
    def has_finalize(self) -> bool:
        return self.finalize is not None

    @property
    def has_streaming(self) -> bool:
        return self.streaming is not None

    def summary(self) -> dict[str, Any]:
        """Catalog entry persisted alongside engine state (no check logic)."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "has_finalize": self.has_finalize,
            "has_streaming": self.has_streaming,
        }

    def __str__(self) -> str:
        return f"Rule {self.id}: {self.name} ({self.category})\n  {self.description}"
