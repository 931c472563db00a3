"""Feedback channel: rule findings surfaced to the caller between responses."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class FeedbackSeverity(str, Enum):
    DIAGNOSTIC = "diagnostic"  # developer-only
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Feedback:
    rule_id: int
    message: str
    severity: FeedbackSeverity
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def visible(self, debug: bool) -> bool:
        return debug or self.severity != FeedbackSeverity.DIAGNOSTIC


class FeedbackChannel:
    """Bounded queue of findings; diagnostic entries only show in debug mode."""

    def __init__(self, *, debug: bool = False, maxlen: int = 100):
        self.debug = debug
        self._entries: deque[Feedback] = deque(maxlen=maxlen)

    def add(self, rule_id: int, message: str, severity: FeedbackSeverity = FeedbackSeverity.DIAGNOSTIC) -> None:
        self._entries.append(Feedback(rule_id=rule_id, message=message, severity=severity))

    def pending(self) -> list[Feedback]:
        return [f for f in self._entries if f.visible(self.debug)]

    def has_feedback(self) -> bool:
        return any(f.visible(self.debug) for f in self._entries)

    def drain(self) -> str:
        """Render visible entries as markdown and remove them."""
        visible = self.pending()
        if not visible:
            return ""
        self._entries = deque((f for f in self._entries if not f.visible(self.debug)), maxlen=self._entries.maxlen)
        lines = ["## Governance Feedback", ""]
        for f in visible:
            lines.append(f"- **{f.severity.value.upper()}** (Rule {f.rule_id}): {f.message}")
        return "\n".join(lines) + "\n"
