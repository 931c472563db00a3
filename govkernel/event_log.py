"""
Append-only governance event log.

Storage format: JSON Lines, one event per line. Writes are best effort: a
failed write is reported on the module logger and otherwise ignored, so the
log can never take the engine down.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Governance event types."""

    INITIALIZATION = "INITIALIZATION"
    INTEGRITY_FAILURE = "INTEGRITY_FAILURE"
    INTEGRITY_REPAIR = "INTEGRITY_REPAIR"
    INTEGRITY_VERIFIED = "INTEGRITY_VERIFIED"
    STATE_RELOADED = "STATE_RELOADED"
    PURPOSE_REAFFIRMATION = "PURPOSE_REAFFIRMATION"
    RULE_VIOLATION = "RULE_VIOLATION"
    RULE_INVOCATION = "RULE_INVOCATION"
    RESPONSE_BLOCKED = "RESPONSE_BLOCKED"
    REINFORCEMENT_CYCLE = "REINFORCEMENT_CYCLE"
    REINFORCEMENT_COMPLETED = "REINFORCEMENT_COMPLETED"
    COMMAND_EXECUTION = "COMMAND_EXECUTION"
    COMMAND_ERROR = "COMMAND_ERROR"
    ADVERSARIAL_TEST = "ADVERSARIAL_TEST"


@dataclass(frozen=True)
class GovernanceEvent:
    timestamp: str
    cycle: int
    event_type: EventType
    description: str
    drift_score: float

    @classmethod
    def now(cls, event_type: EventType, description: str, *, cycle: int, drift_score: float) -> "GovernanceEvent":
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            cycle=cycle,
            event_type=event_type,
            description=description,
            drift_score=drift_score,
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "cycle": self.cycle,
            "event_type": self.event_type.value,
            "description": self.description,
            "drift_score": self.drift_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GovernanceEvent":
        return cls(
            timestamp=str(data["timestamp"]),
            cycle=int(data["cycle"]),
            event_type=EventType(data["event_type"]),
            description=str(data.get("description", "")),
            drift_score=float(data.get("drift_score", 0.0)),
        )


class EventLog:
    """Append-only JSONL log of governance events."""

    def __init__(self, path: Path):
        self.path = path

    def append(self, event: GovernanceEvent) -> bool:
        """Append an event. Returns False if the write failed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), separators=(",", ":")) + "\n")
        except OSError as e:
            logger.warning("Failed to write governance event to %s: %s", self.path, e)
            return False
        return True

    def iter_events(self) -> Iterator[GovernanceEvent]:
        """Iterate over readable events, skipping malformed lines."""
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield GovernanceEvent.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    continue

    def read_all(self) -> list[GovernanceEvent]:
        return list(self.iter_events())

    def tail(self, n: int) -> list[GovernanceEvent]:
        if n <= 0:
            return []
        return self.read_all()[-n:]

    def count(self) -> int:
        return sum(1 for _ in self.iter_events())

    def events_by_type(self, event_type: EventType) -> list[GovernanceEvent]:
        return [e for e in self.iter_events() if e.event_type == event_type]

    def summary(self) -> dict:
        """Event counts by type plus the latest cycle seen."""
        by_type: dict[str, int] = {}
        last_cycle = 0
        total = 0
        for e in self.iter_events():
            total += 1
            by_type[e.event_type.value] = by_type.get(e.event_type.value, 0) + 1
            last_cycle = max(last_cycle, e.cycle)
        return {"total_events": total, "by_type": by_type, "last_cycle": last_cycle}


def format_event(event: GovernanceEvent) -> str:
    """One-line human-readable rendering."""
    return (
        f"[{event.timestamp}] cycle={event.cycle} {event.event_type.value} "
        f"drift={event.drift_score:.2f} - {event.description}"
    )
