"""
Engine state and its on-disk snapshot.

The snapshot is pretty-printed JSON. A snapshot that cannot be read or parsed,
or that is missing a field, is "no usable snapshot": loading raises
StateLoadError and the caller decides what to fall back to.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StateLoadError(ValueError):
    """Raised when a persisted snapshot is missing, unreadable or malformed."""


@dataclass
class GovernanceState:
    """Mutable per-session counters. Guarded by the owning engine's lock."""

    initialized: bool = False
    cycle: int = 0
    drift_score: float = 0.0
    average_drift: float = 0.0
    drift_violation_count: int = 0
    consecutive_violations: int = 0
    reinforcement_cycles: int = 0
    adversarial_detections: int = 0
    invocation_counts: dict[int, int] = field(default_factory=dict)
    violation_counts: dict[int, int] = field(default_factory=dict)
    integrity_hash: str = ""
    in_reinforcement: bool = False

    def apply_drift(self, delta: float) -> float:
        """Move drift by `delta`, clamped to [0, 1]; returns the new score."""
        self.drift_score = max(0.0, min(1.0, self.drift_score + delta))
        if delta < 0 and self.drift_violation_count > 0:
            self.drift_violation_count -= 1
        elif delta > 0:
            self.drift_violation_count += 1
        self.average_drift = self.average_drift * 0.9 + self.drift_score * 0.1
        return self.drift_score

    def snapshot(self, rules: dict[str, Any]) -> "StateSnapshot":
        return StateSnapshot(
            timestamp=datetime.now(timezone.utc).isoformat(),
            cycle=self.cycle,
            integrity_hash=self.integrity_hash,
            drift_score=self.drift_score,
            violation_counts=dict(self.violation_counts),
            invocation_counts=dict(self.invocation_counts),
            reinforcement_cycles=self.reinforcement_cycles,
            adversarial_detections=self.adversarial_detections,
            consecutive_violations=self.consecutive_violations,
            rules=list(rules.get("rules", [])),
        )

    def restore(self, snapshot: "StateSnapshot") -> None:
        self.cycle = snapshot.cycle
        self.integrity_hash = snapshot.integrity_hash
        self.drift_score = snapshot.drift_score
        self.violation_counts = dict(snapshot.violation_counts)
        self.invocation_counts = dict(snapshot.invocation_counts)
        self.reinforcement_cycles = snapshot.reinforcement_cycles
        self.adversarial_detections = snapshot.adversarial_detections
        self.consecutive_violations = snapshot.consecutive_violations


def _int_field(data: dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise StateLoadError(f"field {key!r} must be a non-negative integer")
    return value


def _counts_field(data: dict[str, Any], key: str) -> dict[int, int]:
    raw = data[key]
    if not isinstance(raw, dict):
        raise StateLoadError(f"field {key!r} must be an object")
    counts: dict[int, int] = {}
    for rule_id, count in raw.items():
        try:
            counts[int(rule_id)] = int(count)
        except (TypeError, ValueError) as e:
            raise StateLoadError(f"field {key!r} has a bad entry {rule_id!r}: {count!r}") from e
    return counts


@dataclass(frozen=True)
class StateSnapshot:
    timestamp: str
    cycle: int
    integrity_hash: str
    drift_score: float
    violation_counts: dict[int, int]
    invocation_counts: dict[int, int]
    reinforcement_cycles: int
    adversarial_detections: int
    consecutive_violations: int
    rules: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        # JSON object keys are strings
        return {
            "timestamp": self.timestamp,
            "cycle": self.cycle,
            "integrity_hash": self.integrity_hash,
            "drift_score": self.drift_score,
            "violation_counts": {str(k): v for k, v in sorted(self.violation_counts.items())},
            "invocation_counts": {str(k): v for k, v in sorted(self.invocation_counts.items())},
            "reinforcement_cycles": self.reinforcement_cycles,
            "adversarial_detections": self.adversarial_detections,
            "consecutive_violations": self.consecutive_violations,
            "rules": self.rules,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StateSnapshot":
        """
        Validate and convert a parsed snapshot.

        Raises:
            StateLoadError: If any field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise StateLoadError("snapshot root must be an object")
        try:
            integrity_hash = data["integrity_hash"]
            drift_score = data["drift_score"]
            rules = data["rules"]
            snapshot = cls(
                timestamp=str(data.get("timestamp", "")),
                cycle=_int_field(data, "cycle"),
                integrity_hash=integrity_hash,
                drift_score=drift_score,
                violation_counts=_counts_field(data, "violation_counts"),
                invocation_counts=_counts_field(data, "invocation_counts"),
                reinforcement_cycles=_int_field(data, "reinforcement_cycles"),
                adversarial_detections=_int_field(data, "adversarial_detections"),
                consecutive_violations=_int_field(data, "consecutive_violations"),
                rules=rules,
            )
        except KeyError as e:
            raise StateLoadError(f"snapshot missing field {e}") from e

        if not isinstance(snapshot.integrity_hash, str) or not snapshot.integrity_hash:
            raise StateLoadError("field 'integrity_hash' must be a non-empty string")
        if isinstance(drift_score, bool) or not isinstance(drift_score, (int, float)):
            raise StateLoadError("field 'drift_score' must be a number")
        if not 0.0 <= drift_score <= 1.0:
            raise StateLoadError("field 'drift_score' must be within [0, 1]")
        if not isinstance(rules, list):
            raise StateLoadError("field 'rules' must be a list")
        return snapshot


class StateStore:
    """Reads and writes one session's snapshot file."""

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, snapshot: StateSnapshot) -> None:
        """
        Write the snapshot, replacing any previous one.

        Raises:
            OSError: If the file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot.to_dict(), indent=2) + "\n", encoding="utf-8")
        tmp_path.replace(self.path)
        logger.debug("Governance state saved to %s", self.path)

    def load(self) -> StateSnapshot:
        """
        Read and validate the snapshot.

        Raises:
            StateLoadError: If there is no usable snapshot
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StateLoadError(f"no snapshot at {self.path}") from e
        except OSError as e:
            raise StateLoadError(f"cannot read snapshot {self.path}: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StateLoadError(f"snapshot {self.path} is not valid JSON: {e}") from e
        snapshot = StateSnapshot.from_dict(data)
        logger.debug("Governance state loaded from %s", self.path)
        return snapshot
