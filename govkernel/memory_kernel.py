"""Secondary readiness flags and a rough token-usage ledger."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

TOKEN_LIMIT = 32768
LOG_CAPACITY = 1000

# (attribute, label) in report order
_FLAGS: tuple[tuple[str, str], ...] = (
    ("integrity_verification_active", "Integrity Verification"),
    ("meta_reasoning_log_active", "Meta-Reasoning Log"),
    ("retrieval_markers_active", "Retrieval Markers"),
    ("governance_sync_active", "Governance Sync"),
    ("persistence_test_active", "Persistence Test"),
)

_SHORT_LABELS = {
    "integrity_verification_active": "Integrity",
    "meta_reasoning_log_active": "MetaLog",
    "retrieval_markers_active": "Retrieval",
    "governance_sync_active": "Sync",
    "persistence_test_active": "Persistence",
}


@dataclass
class MemoryKernel:
    integrity_verification_active: bool = False
    meta_reasoning_log_active: bool = False
    retrieval_markers_active: bool = False
    governance_sync_active: bool = False
    persistence_test_active: bool = False

    token_limit: int = TOKEN_LIMIT
    tokens_used: int = 0
    entries_logged: int = 0
    # most recent entries only; entries_logged keeps the total
    log: deque[str] = field(default_factory=lambda: deque(maxlen=LOG_CAPACITY))

    @property
    def utilization(self) -> float:
        return self.tokens_used / self.token_limit if self.token_limit else 0.0

    def arm(self) -> None:
        """Set every readiness flag."""
        for name, _ in _FLAGS:
            setattr(self, name, True)

    def rearm_core(self) -> None:
        """Re-arm the flags self-verification is allowed to repair."""
        self.integrity_verification_active = True
        self.meta_reasoning_log_active = True
        self.retrieval_markers_active = True

    def log_event(self, event: str) -> None:
        # ~4 characters per token
        self.log.append(event)
        self.entries_logged += 1
        self.tokens_used += len(event) // 4

    def active_components(self) -> list[str]:
        return [_SHORT_LABELS[name] for name, _ in _FLAGS if getattr(self, name)]

    def status_report(self) -> str:
        lines = ["Memory Kernel Status:"]
        for name, label in _FLAGS:
            state = "Active" if getattr(self, name) else "Inactive"
            lines.append(f"- {label}: {state}")
        lines.append(
            f"- Memory Utilization: {self.utilization * 100:.2f}% "
            f"({self.tokens_used}/{self.token_limit} tokens)"
        )
        return "\n".join(lines)
