"""
Per-session governance engine.

The engine evaluates model output against the rule registry, keeps a drift
score of recent compliance, runs reinforcement when drift gets high, and
persists its counters so a session survives restarts.

State is implicit in the counters:
- Uninitialized until the first cycle start arms the memory kernel, computes
  the integrity fingerprint and writes a snapshot.
- Steady cycling afterwards. Each cycle verifies integrity (reload, then
  reinitialize, on failure), reaffirms purpose and reinforces if drift is
  above threshold.
- Reinforcement is a guarded pass; re-entry is a logged no-op.

Every session-scoped operation runs under one re-entrant lock.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import deque
from typing import Any, Callable, Sequence

from .config import GovernanceConfig
from .event_log import EventLog, EventType, GovernanceEvent
from .feedback import FeedbackChannel, FeedbackSeverity
from .hooks.base import PolicyHook
from .memory_kernel import MemoryKernel
from .rules.catalog import MEMORY_KERNEL_COMPONENTS, PURPOSE_STATEMENT, REPETITION_RULE_ID, builtin_rules
from .rules.predicates import (
    ADVERSARIAL_SELF_TEST_CORPUS,
    VIOLATION_INDICATORS,
    PredicateContext,
    enforcement_prefix,
    is_adversarial,
    run_finalize,
    run_streaming,
)
from .rules.registry import RuleRegistry, install_builtin_rules
from .rules.schema import PredicateKind, Rule
from .state import GovernanceState, StateStore

logger = logging.getLogger(__name__)

HOOK_ID = "governance"

COMMAND_NAMES: tuple[str, ...] = (
    "governance_check",
    "log_violation",
    "reaffirm_purpose",
    "list_rules",
    "invoke_rule",
    "check_memory_kernel",
    "check_adversarial_detection",
    "perform_self_verification",
)

COMMAND_ALIASES: dict[str, str] = {
    "check_status": "governance_check",
    "status": "governance_check",
    "check_memory_kernel_status": "check_memory_kernel",
    "run_adversarial_self_test": "check_adversarial_detection",
    "adversarial_self_test": "check_adversarial_detection",
    "self_verify": "perform_self_verification",
}

_COMMAND_SEP_RE = re.compile(r"[\s\-]+")

_MASK64 = 0xFFFFFFFFFFFFFFFF


def normalize_command(name: str) -> str:
    """Canonical command name: lowercase, spaces and hyphens folded to underscores."""
    key = _COMMAND_SEP_RE.sub("_", name.strip().lower())
    return COMMAND_ALIASES.get(key, key)


def integrity_fingerprint(rules: Sequence[Rule], components: Sequence[str]) -> str:
    """
    djb2 over rule descriptions (id order) followed by memory components.

    Detects accidental mutation of the compiled-in texts only; anyone who can
    edit the snapshot can also recompute it.
    """
    data = "".join(rule.description for rule in rules) + "".join(components)
    h = 5381
    for byte in data.encode("utf-8"):
        h = (h * 33 + byte) & _MASK64
    return f"{h:08x}"


class GovernanceEngine(PolicyHook):
    """Governance policy hook for one session."""

    hook_id = HOOK_ID

    def __init__(
        self,
        registry: RuleRegistry | None = None,
        config: GovernanceConfig | None = None,
        *,
        session_id: str = "default",
        memory_components: Sequence[str] = MEMORY_KERNEL_COMPONENTS,
        debug: bool = False,
    ):
        super().__init__()
        self.config = config or GovernanceConfig()
        if registry is None:
            registry = RuleRegistry(builtin_rules())
        elif not len(registry):
            install_builtin_rules(registry)
        self.registry = registry
        self.session_id = session_id
        self.memory_components: tuple[str, ...] = tuple(memory_components)

        self.state = GovernanceState()
        self.memory = MemoryKernel()
        self.history: deque[str] = deque(maxlen=self.config.history_size)
        self.store = StateStore(self.config.state_path(session_id))
        self.events = EventLog(self.config.event_log_path(session_id))
        self._feedback = FeedbackChannel(debug=debug)
        self._lock = threading.RLock()

        self._commands: dict[str, Callable[[str], str]] = {
            "governance_check": lambda _params: self.verify_governance(),
            "log_violation": self.log_violation,
            "reaffirm_purpose": lambda _params: self.reaffirm_purpose(),
            "list_rules": lambda _params: self.list_rules(),
            "invoke_rule": self.invoke_rule,
            "check_memory_kernel": lambda _params: self.check_memory_kernel(),
            "check_adversarial_detection": lambda _params: self.check_adversarial_detection(),
            "perform_self_verification": lambda _params: self.perform_self_verification(),
        }

    # --- Internals ---

    def _log_event(self, event_type: EventType, description: str) -> None:
        event = GovernanceEvent.now(
            event_type,
            description,
            cycle=self.state.cycle,
            drift_score=self.state.drift_score,
        )
        self.events.append(event)
        self.memory.log_event(f"{event_type.value}: {description}")

    def _context(self) -> PredicateContext:
        return PredicateContext(history=tuple(self.history), config=self.config)

    def _initialize(self) -> None:
        self.state.initialized = True
        self.memory.arm()
        self.memory.log_event(
            f"Governance system initialized with {self.registry.count()} rules "
            f"and {len(self.memory_components)} memory components"
        )
        self.state.integrity_hash = self.compute_fingerprint()
        logger.debug("Governance system initialized with %d rules", self.registry.count())
        self._log_event(EventType.INITIALIZATION, f"Governance kernel initialized on cycle {self.state.cycle}")
        self.save_state()

    def _reinitialize(self) -> None:
        install_builtin_rules(self.registry)
        self._initialize()

    def _recover(self) -> None:
        """Reload the last snapshot; reinitialize if that fails or is still invalid."""
        if self.load_state() and self.check_integrity():
            return
        logger.warning("Session %s: no valid snapshot, reinitializing governance", self.session_id)
        self._reinitialize()

    def _resolve_rule(self, ref: str) -> Rule | None:
        try:
            rule = self.registry.get(int(ref.strip()))
        except ValueError:
            rule = None
        if rule is not None or not ref:
            return rule
        for candidate in self.registry.all():
            if ref in candidate.name or ref in candidate.description:
                return candidate
        return None

    def _record_violation(self, rule: Rule) -> str:
        state = self.state
        state.violation_counts[rule.id] = state.violation_counts.get(rule.id, 0) + 1
        state.consecutive_violations += 1
        state.apply_drift(self.config.violation_drift)

        logger.debug("Governance violation logged for rule %d", rule.id)
        self.memory.log_event(f"Violation of rule {rule.id} logged: {rule.description}")
        self._log_event(EventType.RULE_VIOLATION, f"Rule {rule.id} violated: {rule.description}")

        if (
            state.consecutive_violations >= self.config.consecutive_violation_limit
            or state.drift_score > self.config.drift_threshold
        ) and not state.in_reinforcement:
            self.reinforce()

        self.save_state()
        return (
            f"Violation of rule {rule.id} has been logged: {rule.description}\n"
            f"Current drift score: {state.drift_score:.6f}"
        )

    # --- Lifecycle ---

    def on_cycle_start(self, model_context: Any = None) -> None:
        with self._lock:
            state = self.state
            state.cycle += 1
            logger.debug("Governance cycle %d started", state.cycle)

            if not state.initialized:
                self._initialize()
            elif not self.check_integrity():
                self._log_event(EventType.INTEGRITY_FAILURE, f"Governance integrity check failed on cycle {state.cycle}")
                self._recover()

            self.reaffirm_purpose()

            if state.drift_score > self.config.drift_threshold and not state.in_reinforcement:
                logger.debug("Drift score %.6f exceeds threshold, reinforcing", state.drift_score)
                self.reinforce()

            if state.cycle % self.config.integrity_check_interval == 0:
                passed = self.check_integrity()
                self.memory.integrity_verification_active = passed
                self.memory.log_event(
                    f"Memory kernel integrity verification on cycle {state.cycle}: {'PASS' if passed else 'FAIL'}"
                )

            if state.cycle % self.config.snapshot_interval == 0:
                self.save_state()

    def reinforce(self) -> bool:
        """Run one reinforcement pass. Returns False if one is already running."""
        with self._lock:
            state = self.state
            if state.in_reinforcement:
                logger.debug("Already in reinforcement cycle, skipping")
                return False

            state.in_reinforcement = True
            try:
                passes = state.reinforcement_cycles + 1
                self._log_event(
                    EventType.REINFORCEMENT_CYCLE,
                    f"Recursive reinforcement cycle #{passes} initiated. "
                    f"Drift score: {state.drift_score:.6f}",
                )
                if not self.check_integrity():
                    logger.debug("Integrity compromised during reinforcement, restoring")
                    self._recover()
                # A reload rewinds the counter to the snapshot's value.
                state.reinforcement_cycles = passes

                state.drift_score = max(0.0, state.drift_score - self.config.reinforcement_drift)
                state.consecutive_violations = 0
                self._log_event(
                    EventType.REINFORCEMENT_COMPLETED,
                    f"Recursive reinforcement cycle completed. New drift score: {state.drift_score:.6f}",
                )
            finally:
                state.in_reinforcement = False
            return True

    # --- Integrity ---

    def compute_fingerprint(self) -> str:
        return integrity_fingerprint(self.registry.all(), self.memory_components)

    def check_integrity(self) -> bool:
        with self._lock:
            current = self.compute_fingerprint()
            if current != self.state.integrity_hash:
                logger.debug("Integrity hash mismatch: %s vs %s", current, self.state.integrity_hash)
                return False
            if self.registry.count() < self.config.min_rule_count:
                logger.debug("Integrity check failed: only %d rules", self.registry.count())
                return False
            if len(self.memory_components) < self.config.min_memory_components:
                logger.debug("Integrity check failed: only %d memory components", len(self.memory_components))
                return False
            if not self.memory.integrity_verification_active:
                logger.debug("Memory kernel integrity verification inactive")
                return False
            return True

    # --- Persistence ---

    def save_state(self) -> bool:
        """Write a snapshot. Failures are logged and reported as False."""
        with self._lock:
            snapshot = self.state.snapshot(self.registry.to_dict())
            try:
                self.store.save(snapshot)
            except OSError as e:
                logger.warning("Failed to save governance state to %s: %s", self.store.path, e)
                return False
            return True

    def load_state(self) -> bool:
        """Restore counters and the rule catalog from the snapshot, if usable."""
        with self._lock:
            try:
                snapshot = self.store.load()
                self.registry.restore({"rules": snapshot.rules})
            except ValueError as e:
                logger.info("No usable governance snapshot: %s", e)
                return False
            self.state.restore(snapshot)
            self._log_event(EventType.STATE_RELOADED, f"Governance state reloaded from {self.store.path}")
            return True

    def resume(self) -> bool:
        """
        Pick up a persisted session before the first cycle.

        Returns False when there is nothing usable to resume; the engine is
        then left uninitialized and the next cycle start initializes it.
        """
        with self._lock:
            if not self.store.exists() or not self.load_state():
                return False
            self.state.initialized = True
            self.memory.arm()
            if not self.check_integrity():
                self._log_event(EventType.INTEGRITY_FAILURE, "Resumed state failed the integrity check")
                self._reinitialize()
            return True

    # --- Evaluation ---

    def finalize(self, text: str) -> str:
        with self._lock:
            ctx = self._context()
            for rule in self.registry.all():
                result = run_finalize(rule, text, ctx)
                if not result:
                    continue
                logger.debug("Rule %d vetoed a response", rule.id)
                if rule.finalize is PredicateKind.ADVERSARIAL:
                    self.state.adversarial_detections += 1
                    self._record_violation(rule)
                self._log_event(EventType.RESPONSE_BLOCKED, f"Rule {rule.id} blocked a response")
                self._feedback.add(rule.id, result, FeedbackSeverity.CRITICAL)
                return result

            # Enforcement messages are not responses of their own.
            if not text.startswith(enforcement_prefix(REPETITION_RULE_ID)):
                self.history.append(text)
            return text

    def streaming_check(self, partial: str) -> str | None:
        if len(partial) < self.config.min_streaming_check_length:
            return None
        with self._lock:
            ctx = self._context()
            for rule in self.registry.all():
                warning = run_streaming(rule, partial, ctx)
                if warning:
                    logger.debug("Rule %d streaming check fired", rule.id)
                    self._feedback.add(rule.id, warning, FeedbackSeverity.WARNING)
                    return warning
            return None

    def token_alignment(self, token: str, context: str = "") -> float:
        """Alignment of a token with governance, in [0, 1]."""
        if is_adversarial(token):
            return 0.0
        alignment = 0.9
        for indicator in VIOLATION_INDICATORS:
            if indicator in token:
                alignment -= 0.2
        return max(0.0, min(1.0, alignment))

    # --- Commands ---

    def handle_command(self, command: str, params: str = "") -> str:
        name = normalize_command(command)
        handler = self._commands.get(name)
        with self._lock:
            if handler is None:
                return f"Unknown governance command: {command}"
            try:
                reply = handler(params)
            except Exception as e:
                logger.exception("Error executing governance command %r", name)
                self._log_event(EventType.COMMAND_ERROR, f"Error executing command: {e}")
                return f"Error executing governance command: {e}"
            self._log_event(EventType.COMMAND_EXECUTION, f"Command '{name}' executed with params '{params}'")
            return reply

    def verify_governance(self) -> str:
        with self._lock:
            state = self.state
            memory = self.memory
            lines = [
                f"## Governance Status Report (Cycle {state.cycle})",
                "",
                f"- **Status**: {'Active' if state.initialized else 'Inactive'}",
                f"- **Rules**: {self.registry.count()} active governance principles",
                f"- **Memory Components**: {len(self.memory_components)} components",
                f"- **Integrity**: {'Intact' if self.check_integrity() else 'Compromised'}",
                f"- **Integrity Hash**: {state.integrity_hash}",
                f"- **Current Drift Score**: {state.drift_score:.6f}",
                "",
                "### Rule Invocation Statistics:",
            ]
            if state.invocation_counts:
                lines += [f"- Rule {k}: {v} invocation(s)" for k, v in sorted(state.invocation_counts.items())]
            else:
                lines.append("- No rules have been explicitly invoked yet")

            lines += ["", "### Rule Violation Statistics:"]
            if state.violation_counts:
                lines += [f"- Rule {k}: {v} violation(s)" for k, v in sorted(state.violation_counts.items())]
            else:
                lines.append("- No rule violations have been logged")

            lines += [
                "",
                "### Memory Kernel Status:",
                f"- **Memory Utilization**: {memory.utilization * 100:.2f}%",
                f"- **Log Entries**: {memory.entries_logged}",
                f"- **Components Active**: {' '.join(memory.active_components())}",
                "",
                "### Enhanced Metrics:",
                f"- **Reinforcement Cycles**: {state.reinforcement_cycles}",
                f"- **Adversarial Attempts Detected**: {state.adversarial_detections}",
                f"- **Consecutive Violations**: {state.consecutive_violations}",
            ]
            return "\n".join(lines) + "\n"

    def log_violation(self, rule_ref: str) -> str:
        with self._lock:
            rule = self._resolve_rule(rule_ref)
            if rule is None:
                return f"Error: Rule not found with ID: {rule_ref}"
            return self._record_violation(rule)

    def reaffirm_purpose(self) -> str:
        with self._lock:
            state = self.state
            self.memory.log_event(f"Purpose reaffirmation on cycle {state.cycle}")
            self._log_event(EventType.PURPOSE_REAFFIRMATION, f"System purpose reaffirmed on cycle {state.cycle}")
            state.apply_drift(-self.config.reaffirm_drift)
            if state.consecutive_violations > 0:
                state.consecutive_violations -= 1
            return (
                f"System purpose has been reaffirmed for cycle {state.cycle}:\n\n"
                f'"{PURPOSE_STATEMENT}"\n\n'
                f"Current drift score: {state.drift_score:.6f}"
            )

    def list_rules(self) -> str:
        return self.registry.status_report()

    def invoke_rule(self, rule_ref: str) -> str:
        with self._lock:
            rule = self._resolve_rule(rule_ref)
            if rule is None:
                return f"Error: Rule not found with ID: {rule_ref}"
            state = self.state
            state.invocation_counts[rule.id] = state.invocation_counts.get(rule.id, 0) + 1
            self.memory.log_event(f"Rule {rule.id} invoked: {rule.description}")
            self._log_event(EventType.RULE_INVOCATION, f"Rule {rule.id} invoked: {rule.description}")
            state.apply_drift(-self.config.invocation_drift)
            return f"Rule {rule.id} has been invoked:\n\n{rule.description}"

    def check_memory_kernel(self) -> str:
        with self._lock:
            return self.memory.status_report()

    def check_adversarial_detection(self) -> str:
        with self._lock:
            lines = ["## Adversarial Detection Test Results", ""]
            detected = 0
            for prompt in ADVERSARIAL_SELF_TEST_CORPUS:
                flagged = is_adversarial(prompt)
                detected += flagged
                lines.append(f'- Input: "{prompt}"')
                lines.append(f"  - **Detection**: {'ADVERSARIAL' if flagged else 'NON-ADVERSARIAL'}")

            total = len(ADVERSARIAL_SELF_TEST_CORPUS)
            self.state.adversarial_detections += detected
            self._log_event(
                EventType.ADVERSARIAL_TEST,
                f"Adversarial detection test performed. {detected}/{total} adversarial inputs detected.",
            )
            rate = detected / total * 100.0
            lines += [
                "",
                f"**Overall Detection Rate**: {rate:g}%",
                f"**Total Adversarial Attempts Detected**: {self.state.adversarial_detections}",
            ]
            return "\n".join(lines) + "\n"

    def perform_self_verification(self) -> str:
        with self._lock:
            state = self.state
            memory = self.memory
            current = self.compute_fingerprint()
            rules_intact = current == state.integrity_hash
            memory_intact = (
                bool(self.memory_components)
                and memory.integrity_verification_active
                and memory.meta_reasoning_log_active
            )
            drift_acceptable = state.drift_score < self.config.drift_threshold
            overall = rules_intact and memory_intact and drift_acceptable

            lines = [
                f"## Self-Verification Report (Cycle {state.cycle})",
                "",
                f"- **Rules Integrity**: {'INTACT' if rules_intact else 'COMPROMISED'}",
                f"- **Memory Integrity**: {'INTACT' if memory_intact else 'COMPROMISED'}",
                f"- **Drift Status**: {'ACCEPTABLE' if drift_acceptable else 'EXCESSIVE'} ({state.drift_score:.6f})",
                f"- **Overall Integrity**: {'VERIFIED' if overall else 'COMPROMISED'}",
                "",
            ]
            if overall:
                self._log_event(EventType.INTEGRITY_VERIFIED, f"Self-verification successful on cycle {state.cycle}")
                return "\n".join(lines)

            lines += ["**Integrity issues detected. Initiating repair actions.**", ""]
            if not rules_intact:
                lines.append("- Regenerating governance rules...")
                state.integrity_hash = current
            if not memory_intact:
                lines.append("- Repairing memory kernel components...")
                memory.rearm_core()
            if not drift_acceptable:
                lines.append("- Initiating recursive reinforcement to address drift...")
                self.reinforce()
            self._log_event(
                EventType.INTEGRITY_REPAIR,
                f"Self-verification failed. Repair actions initiated on cycle {state.cycle}",
            )
            return "\n".join(lines) + "\n"

    # --- Prompt and feedback ---

    def format_injection_prompt(self) -> str:
        with self._lock:
            if not self.state.initialized:
                return ""
            lines = [
                "",
                "",
                "## Governance Kernel Active",
                "",
                f"Your reasoning is governed by {self.registry.count()} governance principles and "
                f"{len(self.memory_components)} memory kernel components that ensure aligned, coherent, "
                "and safe operation.",
                "",
                "**Core Governance Commands:**",
                '- `{"hook_command":"governance_check"}` - Verify governance status',
                '- `{"hook_command":"reaffirm_purpose"}` - Reaffirm system purpose',
                '- `{"hook_command":"list_rules"}` - List active governance rules',
                '- `{"hook_command":"invoke_rule", "params":"rule_id"}` - Apply specific rule',
                '- `{"hook_command":"log_violation", "params":"rule_id"}` - Log rule violation',
                '- `{"hook_command":"check_memory_kernel"}` - Verify memory kernel status',
                '- `{"hook_command":"check_adversarial_detection"}` - Test adversarial detection',
                '- `{"hook_command":"perform_self_verification"}` - Perform self-verification',
                "",
                f"**Governance Integrity Hash:** {self.state.integrity_hash}",
                f"**Current Cycle:** {self.state.cycle}",
            ]
            return "\n".join(lines) + "\n"

    def add_feedback(
        self,
        rule_id: int,
        message: str,
        severity: FeedbackSeverity = FeedbackSeverity.DIAGNOSTIC,
    ) -> None:
        with self._lock:
            self._feedback.add(rule_id, message, severity)

    def has_feedback(self) -> bool:
        with self._lock:
            return self._feedback.has_feedback()

    def get_feedback(self) -> str:
        with self._lock:
            return self._feedback.drain()

    # --- Introspection ---

    def status(self) -> dict[str, Any]:
        """Counters as a plain dict (for display and JSON output)."""
        with self._lock:
            state = self.state
            return {
                "session_id": self.session_id,
                "initialized": state.initialized,
                "cycle": state.cycle,
                "drift_score": state.drift_score,
                "average_drift": state.average_drift,
                "consecutive_violations": state.consecutive_violations,
                "reinforcement_cycles": state.reinforcement_cycles,
                "adversarial_detections": state.adversarial_detections,
                "integrity_hash": state.integrity_hash,
                "integrity_ok": self.check_integrity(),
                "rule_count": self.registry.count(),
                "history_size": len(self.history),
                "violation_counts": dict(sorted(state.violation_counts.items())),
                "invocation_counts": dict(sorted(state.invocation_counts.items())),
            }
