"""
Per-session hook factory.

Each session id maps to one CompositeHook, created on first use with a
GovernanceEngine as its first member. Engines share the process-wide rule
registry unless the caller supplies another.
"""

from __future__ import annotations

import threading

from ..config import GovernanceConfig
from ..engine import GovernanceEngine
from ..rules.registry import RuleRegistry, default_registry
from .composite import CompositeHook

# Global registry: session id -> composite hook
_SESSIONS: dict[str, CompositeHook] = {}
_SESSIONS_LOCK = threading.Lock()


def get_or_create_hook(
    session_id: str,
    *,
    config: GovernanceConfig | None = None,
    registry: RuleRegistry | None = None,
    debug: bool = False,
) -> CompositeHook:
    """
    Look up the hook for a session, creating it if needed.

    Args:
        session_id: Session identifier
        config: Engine configuration for a newly created session
        registry: Rule registry for a newly created session (default: process-wide)
        debug: Show diagnostic feedback for a newly created session

    Returns:
        The session's composite hook
    """
    with _SESSIONS_LOCK:
        hook = _SESSIONS.get(session_id)
        if hook is None:
            engine = GovernanceEngine(
                registry if registry is not None else default_registry(),
                config,
                session_id=session_id,
                debug=debug,
            )
            hook = CompositeHook([engine])
            _SESSIONS[session_id] = hook
        return hook


def list_sessions() -> list[str]:
    with _SESSIONS_LOCK:
        return sorted(_SESSIONS)


def drop_session(session_id: str) -> bool:
    """Forget a session's hook. Returns False if it did not exist."""
    with _SESSIONS_LOCK:
        return _SESSIONS.pop(session_id, None) is not None


def clear_sessions() -> None:
    """Forget every session (for testing)."""
    with _SESSIONS_LOCK:
        _SESSIONS.clear()
