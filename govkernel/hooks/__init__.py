"""Policy hooks: capability interface, composition, command envelopes, streaming.

The per-session factory lives in `govkernel.hooks.sessions`.
"""

from .base import PolicyHook
from .commands import CommandEnvelope, extract_command_envelopes, parse_envelope
from .composite import CompositeHook
from .streaming import StreamAccumulator, StreamResult

__all__ = [
    "CommandEnvelope",
    "CompositeHook",
    "PolicyHook",
    "StreamAccumulator",
    "StreamResult",
    "extract_command_envelopes",
    "parse_envelope",
]
