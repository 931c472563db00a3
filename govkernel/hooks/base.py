"""
Policy hook capability interface.

A hook sits between the model and its caller. The host calls
`on_cycle_start` once per generation cycle, `streaming_check` while tokens
accumulate, `finalize` on the complete text, and routes command envelopes
to `handle_command`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

from .commands import CommandEnvelope, extract_command_envelopes, parse_envelope

logger = logging.getLogger(__name__)

MAX_RECENT_REPLIES = 5


class PolicyHook(ABC):
    """Base class for policy engines and their composites."""

    def __init__(self) -> None:
        self.recent_replies: deque[str] = deque(maxlen=MAX_RECENT_REPLIES)

    @property
    @abstractmethod
    def hook_id(self) -> str:
        """Stable identifier of this hook."""

    @abstractmethod
    def handle_command(self, command: str, params: str = "") -> str:
        """Run a named command; returns a human-readable reply and never raises."""

    def format_injection_prompt(self) -> str:
        return ""

    def on_cycle_start(self, model_context: Any = None) -> None:
        pass

    def finalize(self, text: str) -> str:
        return text

    def streaming_check(self, partial: str) -> str | None:
        return None

    def has_feedback(self) -> bool:
        return False

    def get_feedback(self) -> str:
        return ""

    # --- Command envelopes ---

    def execute_envelope(self, envelope: CommandEnvelope | dict) -> str:
        """Run a command envelope; malformed envelopes produce an error reply."""
        if not isinstance(envelope, CommandEnvelope):
            try:
                envelope = parse_envelope(envelope)
            except ValueError as e:
                return f"Error: {e}"
        return self.handle_command(envelope.command, envelope.params)

    def handle_text_command(self, output: str) -> str:
        """Execute the first command envelope in `output` that yields a reply."""
        for envelope in extract_command_envelopes(output):
            reply = self.execute_envelope(envelope)
            if reply:
                self.recent_replies.append(reply)
                logger.debug("Executed text command %r", envelope.command)
                return reply
        return ""

    # --- Completion payloads ---

    def process_response(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Govern a non-streaming completion payload in place.

        The text is read from `choices[0].message.content`, `content` or
        `text`, finalized, and any command reply is appended on a new line.
        Payloads with no recognizable text are returned untouched.
        """
        location = _locate_text(payload)
        if location is None:
            logger.debug("No recognizable text in response payload")
            return payload

        container, key = location
        text = self.finalize(container[key])
        reply = self.handle_text_command(text)
        if reply:
            text = text + "\n" + reply
        container[key] = text
        return payload


def _locate_text(payload: dict[str, Any]) -> tuple[dict[str, Any], str] | None:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0]
        if isinstance(first, dict):
            message = first.get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message, "content"
        return None
    for key in ("content", "text"):
        if isinstance(payload.get(key), str):
            return payload, key
    return None
