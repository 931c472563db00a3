"""Accumulates streamed completion chunks and governs the result."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .base import PolicyHook

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamResult:
    text: str
    reply: str = ""
    modified: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def output(self) -> str:
        """Final text followed by any command reply."""
        if not self.reply:
            return self.text
        return self.text + "\n\n" + self.reply


def chunk_content(chunk: Any) -> str | None:
    """Delta text of a completion chunk (object, list of objects, or plain string)."""
    if isinstance(chunk, str):
        return chunk
    if isinstance(chunk, list):
        if not chunk:
            return None
        chunk = chunk[0]
    if not isinstance(chunk, dict):
        return None
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


@dataclass
class StreamAccumulator:
    hook: PolicyHook
    content: str = ""
    warnings: list[str] = field(default_factory=list)

    def feed(self, chunk: Any) -> str | None:
        """Append a chunk; returns a streaming warning if one fires now."""
        delta = chunk_content(chunk)
        if delta is None:
            logger.debug("Chunk without delta content ignored")
            return None
        self.content += delta

        warning = self.hook.streaming_check(self.content)
        if warning and warning not in self.warnings:
            self.warnings.append(warning)
            return warning
        return None

    def finish(self) -> StreamResult:
        """Finalize the accumulated text, run any command in it, and reset."""
        original = self.content
        text = self.hook.finalize(original)
        reply = self.hook.handle_text_command(text)
        result = StreamResult(
            text=text,
            reply=reply,
            modified=text != original,
            warnings=tuple(self.warnings),
        )
        self.reset()
        return result

    def reset(self) -> None:
        self.content = ""
        self.warnings = []
