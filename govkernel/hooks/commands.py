"""
Command envelopes and their extraction from model output.

An envelope is a JSON object naming a command and an optional string
parameter:

    {"hook_command": "invoke_rule", "params": "28"}

`"command"` is accepted in place of `"hook_command"` when an envelope is
handed over directly. Inside free model text only `hook_command` blocks are
recognized.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

COMMAND_KEY = "hook_command"
_COMMAND_KEYS = (COMMAND_KEY, "command")

# A JSON object with at most one level of nested objects.
_JSON_BLOCK_RE = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")


@dataclass(frozen=True)
class CommandEnvelope:
    command: str
    params: str = ""

    def to_dict(self) -> dict[str, str]:
        return {COMMAND_KEY: self.command, "params": self.params}


def parse_envelope(data: Any) -> CommandEnvelope:
    """
    Convert a decoded JSON value into an envelope.

    Raises:
        ValueError: If `data` is not an object naming a string command
    """
    if not isinstance(data, dict):
        raise ValueError("command envelope must be a JSON object")

    command = None
    for key in _COMMAND_KEYS:
        if key in data:
            command = data[key]
            break
    if not isinstance(command, str) or not command.strip():
        raise ValueError(f"command envelope needs a non-empty string '{COMMAND_KEY}'")

    params = data.get("params", "")
    if params is None:
        params = ""
    elif isinstance(params, (int, float)) and not isinstance(params, bool):
        params = str(params)
    elif not isinstance(params, str):
        raise ValueError("command envelope 'params' must be a string")

    return CommandEnvelope(command=command, params=params)


def parse_envelope_text(text: str) -> CommandEnvelope:
    """
    Parse a JSON envelope from text.

    Raises:
        ValueError: If the text is not valid JSON or not a valid envelope
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid command JSON: {e}") from e
    return parse_envelope(data)


def extract_command_envelopes(text: str) -> list[CommandEnvelope]:
    """Find every valid `hook_command` envelope in model output, in order."""
    if COMMAND_KEY not in text or "{" not in text:
        return []

    envelopes: list[CommandEnvelope] = []
    for match in _JSON_BLOCK_RE.finditer(text):
        block = match.group(0)
        if COMMAND_KEY not in block:
            continue
        try:
            envelopes.append(parse_envelope_text(block))
        except ValueError as e:
            logger.debug("Skipping malformed command block %r: %s", block[:100], e)
    return envelopes
