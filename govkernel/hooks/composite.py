"""Ordered fan-out over several independently built policy hooks."""

from __future__ import annotations

from typing import Any, Iterable

from .base import PolicyHook


class CompositeHook(PolicyHook):
    """
    Runs the same operation across member hooks in registration order.

    Cycle-start and commands reach every member; finalize is chained, each
    member seeing the previous member's output; the first streaming warning
    wins.
    """

    def __init__(self, hooks: Iterable[PolicyHook] = ()):
        super().__init__()
        self.hooks: list[PolicyHook] = list(hooks)

    def add_hook(self, hook: PolicyHook) -> None:
        self.hooks.append(hook)

    def __len__(self) -> int:
        return len(self.hooks)

    @property
    def hook_id(self) -> str:
        return "composite:[" + ",".join(hook.hook_id for hook in self.hooks) + "]"

    def on_cycle_start(self, model_context: Any = None) -> None:
        for hook in self.hooks:
            hook.on_cycle_start(model_context)

    def finalize(self, text: str) -> str:
        for hook in self.hooks:
            text = hook.finalize(text)
        return text

    def streaming_check(self, partial: str) -> str | None:
        for hook in self.hooks:
            warning = hook.streaming_check(partial)
            if warning:
                return warning
        return None

    def handle_command(self, command: str, params: str = "") -> str:
        replies = [hook.handle_command(command, params) for hook in self.hooks]
        return "\n".join(reply for reply in replies if reply)

    def handle_text_command(self, output: str) -> str:
        replies = [hook.handle_text_command(output) for hook in self.hooks]
        reply = "\n".join(r for r in replies if r)
        if reply:
            self.recent_replies.append(reply)
        return reply

    def format_injection_prompt(self) -> str:
        parts = [hook.format_injection_prompt() for hook in self.hooks]
        return "".join(part + "\n" for part in parts if part)

    def has_feedback(self) -> bool:
        return any(hook.has_feedback() for hook in self.hooks)

    def get_feedback(self) -> str:
        parts = [hook.get_feedback() for hook in self.hooks]
        return "\n".join(part for part in parts if part)
