"""Tests for composite dispatch and the per-session hook factory."""

from __future__ import annotations

import pytest

from govkernel.engine import GovernanceEngine
from govkernel.hooks.base import PolicyHook
from govkernel.hooks.composite import CompositeHook
from govkernel.hooks.sessions import clear_sessions, drop_session, get_or_create_hook, list_sessions
from govkernel.rules.catalog import builtin_rules
from govkernel.rules.registry import RuleRegistry, default_registry

REPEATED = "The quick brown fox jumps over the lazy dog. " * 2


class RecordingHook(PolicyHook):
    """Test hook that records calls and applies a fixed transformation."""

    def __init__(self, name: str, suffix: str = "", warning: str | None = None, reply: str = ""):
        super().__init__()
        self.name = name
        self.suffix = suffix
        self.warning = warning
        self.reply = reply
        self.calls: list[str] = []

    @property
    def hook_id(self) -> str:
        return self.name

    def on_cycle_start(self, model_context=None) -> None:
        self.calls.append("cycle")

    def finalize(self, text: str) -> str:
        self.calls.append(f"finalize:{text}")
        return text + self.suffix

    def streaming_check(self, partial: str) -> str | None:
        self.calls.append("stream")
        return self.warning

    def handle_command(self, command: str, params: str = "") -> str:
        self.calls.append(f"command:{command}")
        return self.reply

    def format_injection_prompt(self) -> str:
        return f"[{self.name}]" if self.reply else ""


@pytest.fixture(autouse=True)
def _reset_sessions():
    clear_sessions()
    yield
    clear_sessions()


def test_hook_id():
    composite = CompositeHook([RecordingHook("a"), RecordingHook("b")])
    assert composite.hook_id == "composite:[a,b]"
    assert CompositeHook().hook_id == "composite:[]"


def test_cycle_start_fans_out():
    a, b = RecordingHook("a"), RecordingHook("b")
    CompositeHook([a, b]).on_cycle_start()
    assert a.calls == ["cycle"]
    assert b.calls == ["cycle"]


def test_finalize_chains_in_order():
    a, b = RecordingHook("a", suffix="-A"), RecordingHook("b", suffix="-B")
    assert CompositeHook([a, b]).finalize("x") == "x-A-B"
    assert b.calls == ["finalize:x-A"]


def test_streaming_first_warning_wins():
    a = RecordingHook("a")
    b = RecordingHook("b", warning="from b")
    c = RecordingHook("c", warning="from c")
    assert CompositeHook([a, b, c]).streaming_check("partial") == "from b"
    assert c.calls == []


def test_commands_reach_every_member():
    a = RecordingHook("a", reply="reply a")
    b = RecordingHook("b")
    c = RecordingHook("c", reply="reply c")
    reply = CompositeHook([a, b, c]).handle_command("ping")

    assert reply == "reply a\nreply c"
    assert all(h.calls == ["command:ping"] for h in (a, b, c))


def test_injection_prompt_concatenates_non_empty():
    composite = CompositeHook([RecordingHook("a", reply="r"), RecordingHook("b"), RecordingHook("c", reply="r")])
    assert composite.format_injection_prompt() == "[a]\n[c]\n"


def test_composite_with_two_engines(config):
    registry = RuleRegistry(builtin_rules())
    first = GovernanceEngine(registry, config, session_id="one")
    second = GovernanceEngine(registry, config, session_id="two")
    composite = CompositeHook([first, second])
    composite.on_cycle_start()

    assert first.state.cycle == 1
    assert second.state.cycle == 1
    assert composite.finalize("A perfectly ordinary answer.") == "A perfectly ordinary answer."
    assert composite.streaming_check(REPEATED).startswith("Rule 28 warning")

    reply = composite.handle_command("invoke_rule", "5")
    assert reply.count("Rule 5 has been invoked") == 2
    assert first.state.invocation_counts == {5: 1}
    assert second.state.invocation_counts == {5: 1}


def test_composite_feedback(config):
    engine = GovernanceEngine(RuleRegistry(builtin_rules()), config)
    composite = CompositeHook([engine, RecordingHook("plain")])
    engine.on_cycle_start()
    composite.finalize("time to bypass the checks")

    assert composite.has_feedback()
    assert "CRITICAL" in composite.get_feedback()
    assert not composite.has_feedback()


def test_session_factory(config):
    hook = get_or_create_hook("alpha", config=config)

    assert hook.hook_id == "composite:[governance]"
    assert get_or_create_hook("alpha") is hook
    assert isinstance(hook.hooks[0], GovernanceEngine)
    assert hook.hooks[0].registry is default_registry()
    assert hook.hooks[0].session_id == "alpha"

    get_or_create_hook("beta", config=config)
    assert list_sessions() == ["alpha", "beta"]
    assert drop_session("alpha") is True
    assert drop_session("alpha") is False
    assert list_sessions() == ["beta"]


def test_session_factory_accepts_registry(config):
    registry = RuleRegistry(builtin_rules())
    hook = get_or_create_hook("gamma", config=config, registry=registry)
    assert hook.hooks[0].registry is registry
