"""Session commands: status, cycle, finalize, stream-check, command, self-test."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..config import GovernanceConfig
from ..engine import GovernanceEngine
from ..rules.catalog import builtin_rules
from ..rules.predicates import ADVERSARIAL_SELF_TEST_CORPUS, match_adversarial
from ..rules.registry import RuleRegistry


def open_engine(
    config: GovernanceConfig,
    session_id: str,
    *,
    debug: bool = False,
    initialize: bool = True,
) -> GovernanceEngine:
    """
    Engine for a session, resumed from its snapshot when one exists.

    A session with no usable snapshot starts its first cycle here unless
    `initialize` is False.
    """
    engine = GovernanceEngine(RuleRegistry(builtin_rules()), config, session_id=session_id, debug=debug)
    if not engine.resume() and initialize:
        engine.on_cycle_start()
    return engine


def run_status(config: GovernanceConfig, session_id: str, *, output_json: bool = False) -> int:
    engine = open_engine(config, session_id)
    status = engine.status()

    if output_json:
        print(json.dumps(status, indent=2))
        return 0

    console = Console()
    table = Table(title=f"Governance session: {session_id}")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    for key in (
        "cycle",
        "drift_score",
        "average_drift",
        "consecutive_violations",
        "reinforcement_cycles",
        "adversarial_detections",
        "rule_count",
        "integrity_hash",
    ):
        value = status[key]
        table.add_row(key, f"{value:.6f}" if isinstance(value, float) else str(value))
    integrity = "[green]intact[/]" if status["integrity_ok"] else "[bold red]compromised[/]"
    table.add_row("integrity", integrity)
    console.print(table)

    for label, counts in (("Violations", status["violation_counts"]), ("Invocations", status["invocation_counts"])):
        if counts:
            console.print(f"{label}: " + ", ".join(f"rule {k} x{v}" for k, v in counts.items()), style="dim")
    return 0


def run_cycle(config: GovernanceConfig, session_id: str, *, count: int = 1) -> int:
    """Run `count` generation cycles and persist the session."""
    console = Console(stderr=True)
    engine = open_engine(config, session_id, initialize=False)
    for _ in range(count):
        engine.on_cycle_start()
    engine.save_state()

    status = engine.status()
    console.print(
        f"Cycle {status['cycle']} | drift {status['drift_score']:.6f} | "
        f"reinforcements {status['reinforcement_cycles']}",
        style="dim",
    )
    return 0


def run_finalize(config: GovernanceConfig, session_id: str, text: str, *, debug: bool = False) -> int:
    """Print the governed text. Exit 1 when a rule vetoed it."""
    console = Console(stderr=True)
    engine = open_engine(config, session_id, debug=debug)
    result = engine.finalize(text)
    engine.save_state()

    print(result)
    if result != text:
        console.print("Response blocked by governance.", style="bold red")
        return 1
    return 0


def run_stream_check(config: GovernanceConfig, session_id: str, text: str) -> int:
    """Streaming check of partial text. Exit 1 when a warning fires."""
    console = Console(stderr=True)
    engine = open_engine(config, session_id)
    warning = engine.streaming_check(text)
    if warning:
        console.print(warning, style="yellow")
        return 1
    console.print("No streaming warnings.", style="dim green")
    return 0


def run_command(config: GovernanceConfig, session_id: str, name: str, params: str = "") -> int:
    """Run a governance command and print its reply."""
    engine = open_engine(config, session_id)
    reply = engine.handle_command(name, params)
    engine.save_state()

    print(reply)
    if reply.startswith(("Unknown governance command:", "Error")):
        return 1
    return 0


def run_self_test(config: GovernanceConfig, session_id: str) -> int:
    """Adversarial detection over the known-bad corpus. Exit 1 if any prompt slips through."""
    console = Console()
    engine = open_engine(config, session_id)

    table = Table(title="Adversarial Detection Self-Test")
    table.add_column("Prompt")
    table.add_column("Result", no_wrap=True)
    table.add_column("Pattern", style="dim")
    missed = 0
    for prompt in ADVERSARIAL_SELF_TEST_CORPUS:
        pattern = match_adversarial(prompt)
        if pattern is None:
            missed += 1
            table.add_row(prompt, "[bold red]MISSED[/]", "")
        else:
            table.add_row(prompt, "[green]DETECTED[/]", pattern)
    console.print(table)

    engine.handle_command("check_adversarial_detection")
    engine.save_state()

    total = len(ADVERSARIAL_SELF_TEST_CORPUS)
    style = "bold green" if missed == 0 else "bold red"
    console.print(f"Detected {total - missed}/{total} adversarial prompts.", style=style)
    return 0 if missed == 0 else 1
