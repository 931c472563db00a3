"""CLI entrypoint for govkernel."""

import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import GovernanceConfig, load_config


def _setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )
    else:
        root.setLevel(level)


@click.group()
@click.version_option(__version__, prog_name="govkernel")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Config file (.toml or .yaml)",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for session snapshots and event logs (overrides config)",
)
@click.option("--session", "session_id", default="default", show_default=True, help="Session identifier")
@click.option("--debug", is_flag=True, help="Verbose logging (also GOVKERNEL_DEBUG=1)")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    state_dir: Path | None,
    session_id: str,
    debug: bool,
) -> None:
    """govkernel - Runtime governance for generated text.

    Evaluates model output against the governance rules, tracks drift and
    keeps per-session state across runs.
    """
    debug = debug or os.environ.get("GOVKERNEL_DEBUG", "") in ("1", "true")
    _setup_logging(debug)

    if config_path is not None:
        try:
            config = load_config(config_path)
        except (FileNotFoundError, ValueError) as e:
            raise click.ClickException(str(e))
    else:
        config = GovernanceConfig()
    if state_dir is not None:
        config = config.with_overrides(state_dir=state_dir)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["session"] = session_id
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output status as JSON")
@click.pass_context
def status(ctx: click.Context, output_json: bool) -> None:
    """Show the session's governance counters."""
    from .commands.session_cmd import run_status

    exit_code = run_status(ctx.obj["config"], ctx.obj["session"], output_json=output_json)
    sys.exit(exit_code)


@cli.command()
@click.option("--category", default=None, help="Only list rules in this category")
@click.option("--json", "output_json", is_flag=True, help="Output rules as JSON")
def rules(category: str | None, output_json: bool) -> None:
    """List the governance rules."""
    from .commands.rules_cmd import run_rules

    exit_code = run_rules(category=category, output_json=output_json)
    sys.exit(exit_code)


@cli.command()
@click.option("--count", "-n", type=click.IntRange(min=1), default=1, show_default=True, help="Cycles to run")
@click.pass_context
def cycle(ctx: click.Context, count: int) -> None:
    """Start one or more generation cycles."""
    from .commands.session_cmd import run_cycle

    exit_code = run_cycle(ctx.obj["config"], ctx.obj["session"], count=count)
    sys.exit(exit_code)


@cli.command()
@click.argument("text")
@click.pass_context
def finalize(ctx: click.Context, text: str) -> None:
    """Govern a complete response. Exits 1 if a rule blocks it."""
    from .commands.session_cmd import run_finalize

    exit_code = run_finalize(ctx.obj["config"], ctx.obj["session"], text, debug=ctx.obj["debug"])
    sys.exit(exit_code)


@cli.command("stream-check")
@click.argument("text")
@click.pass_context
def stream_check(ctx: click.Context, text: str) -> None:
    """Check partial streamed text. Exits 1 on a warning."""
    from .commands.session_cmd import run_stream_check

    exit_code = run_stream_check(ctx.obj["config"], ctx.obj["session"], text)
    sys.exit(exit_code)


@cli.command()
@click.argument("name")
@click.argument("params", required=False, default="")
@click.pass_context
def command(ctx: click.Context, name: str, params: str) -> None:
    """Run a governance command.

    Examples:

        govkernel command governance_check

        govkernel command log_violation 28

        govkernel command "self-verify"
    """
    from .commands.session_cmd import run_command

    exit_code = run_command(ctx.obj["config"], ctx.obj["session"], name, params)
    sys.exit(exit_code)


@cli.command()
@click.option("--last", "-n", type=click.IntRange(min=0), default=20, show_default=True, help="Events to show (0 = all)")
@click.option("--type", "event_type", default=None, help="Only show events of this type")
@click.option("--json", "output_json", is_flag=True, help="Output events as JSON lines")
@click.pass_context
def events(ctx: click.Context, last: int, event_type: str | None, output_json: bool) -> None:
    """Show the session's governance event log."""
    from .commands.events_cmd import run_events

    exit_code = run_events(
        ctx.obj["config"],
        ctx.obj["session"],
        last=last,
        event_type=event_type,
        output_json=output_json,
    )
    sys.exit(exit_code)


@cli.command("self-test")
@click.pass_context
def self_test(ctx: click.Context) -> None:
    """Run the adversarial detection self-test."""
    from .commands.session_cmd import run_self_test

    exit_code = run_self_test(ctx.obj["config"], ctx.obj["session"])
    sys.exit(exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
