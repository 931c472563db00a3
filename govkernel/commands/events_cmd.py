"""Governance event log viewer."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..config import GovernanceConfig
from ..event_log import EventLog, EventType


def run_events(
    config: GovernanceConfig,
    session_id: str,
    *,
    last: int = 20,
    event_type: str | None = None,
    output_json: bool = False,
) -> int:
    """Show the most recent events of a session.

    Args:
        config: Engine configuration (locates the log)
        session_id: Session whose log to read
        last: Number of events to show (0 = all)
        event_type: Only show events of this type
        output_json: Print JSON lines instead of a table

    Returns:
        Exit code (0 = success, 1 = unknown event type)
    """
    log = EventLog(config.event_log_path(session_id))

    if event_type:
        try:
            wanted = EventType(event_type.upper())
        except ValueError:
            err = Console(stderr=True)
            err.print(f"Unknown event type: {event_type}", style="bold red")
            err.print(f"Available: {', '.join(t.value for t in EventType)}", style="dim")
            return 1
        events = log.events_by_type(wanted)
    else:
        events = log.read_all()
    if last > 0:
        events = events[-last:]

    if output_json:
        for event in events:
            print(json.dumps(event.to_dict()))
        return 0

    console = Console()
    if not events:
        console.print(f"No events recorded for session {session_id}.", style="dim")
        return 0

    table = Table(title=f"Governance events: {session_id}")
    table.add_column("Timestamp", style="dim")
    table.add_column("Cycle", justify="right")
    table.add_column("Event Type", style="cyan")
    table.add_column("Drift", justify="right")
    table.add_column("Description")
    for event in events:
        table.add_row(
            event.timestamp,
            str(event.cycle),
            event.event_type.value,
            f"{event.drift_score:.2f}",
            event.description,
        )
    console.print(table)
    return 0
