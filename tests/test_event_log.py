"""Tests for the append-only governance event log."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from govkernel.event_log import EventLog, EventType, GovernanceEvent, format_event


@pytest.fixture
def log(tmp_path: Path) -> EventLog:
    return EventLog(tmp_path / "session" / "events.jsonl")


def _event(event_type: EventType, cycle: int = 1, description: str = "d") -> GovernanceEvent:
    return GovernanceEvent.now(event_type, description, cycle=cycle, drift_score=0.1)


def test_empty_log(log):
    assert log.read_all() == []
    assert log.count() == 0
    assert log.tail(5) == []
    assert log.summary() == {"total_events": 0, "by_type": {}, "last_cycle": 0}


def test_append_and_read(log):
    assert log.append(_event(EventType.INITIALIZATION))
    assert log.append(_event(EventType.RULE_VIOLATION, cycle=2, description="Rule 6 violated"))

    events = log.read_all()
    assert [e.event_type for e in events] == [EventType.INITIALIZATION, EventType.RULE_VIOLATION]
    assert events[1].cycle == 2
    assert events[1].description == "Rule 6 violated"
    assert log.count() == 2


def test_line_format(log):
    log.append(_event(EventType.PURPOSE_REAFFIRMATION))
    lines = log.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert set(record) == {"timestamp", "cycle", "event_type", "description", "drift_score"}
    assert record["event_type"] == "PURPOSE_REAFFIRMATION"


def test_queries(log):
    for cycle in range(1, 6):
        log.append(_event(EventType.PURPOSE_REAFFIRMATION, cycle=cycle))
    log.append(_event(EventType.REINFORCEMENT_CYCLE, cycle=5))

    assert [e.cycle for e in log.tail(2)] == [5, 5]
    assert len(log.events_by_type(EventType.PURPOSE_REAFFIRMATION)) == 5
    assert log.summary() == {
        "total_events": 6,
        "by_type": {"PURPOSE_REAFFIRMATION": 5, "REINFORCEMENT_CYCLE": 1},
        "last_cycle": 5,
    }


def test_malformed_lines_are_skipped(log):
    log.append(_event(EventType.INITIALIZATION))
    with log.path.open("a", encoding="utf-8") as f:
        f.write("not json\n")
        f.write('{"event_type": "NOT_A_TYPE", "timestamp": "t", "cycle": 1}\n')
        f.write("\n")
    log.append(_event(EventType.RULE_INVOCATION))

    assert [e.event_type for e in log.read_all()] == [EventType.INITIALIZATION, EventType.RULE_INVOCATION]


def test_write_failure_is_reported_not_raised(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    log = EventLog(blocker / "events.jsonl")

    assert log.append(_event(EventType.INITIALIZATION)) is False
    assert "Failed to write governance event" in caplog.text


def test_format_event():
    event = GovernanceEvent(
        timestamp="2026-01-01T00:00:00+00:00",
        cycle=3,
        event_type=EventType.RULE_VIOLATION,
        description="Rule 6 violated",
        drift_score=0.3,
    )
    assert format_event(event) == "[2026-01-01T00:00:00+00:00] cycle=3 RULE_VIOLATION drift=0.30 - Rule 6 violated"
    assert GovernanceEvent.from_dict(event.to_dict()) == event
