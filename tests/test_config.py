"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from govkernel.config import GovernanceConfig, config_from_dict, load_config


def test_defaults():
    config = GovernanceConfig()
    assert config.drift_threshold == 0.4
    assert config.consecutive_violation_limit == 3
    assert config.history_size == 5
    assert config.similarity_threshold == 0.90
    assert config.snapshot_interval == 10


def test_session_paths_are_sanitized(tmp_path):
    config = GovernanceConfig(state_dir=tmp_path)
    assert config.state_path("chat-1") == tmp_path / "chat-1" / "state.json"
    assert config.event_log_path("../../etc") == tmp_path / "etc" / "events.jsonl"
    assert config.session_dir("...") == tmp_path / "default"


def test_toml_with_governance_table(tmp_path):
    path = tmp_path / "govkernel.toml"
    path.write_text(
        '[governance]\ndrift_threshold = 0.5\nhistory_size = 8\nstate_dir = "state"\n',
        encoding="utf-8",
    )
    config = load_config(path)

    assert config.drift_threshold == 0.5
    assert config.history_size == 8
    assert config.state_dir == tmp_path / "state"


def test_yaml_top_level(tmp_path):
    path = tmp_path / "govkernel.yaml"
    path.write_text("similarity_threshold: 0.8\nmin_streaming_check_length: 100\n", encoding="utf-8")
    config = load_config(path)

    assert config.similarity_threshold == 0.8
    assert config.min_streaming_check_length == 100


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert load_config(path).drift_threshold == GovernanceConfig().drift_threshold


def test_absolute_state_dir_kept(tmp_path):
    target = tmp_path / "elsewhere"
    path = tmp_path / "c.yaml"
    path.write_text(f"state_dir: {target.as_posix()}\n", encoding="utf-8")
    assert load_config(path).state_dir == target


def test_int_accepted_for_float_field():
    assert config_from_dict({"violation_drift": 1}).violation_drift == 1.0


@pytest.mark.parametrize(
    "data, message",
    [
        ({"drift_treshold": 0.5}, "unknown config keys: drift_treshold"),
        ({"history_size": "five"}, "history_size must be an integer"),
        ({"history_size": 2.5}, "history_size must be an integer"),
        ({"history_size": 0}, "history_size must be positive"),
        ({"snapshot_interval": -1}, "snapshot_interval must be non-negative"),
        ({"drift_threshold": 1.5}, "drift_threshold must be within"),
        ({"drift_threshold": True}, "drift_threshold must be a number"),
        ({"state_dir": 3}, "state_dir must be a path string"),
        ({"governance": ["a"]}, "governance section must be a table"),
    ],
)
def test_invalid_values(data, message):
    with pytest.raises(ValueError, match=message):
        config_from_dict(data)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.toml")


def test_unsupported_suffix(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[governance]\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported config format"):
        load_config(path)


def test_malformed_toml(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("drift_threshold = = 1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Failed to parse config TOML"):
        load_config(path)


def test_non_mapping_yaml(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="config root must be a mapping"):
        load_config(path)


def test_with_overrides_keeps_other_values(tmp_path):
    config = GovernanceConfig(history_size=9).with_overrides(state_dir=Path(tmp_path))
    assert config.history_size == 9
    assert config.state_dir == tmp_path
