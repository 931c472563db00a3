"""
Engine configuration.

Defaults reproduce the historical constants. A config file may be TOML or
YAML; values live either at the top level or under a `governance` table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

_SESSION_SAFE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class GovernanceConfig:
    # Drift accounting
    drift_threshold: float = 0.4
    violation_drift: float = 0.1
    reaffirm_drift: float = 0.05
    invocation_drift: float = 0.02
    reinforcement_drift: float = 0.3
    consecutive_violation_limit: int = 3

    # Repetition detection
    history_size: int = 5
    similarity_threshold: float = 0.90
    min_repetition_length: int = 20
    repetition_probe_length: int = 50
    min_streaming_check_length: int = 50

    # Integrity
    min_rule_count: int = 20
    min_memory_components: int = 5
    integrity_check_interval: int = 5
    snapshot_interval: int = 10

    state_dir: Path = field(default_factory=lambda: Path(".govkernel"))

    def session_dir(self, session_id: str) -> Path:
        safe = _SESSION_SAFE_RE.sub("_", session_id).strip("._") or "default"
        return self.state_dir / safe

    def state_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "state.json"

    def event_log_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "events.jsonl"

    def with_overrides(self, **overrides: Any) -> "GovernanceConfig":
        return replace(self, **overrides)


def _coerce(name: str, expected: Any, value: Any) -> Any:
    if name == "state_dir":
        if not isinstance(value, (str, Path)):
            raise ValueError(f"{name} must be a path string")
        return Path(value)
    if isinstance(expected, bool) or isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if isinstance(expected, int):
        if not isinstance(value, int):
            raise ValueError(f"{name} must be an integer, got {value!r}")
        if value < 0:
            raise ValueError(f"{name} must be non-negative")
        return value
    if isinstance(expected, float):
        if not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        return float(value)
    return value


def config_from_dict(data: dict[str, Any], base: GovernanceConfig | None = None) -> GovernanceConfig:
    """Build a config from a mapping, validating names and types."""
    base = base or GovernanceConfig()
    section = data.get("governance", data)
    if not isinstance(section, dict):
        raise ValueError("governance section must be a table")

    known = {f.name for f in fields(GovernanceConfig)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(unknown)}")

    overrides = {name: _coerce(name, getattr(base, name), value) for name, value in section.items()}
    for name in ("drift_threshold", "similarity_threshold"):
        value = overrides.get(name)
        if value is not None and not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be within [0, 1]")
    for name in ("integrity_check_interval", "snapshot_interval", "history_size"):
        if overrides.get(name) == 0:
            raise ValueError(f"{name} must be positive")
    return replace(base, **overrides)


def load_config(path: Path) -> GovernanceConfig:
    """
    Load configuration from a TOML or YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is malformed or holds invalid values
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".toml":
        import tomllib

        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Failed to parse config TOML: {e}") from e
    elif suffix in (".yml", ".yaml"):
        import yaml

        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse config YAML: {e}") from e
    else:
        raise ValueError(f"Unsupported config format: {path.suffix or '(none)'}")

    if not isinstance(data, dict):
        raise ValueError("config root must be a mapping")

    config = config_from_dict(data)
    if not config.state_dir.is_absolute():
        config = replace(config, state_dir=(path.parent / config.state_dir))
    return config
