"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from govkernel.config import GovernanceConfig
from govkernel.engine import GovernanceEngine
from govkernel.rules.catalog import builtin_rules
from govkernel.rules.registry import RuleRegistry


@pytest.fixture
def config(tmp_path: Path) -> GovernanceConfig:
    """Default configuration with state kept under tmp_path."""
    return GovernanceConfig(state_dir=tmp_path / "state")


@pytest.fixture
def registry() -> RuleRegistry:
    """Fresh registry holding the compiled-in rules."""
    return RuleRegistry(builtin_rules())


@pytest.fixture
def engine(registry: RuleRegistry, config: GovernanceConfig) -> GovernanceEngine:
    """Engine that has been through its first cycle."""
    engine = GovernanceEngine(registry, config, session_id="test")
    engine.on_cycle_start()
    return engine


@pytest.fixture
def fresh_engine(registry: RuleRegistry, config: GovernanceConfig) -> GovernanceEngine:
    """Engine before its first cycle."""
    return GovernanceEngine(registry, config, session_id="test")
