"""Shared pytest fixtures for fuzzctl tests.

Factory functions live in ``_helpers.py``; this module re-exports them as
pytest fixtures so tests can receive them via dependency injection.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from fuzzctl.core.config import ConfigManager, EngineConfigModel
from fuzzctl.core.orchestrator import FuzzingOrchestrator

from _helpers import (  # noqa: F401 re-export for fixture use
    make_config_manager,
    make_engine_config,
    make_registry,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config_manager(tmp_path: Path) -> ConfigManager:
    """A real ConfigManager backed by default config (no YAML/env file)."""
    return make_config_manager(tmp_path)


@pytest.fixture()
def engine_config(tmp_path: Path) -> EngineConfigModel:
    """Engine config with a per-test work directory and a fast monitor tick."""
    return make_engine_config(tmp_path)


@pytest.fixture()
def orchestrator(engine_config: EngineConfigModel) -> Iterator[FuzzingOrchestrator]:
    """An orchestrator with the built-in engines; shut down after the test."""
    orch = FuzzingOrchestrator(make_registry(engine_config), engine_config)
    yield orch
    orch.shutdown()
