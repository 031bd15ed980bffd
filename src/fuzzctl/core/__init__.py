"""Framework core: config, schema, engine registry, plugin loader, health.

The orchestrator and session registry live in ``fuzzctl.core.orchestrator``
and ``fuzzctl.core.sessions``; they depend on ``fuzzctl.execution``.
"""

from fuzzctl.core.config import ConfigManager, EngineConfigModel
from fuzzctl.core.health import HealthChecker, HealthCheckResult
from fuzzctl.core.plugin_loader import PluginLoader
from fuzzctl.core.registry import EngineRegistry
from fuzzctl.core.schema import (
    CoverageInfo,
    FuzzingResult,
    FuzzingStatistics,
    FuzzingTask,
    PluginInfo,
    ReproductionResult,
    SessionStatus,
)

__all__ = [
    "ConfigManager",
    "CoverageInfo",
    "EngineConfigModel",
    "EngineRegistry",
    "FuzzingResult",
    "FuzzingStatistics",
    "FuzzingTask",
    "HealthCheckResult",
    "HealthChecker",
    "PluginInfo",
    "PluginLoader",
    "ReproductionResult",
    "SessionStatus",
]
