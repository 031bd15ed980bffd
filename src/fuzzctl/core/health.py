"""Health checks for registered fuzzing engines and the work directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from fuzzctl.core.config import ConfigManager
from fuzzctl.core.exceptions import UnknownEngineError
from fuzzctl.core.registry import EngineRegistry

_SUGGESTIONS = {
    "afl": "Install AFL++ (e.g. apt install afl++) or set AFL_FUZZ_BIN to the afl-fuzz binary.",
    "libfuzzer": "Install LLVM/clang (e.g. apt install clang); libFuzzer ships with clang.",
}


@dataclass
class HealthCheckResult:
    """Result of a single health check."""

    name: str
    ok: bool
    message: str = ""
    suggestion: str = ""


class HealthChecker:
    """Check that engines are usable on this host."""

    def __init__(
        self,
        config: ConfigManager | None = None,
        registry: EngineRegistry | None = None,
    ) -> None:
        self._config = config or ConfigManager()
        self._registry = registry or EngineRegistry(self._config.config.engine)

    def check_engine(self, name: str) -> HealthCheckResult:
        """Engine is registered and its tooling answers a version probe."""
        try:
            adapter = self._registry.resolve(name)
        except UnknownEngineError:
            avail = self._registry.names()
            return HealthCheckResult(
                name=name,
                ok=False,
                message=f"No fuzzer engine '{name}' registered. Available: {', '.join(avail) or 'none'}.",
                suggestion="Add an engine plugin under plugins/ that implements register(registry).",
            )
        if not adapter.is_available():
            return HealthCheckResult(
                name=name,
                ok=False,
                message=f"{name} tooling not found.",
                suggestion=_SUGGESTIONS.get(name, f"Install the {name} fuzzer and make it available on PATH."),
            )
        return HealthCheckResult(name=name, ok=True, message=f"{name} {adapter.version()}")

    def check_work_directory(self) -> HealthCheckResult:
        """Work directory exists (or can be created) and is writable."""
        work_dir = Path(self._config.config.engine.work_directory)
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return HealthCheckResult(
                name="work_directory",
                ok=False,
                message=f"Cannot create {work_dir}: {e}",
                suggestion="Set FUZZ_WORK_DIR to a writable directory.",
            )
        if not os.access(work_dir, os.W_OK):
            return HealthCheckResult(
                name="work_directory",
                ok=False,
                message=f"{work_dir} is not writable.",
                suggestion="Set FUZZ_WORK_DIR to a writable directory.",
            )
        return HealthCheckResult(name="work_directory", ok=True, message=str(work_dir))

    def check_all(self, *, engines: list[str] | None = None) -> list[HealthCheckResult]:
        """Check the work directory and each engine (all registered by default)."""
        results = [self.check_work_directory()]
        for name in engines if engines is not None else self._registry.names():
            results.append(self.check_engine(name))
        return results
