"""Registry of fuzzing engine adapters, keyed by engine name."""

from __future__ import annotations

import logging
import threading

from fuzzctl.core.config import EngineConfigModel
from fuzzctl.core.exceptions import UnknownEngineError
from fuzzctl.protocols import FuzzerEngine

log = logging.getLogger(__name__)


class EngineRegistry:
    """Name → adapter dispatch table.

    Names are case-insensitive. Every registered adapter is initialized with
    the registry's engine config, and re-initialized on :meth:`configure`.
    """

    def __init__(self, config: EngineConfigModel | None = None) -> None:
        self._config = config or EngineConfigModel()
        self._engines: dict[str, FuzzerEngine] = {}
        self._lock = threading.Lock()

    def register(self, adapter: FuzzerEngine, *, require_available: bool = False) -> bool:
        """Register an adapter instance; return False if skipped as unavailable."""
        key = adapter.name.lower()
        if require_available and not adapter.is_available():
            log.warning("Fuzzing engine %s is not available", adapter.name)
            return False
        adapter.initialize(self._config)
        with self._lock:
            if key in self._engines:
                log.warning("Overwriting fuzzer engine registration: %s", key)
            self._engines[key] = adapter
        log.info("Registered fuzzing engine: %s", adapter.name)
        return True

    def resolve(self, name: str) -> FuzzerEngine:
        """Get an adapter by name."""
        with self._lock:
            adapter = self._engines.get((name or "").lower())
        if adapter is None:
            raise UnknownEngineError(f"Unknown fuzzer engine: {name}")
        return adapter

    def configure(self, config: EngineConfigModel) -> None:
        """Replace the engine config and re-initialize every adapter."""
        with self._lock:
            self._config = config
            adapters = list(self._engines.values())
        for adapter in adapters:
            adapter.initialize(config)

    @property
    def config(self) -> EngineConfigModel:
        return self._config

    def names(self) -> list[str]:
        with self._lock:
            return list(self._engines)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        with self._lock:
            return name.lower() in self._engines

    def list_available(self) -> dict[str, list[str]]:
        """Return registered engine names by category."""
        return {"fuzzer_engines": self.names()}
