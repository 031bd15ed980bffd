"""Built-in fuzzing engine adapters."""

from __future__ import annotations

from typing import Any, Mapping

from fuzzctl.engines.afl import AFLEngine
from fuzzctl.engines.libfuzzer import LibFuzzerEngine

BUILTIN_ENGINES = {
    "libfuzzer": LibFuzzerEngine,
    "afl": AFLEngine,
}


def register_builtin_engines(registry, engine_options: Mapping[str, Mapping[str, Any]] | None = None) -> None:
    """Register built-in engine adapters on the given registry."""
    engine_options = engine_options or {}
    for name, cls in BUILTIN_ENGINES.items():
        registry.register(cls(**dict(engine_options.get(name) or {})))


__all__ = [
    "AFLEngine",
    "BUILTIN_ENGINES",
    "LibFuzzerEngine",
    "register_builtin_engines",
]
