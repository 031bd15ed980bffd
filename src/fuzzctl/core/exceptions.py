"""Custom exception hierarchy for fuzzctl."""

from __future__ import annotations


class FuzzCtlError(Exception):
    """Base exception for fuzzctl."""

    pass


class ConfigError(FuzzCtlError):
    """Raised when configuration loading or validation fails."""

    pass


class RegistryError(FuzzCtlError):
    """Raised when a component is not found or registration fails."""

    pass


class UnknownEngineError(RegistryError):
    """Raised when a caller requests an engine name that is not registered."""

    pass


class PluginLoadError(FuzzCtlError):
    """Raised when a plugin fails to load."""

    pass


class SpawnError(FuzzCtlError):
    """Raised when an external process could not be created."""

    pass


class StatsUnavailable(FuzzCtlError):
    """Raised when a statistics file is missing or unreadable."""

    pass


class MalformedStatsLine(FuzzCtlError):
    """Raised when a single statistics value cannot be converted."""

    pass


class MinimizationError(FuzzCtlError):
    """Raised when the minimization helper fails or produces no output."""

    pass


class ReproductionError(FuzzCtlError):
    """Raised when a crash reproduction run cannot be carried out."""

    pass


class CoverageError(FuzzCtlError):
    """Raised when coverage tooling fails unexpectedly."""

    pass
