"""Built-in reporters for session results."""

from fuzzctl.protocols import Reporter
from fuzzctl.reporters.json_reporter import JsonReporter

BUILTIN_REPORTERS: dict[str, type] = {"json": JsonReporter}


def get_reporter(format_name: str) -> Reporter:
    """Instantiate a built-in reporter by format name."""
    try:
        return BUILTIN_REPORTERS[format_name]()
    except KeyError:
        raise ValueError(f"Unknown report format: {format_name}") from None


__all__ = [
    "BUILTIN_REPORTERS",
    "JsonReporter",
    "get_reporter",
]
