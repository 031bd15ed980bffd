"""Protocol interfaces for pluggable components."""

from fuzzctl.protocols.fuzzer_engine import FuzzerEngine
from fuzzctl.protocols.reporter import Reporter

__all__ = [
    "FuzzerEngine",
    "Reporter",
]
