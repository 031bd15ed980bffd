"""Protocol for output formats."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from fuzzctl.core.schema import CoverageInfo, FuzzingResult, ReproductionResult


class Reporter(Protocol):
    """Protocol for writing session results to disk."""

    format_name: str

    def report_result(self, result: FuzzingResult, output: Path) -> None:
        """Write a fuzzing session result to output path."""
        ...

    def report_reproduction(self, result: ReproductionResult, output: Path) -> None:
        """Write a crash reproduction result to output path."""
        ...

    def report_coverage(self, data: CoverageInfo, output: Path) -> None:
        """Write coverage info to output path."""
        ...
