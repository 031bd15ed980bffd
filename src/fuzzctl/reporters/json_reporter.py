"""JSON reporter: write session results, reproductions and coverage as JSON."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel

from fuzzctl.core.schema import CoverageInfo, FuzzingResult, ReproductionResult


def _write(model: BaseModel, output: Path) -> None:
    output = Path(output).resolve()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(model.model_dump(mode="json"), indent=2), encoding="utf-8")


class JsonReporter:
    """Reporter that writes one JSON document per call."""

    format_name: str = "json"

    def report_result(self, result: FuzzingResult, output: Path) -> None:
        """Write a session result (including crash_count and successful)."""
        _write(result, output)

    def report_reproduction(self, result: ReproductionResult, output: Path) -> None:
        _write(result, output)

    def report_coverage(self, data: CoverageInfo, output: Path) -> None:
        """Write coverage totals and per-file coverage; raw llvm-cov data is omitted."""
        output = Path(output).resolve()
        output.parent.mkdir(parents=True, exist_ok=True)
        payload = data.model_dump(mode="json", exclude={"raw_coverage_data"})
        output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
