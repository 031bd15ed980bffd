"""Tests for JsonReporter."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from fuzzctl.core.schema import (
    CoverageInfo,
    FileCoverageInfo,
    FuzzingResult,
    ReproductionResult,
    SessionStatus,
)
from fuzzctl.reporters import BUILTIN_REPORTERS, JsonReporter, get_reporter


def test_json_reporter_result(tmp_path: Path) -> None:
    start = datetime(2024, 5, 1, 8, 0, 0)
    result = FuzzingResult(
        session_id="abc",
        engine_name="afl",
        status=SessionStatus.TIMEOUT,
        start_time=start,
        end_time=start + timedelta(seconds=61),
        executions=10,
        crash_files=(tmp_path / "id:000000",),
        exit_code=None,
        error_message="Session timed out after 60s",
    )
    out = tmp_path / "reports" / "result.json"
    JsonReporter().report_result(result, out)
    data = json.loads(out.read_text())
    assert data["status"] == "timeout"
    assert data["crash_count"] == 1
    assert data["successful"] is False
    assert data["crash_files"] == [str(tmp_path / "id:000000")]
    assert data["start_time"] == "2024-05-01T08:00:00"


def test_json_reporter_reproduction(tmp_path: Path) -> None:
    out = tmp_path / "repro.json"
    JsonReporter().report_reproduction(
        ReproductionResult(reproduced=True, exit_code=-11, crash_type="SIGSEGV", signal=11), out
    )
    data = json.loads(out.read_text())
    assert data["reproduced"] is True
    assert data["signal"] == 11


def test_json_reporter_coverage_omits_raw_data(tmp_path: Path) -> None:
    info = CoverageInfo(
        total_lines=10,
        covered_lines=5,
        coverage_percentage=50.0,
        file_coverage={"a.c": FileCoverageInfo(filename="a.c", total_lines=10, covered_lines=5, coverage_percentage=50.0)},
        raw_coverage_data="{...}",
    )
    out = tmp_path / "cov.json"
    JsonReporter().report_coverage(info, out)
    data = json.loads(out.read_text())
    assert data["coverage_percentage"] == 50.0
    assert data["file_coverage"]["a.c"]["covered_lines"] == 5
    assert "raw_coverage_data" not in data


def test_get_reporter() -> None:
    assert isinstance(get_reporter("json"), JsonReporter)
    assert set(BUILTIN_REPORTERS) == {"json"}
    with pytest.raises(ValueError, match="Unknown report format"):
        get_reporter("sarif")
