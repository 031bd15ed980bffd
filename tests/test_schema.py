"""Tests for core data models."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from fuzzctl.core.schema import FuzzingResult, FuzzingTask, SessionStatus


def test_fuzzing_task_defaults() -> None:
    task = FuzzingTask(target_path=Path("/bin/target"))
    assert task.arguments == ()
    assert task.timeout_seconds == 0
    assert task.max_crashes == 0
    assert task.display_name == "target"


def test_fuzzing_task_display_name_prefers_target_name() -> None:
    assert FuzzingTask(target_path=Path("/bin/target"), target_name="png").display_name == "png"


def test_fuzzing_task_is_frozen() -> None:
    task = FuzzingTask(target_path=Path("/bin/target"))
    with pytest.raises(ValidationError):
        task.timeout_seconds = 10


@pytest.mark.parametrize("field", ["timeout_seconds", "memory_limit_mb", "max_crashes"])
def test_fuzzing_task_rejects_negative(field: str) -> None:
    with pytest.raises(ValidationError):
        FuzzingTask(target_path=Path("/bin/target"), **{field: -1})


def test_session_status_terminal() -> None:
    assert not SessionStatus.RUNNING.is_terminal
    assert not SessionStatus.UNKNOWN.is_terminal
    assert all(
        s.is_terminal
        for s in (SessionStatus.COMPLETED, SessionStatus.TIMEOUT, SessionStatus.STOPPED, SessionStatus.ERROR)
    )


def test_fuzzing_result_derived_fields() -> None:
    start = datetime(2024, 1, 1)
    result = FuzzingResult(
        session_id="s",
        engine_name="afl",
        status=SessionStatus.COMPLETED,
        start_time=start,
        end_time=start + timedelta(seconds=3),
        crash_files=(Path("a"), Path("b")),
        exit_code=0,
    )
    assert result.crash_count == 2
    assert result.successful is True
    assert result.duration_seconds == 3.0
    assert result.model_copy(update={"exit_code": 1}).successful is False
