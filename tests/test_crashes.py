"""Tests for CrashCollector and ResultAssembler."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

from fuzzctl.core.schema import SessionStatus, StatsRecord
from fuzzctl.execution.crashes import CrashCollector
from fuzzctl.execution.results import ResultAssembler, count_corpus


def test_collect_missing_dir_is_empty(tmp_path: Path) -> None:
    assert CrashCollector().collect(tmp_path / "output") == []


def test_collect_skips_readme_and_sorts(tmp_path: Path) -> None:
    crashes = tmp_path / "crashes"
    crashes.mkdir()
    (crashes / "README.txt").write_text("afl notes")
    (crashes / "id:000001,sig:06").write_bytes(b"b")
    (crashes / "id:000000,sig:11").write_bytes(b"a")
    found = CrashCollector().collect(tmp_path)
    assert [p.name for p in found] == ["id:000000,sig:11", "id:000001,sig:06"]


def test_collect_recurses_and_ignores_symlinks(tmp_path: Path) -> None:
    nested = tmp_path / "crashes" / "worker1"
    nested.mkdir(parents=True)
    real = nested / "id:000000"
    real.write_bytes(b"x")
    (tmp_path / "crashes" / "link").symlink_to(real)
    found = CrashCollector().collect(tmp_path)
    assert found == [real]


def test_collect_with_prefixes(tmp_path: Path) -> None:
    artifacts = tmp_path / "crashes"
    artifacts.mkdir()
    for name in ("crash-abc", "leak-def", "timeout-ghi", "oom-jkl", "notes.txt"):
        (artifacts / name).write_bytes(b"\x00")
    collector = CrashCollector(ignore_names=(), prefixes=("crash-", "leak-", "timeout-", "oom-"))
    names = {p.name for p in collector.collect(tmp_path)}
    assert names == {"crash-abc", "leak-def", "timeout-ghi", "oom-jkl"}


def test_count_corpus(tmp_path: Path) -> None:
    assert count_corpus(None) == 0
    assert count_corpus(tmp_path / "missing") == 0
    (tmp_path / "a").write_bytes(b"1")
    (tmp_path / "b").write_bytes(b"2")
    (tmp_path / "sub").mkdir()
    assert count_corpus(tmp_path) == 2


def _assemble(tmp_path: Path, **kwargs):
    start = datetime(2024, 1, 1, 12, 0, 0)
    defaults = dict(
        session_id="s1",
        engine_name="afl",
        status=SessionStatus.COMPLETED,
        start_time=start,
        end_time=start + timedelta(seconds=30),
        exit_code=0,
        stats=StatsRecord(total_execs=500, execs_per_sec=16.5, unique_crashes=1, coverage=9, peak_rss_mb=20),
        crash_files=[],
    )
    defaults.update(kwargs)
    return ResultAssembler().assemble(**defaults)


def test_assemble_populates_result(tmp_path: Path) -> None:
    crash = tmp_path / "crash-1"
    crash.write_bytes(b"x")
    result = _assemble(tmp_path, crash_files=[crash], peak_memory_mb=64)
    assert result.executions == 500
    assert result.coverage == 9
    assert result.crash_count == 1
    assert result.successful is True
    assert result.duration_seconds == 30.0
    assert result.statistics.execs_per_second == 16.5
    assert result.statistics.peak_memory_mb == 64
    assert result.statistics.crashes_found == 1


def test_assemble_truncates_crashes(tmp_path: Path) -> None:
    files = [tmp_path / f"crash-{i}" for i in range(5)]
    result = _assemble(tmp_path, crash_files=files, max_crashes=2)
    assert result.crash_files == tuple(files[:2])
    assert result.crash_count == len(result.crash_files) == 2
    assert result.statistics.crashes_found == 5


def test_assemble_nonzero_exit_not_successful(tmp_path: Path) -> None:
    result = _assemble(tmp_path, exit_code=1)
    assert result.successful is False


def test_assemble_corpus_size_from_directory(tmp_path: Path) -> None:
    queue = tmp_path / "queue"
    queue.mkdir()
    for i in range(3):
        (queue / f"id:{i}").write_bytes(b"x")
    result = _assemble(tmp_path, final_corpus_path=queue)
    assert result.final_corpus_size == 3
    assert result.statistics.corpus_size == 3


def test_failed_result() -> None:
    start = datetime.now()
    result = ResultAssembler().failed(
        session_id="s2", engine_name="libfuzzer", start_time=start, error_message="boom"
    )
    assert result.status is SessionStatus.ERROR
    assert result.error_message == "boom"
    assert result.crash_count == 0
    assert result.successful is False
