"""Tests for the AFL++ engine adapter."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from fuzzctl.core.exceptions import MinimizationError
from fuzzctl.core.orchestrator import FuzzingOrchestrator
from fuzzctl.core.registry import EngineRegistry
from fuzzctl.core.schema import CoverageInfo, SessionStatus
from fuzzctl.engines.afl import AFL_ENV_DEFAULTS, AFLEngine, register

from _helpers import make_engine_config, make_fake_afl_fuzz, make_script, make_task


def test_register() -> None:
    reg = EngineRegistry()
    register(reg)
    assert "afl" in reg.list_available()["fuzzer_engines"]


class TestPrepareSession:
    def test_command_line(self, tmp_path: Path) -> None:
        engine = AFLEngine(afl_fuzz_bin="/opt/afl/afl-fuzz")
        task = make_task(
            Path("/targets/parse"),
            arguments=("-f", "@@"),
            timeout_seconds=60,
            memory_limit_mb=512,
            engine_options={"exec_timeout_ms": "1000+", "dictionary": "/d/tokens.dict"},
        )
        spec = engine.prepare_session(task, tmp_path / "sess")
        input_dir = tmp_path / "sess" / "input"
        output_dir = tmp_path / "sess" / "output"
        assert spec.command == [
            "/opt/afl/afl-fuzz",
            "-i", str(input_dir),
            "-o", str(output_dir),
            "-m", "512",
            "-t", "1000+",
            "-V", "60",
            "-x", "/d/tokens.dict",
            "-d",
            "--", "/targets/parse",
            "-f", "@@",
        ]
        assert spec.corpus_dir == output_dir / "queue"
        assert spec.cwd == tmp_path / "sess"
        assert (input_dir / "seed").is_file()

    def test_placeholder_appended(self, tmp_path: Path) -> None:
        spec = AFLEngine().prepare_session(make_task(Path("/t"), arguments=("-q",)), tmp_path / "s")
        assert spec.command[-2:] == ["-q", "@@"]

    def test_stdin_input_keeps_args(self, tmp_path: Path) -> None:
        task = make_task(Path("/t"), arguments=("-q",), engine_options={"stdin_input": "true"})
        spec = AFLEngine().prepare_session(task, tmp_path / "s")
        assert spec.command[-2:] == ["/t", "-q"]

    def test_unbounded_session_has_no_time_limit(self, tmp_path: Path) -> None:
        spec = AFLEngine().prepare_session(make_task(Path("/t"), timeout_seconds=0), tmp_path / "s")
        assert "-V" not in spec.command

    def test_environment(self, tmp_path: Path) -> None:
        task = make_task(Path("/t"), environment={"AFL_NO_UI": "0", "EXTRA": "1"})
        spec = AFLEngine().prepare_session(task, tmp_path / "s")
        assert spec.env["AFL_SKIP_CPUFREQ"] == AFL_ENV_DEFAULTS["AFL_SKIP_CPUFREQ"]
        assert spec.env["AFL_NO_UI"] == "0"
        assert spec.env["EXTRA"] == "1"

    def test_engine_binary_path(self) -> None:
        engine = AFLEngine()
        engine.initialize(make_engine_config(Path("/tmp"), engine_binary_path="/opt/aflpp"))
        with patch("fuzzctl.engines.afl.run_probe", return_value=(False, "command not found")) as m:
            engine.is_available()
        assert m.call_args[0][0][0] == "/opt/aflpp/afl-fuzz"


def test_session_with_fake_afl_fuzz(tmp_path: Path) -> None:
    fake = make_fake_afl_fuzz(tmp_path / "bin" / "afl-fuzz", crashes=2, execs=777)
    config = make_engine_config(tmp_path)
    registry = EngineRegistry(config)
    registry.register(AFLEngine(afl_fuzz_bin=str(fake)))
    with FuzzingOrchestrator(registry, config, default_engine="afl") as orch:
        future = orch.start_fuzzing(make_task(Path("/bin/true"), engine_name="afl"))
        result = future.result(timeout=20)

    assert result.status is SessionStatus.COMPLETED
    assert result.engine_name == "afl"
    assert result.exit_code == 0
    assert result.executions == 777
    assert result.crash_count == 2
    assert all(p.name.startswith("id:") for p in result.crash_files)
    assert result.statistics.execs_per_second == 250.5
    assert result.final_corpus_size == 1
    session_dir = Path(config.work_directory) / future.session_id
    assert (session_dir / "output" / "fuzzer_stats").is_file()
    assert (session_dir / "session.log").is_file()


def test_parse_stats_and_crashes_missing(tmp_path: Path) -> None:
    engine = AFLEngine()
    assert engine.parse_stats(tmp_path).total_execs == 0
    assert engine.collect_crashes(tmp_path) == []


class TestHelpers:
    def test_minimize_with_fake_tmin(self, tmp_path: Path) -> None:
        tmin = make_script(
            tmp_path / "afl-tmin",
            'while [ $# -gt 0 ]; do\n'
            '  case "$1" in -i) in="$2"; shift;; -o) out="$2"; shift;; --) break;; esac\n'
            '  shift\n'
            'done\n'
            'head -c 1 "$in" > "$out"',
        )
        testcase = tmp_path / "crash"
        testcase.write_bytes(b"ABCDEF")
        engine = AFLEngine(afl_tmin_bin=str(tmin))
        engine.initialize(make_engine_config(tmp_path))
        minimized = engine.minimize(testcase, Path("/bin/true"), [])
        try:
            assert minimized.read_bytes() == b"A"
            assert minimized.name == "minimized_crash"
        finally:
            minimized.unlink()
            minimized.parent.rmdir()

    def test_minimize_failure_raises(self, tmp_path: Path) -> None:
        tmin = make_script(tmp_path / "afl-tmin", "exit 2")
        testcase = tmp_path / "crash"
        testcase.write_bytes(b"X")
        engine = AFLEngine(afl_tmin_bin=str(tmin))
        engine.initialize(make_engine_config(tmp_path))
        with pytest.raises(MinimizationError, match="exit code: 2"):
            engine.minimize(testcase, Path("/bin/true"), [])

    def test_minimize_missing_tool_raises(self, tmp_path: Path) -> None:
        testcase = tmp_path / "crash"
        testcase.write_bytes(b"X")
        engine = AFLEngine(afl_tmin_bin=str(tmp_path / "no-tmin"))
        with pytest.raises(MinimizationError, match="could not be started"):
            engine.minimize(testcase, Path("/bin/true"), [])

    def test_reproduce_substitutes_input(self, tmp_path: Path) -> None:
        target = make_script(tmp_path / "target.sh", 'cat "$2"\nkill -SEGV $$')
        testcase = tmp_path / "crash"
        testcase.write_bytes(b"payload")
        engine = AFLEngine()
        engine.initialize(make_engine_config(tmp_path))
        result = engine.reproduce(testcase, target, ["-f", "@@"])
        assert result.reproduced is True
        assert "payload" in result.output
        assert result.crash_type == "SIGSEGV"
        assert result.signal == 11

    def test_coverage_is_empty(self, tmp_path: Path) -> None:
        assert AFLEngine().coverage(tmp_path / "x", Path("/bin/true"), []) == CoverageInfo()


class TestMetadata:
    def test_version_from_help(self) -> None:
        out = "afl-fuzz++4.09c based on afl by Michal Zalewski and a large online community\n"
        with patch("fuzzctl.engines.afl.run_probe", return_value=(True, out)):
            engine = AFLEngine()
            assert engine.is_available() is True
            assert engine.version() == "4.09c"

    def test_not_available(self) -> None:
        with patch("fuzzctl.engines.afl.run_probe", return_value=(False, "command not found")):
            engine = AFLEngine()
            assert engine.is_available() is False
            assert engine.version() == "unknown"

    def test_platforms_and_formats(self) -> None:
        engine = AFLEngine()
        assert engine.supported_platforms() == ["linux", "macos"]
        assert "file-based" in engine.supported_formats()
