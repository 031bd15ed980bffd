"""libFuzzer engine adapter.

Registered as "libfuzzer". Runs instrumented binaries directly with
libFuzzer flags: new inputs go to ``output/queue``, artifacts to
``output/crashes/`` and the combined output to ``output/fuzzer.log``, which
doubles as the statistics source. Coverage is collected via llvm-profdata /
llvm-cov when the binary is built with source-based coverage.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Sequence

from fuzzctl.core.config import EngineConfigModel
from fuzzctl.core.exceptions import CoverageError, MinimizationError, SpawnError
from fuzzctl.core.schema import (
    CoverageInfo,
    FileCoverageInfo,
    FuzzingTask,
    LaunchSpec,
    ReproductionResult,
    StatsRecord,
)
from fuzzctl.engines.common import (
    build_env,
    engine_flag_options,
    prepare_workspace,
    reproduce_with,
    run_probe,
    strip_placeholder,
    substitute_input,
)
from fuzzctl.execution.crashes import CrashCollector
from fuzzctl.execution.process import run_helper
from fuzzctl.execution.stats import LibFuzzerStatsParser

log = logging.getLogger(__name__)

ARTIFACT_PREFIXES = ("crash-", "leak-", "timeout-", "oom-")
_RESERVED_FLAGS = ("artifact_prefix", "max_total_time", "rss_limit_mb", "print_final_stats", "print_corpus_stats")
_CLANG_VERSION_RE = re.compile(r"clang version\s+(\S+)")


class LibFuzzerEngine:
    """FuzzerEngine implementation for LLVM libFuzzer."""

    name = "libfuzzer"

    def __init__(self, **kwargs: object) -> None:
        self._clang = str(kwargs.get("clang_bin", "clang"))
        self._llvm_profdata = str(kwargs.get("llvm_profdata_bin", "llvm-profdata"))
        self._llvm_cov = str(kwargs.get("llvm_cov_bin", "llvm-cov"))
        self._config = EngineConfigModel()
        self.stats_parser = LibFuzzerStatsParser()
        self.crash_collector = CrashCollector(subdir="crashes", ignore_names=(), prefixes=ARTIFACT_PREFIXES)

    def initialize(self, config: EngineConfigModel) -> None:
        self._config = config
        log.debug("Initialized libFuzzer engine")

    # -- sessions ---------------------------------------------------------

    def prepare_session(self, task: FuzzingTask, session_dir: Path) -> LaunchSpec:
        """Build the libFuzzer command line for a session.

        Any ``engine_options`` entry is passed through as ``-key=value``
        (e.g. ``dict``, ``max_len``, ``jobs``), except the flags this
        adapter sets itself.
        """
        input_dir, output_dir = prepare_workspace(task, session_dir)
        corpus_dir = output_dir / "queue"
        crash_dir = self.crash_collector.crash_dir(output_dir)
        corpus_dir.mkdir(exist_ok=True)
        crash_dir.mkdir(exist_ok=True)

        command = [
            str(task.target_path),
            str(corpus_dir),
            str(input_dir),
            f"-artifact_prefix={crash_dir}/",
        ]
        if task.timeout_seconds > 0:
            command.append(f"-max_total_time={task.timeout_seconds}")
        if task.memory_limit_mb > 0:
            command.append(f"-rss_limit_mb={task.memory_limit_mb}")
        command += ["-print_final_stats=1", "-print_corpus_stats=1"]
        command += engine_flag_options(task.engine_options, _RESERVED_FLAGS)
        command += strip_placeholder(task.arguments)

        env_defaults: dict[str, str] = {}
        if task.enable_coverage:
            env_defaults["LLVM_PROFILE_FILE"] = str(output_dir / "default.profraw")

        return LaunchSpec(
            command=command,
            cwd=session_dir,
            env=build_env(env_defaults, task.environment),
            input_dir=input_dir,
            output_dir=output_dir,
            corpus_dir=corpus_dir,
            log_path=self.stats_parser.stats_path(output_dir),
        )

    def parse_stats(self, output_dir: Path) -> StatsRecord:
        return self.stats_parser.parse(self.stats_parser.stats_path(output_dir))

    def collect_crashes(self, output_dir: Path) -> list[Path]:
        return self.crash_collector.collect(output_dir)

    # -- helpers ----------------------------------------------------------

    def minimize(self, testcase: Path, target: Path, args: Sequence[str]) -> Path:
        """Minimize a crashing input with ``-minimize_crash=1``."""
        testcase = Path(testcase)
        work_dir = Path(tempfile.mkdtemp(prefix="minimize_"))
        minimized = work_dir / f"minimized_{testcase.name}"
        command = [
            str(target),
            "-minimize_crash=1",
            f"-max_total_time={self._config.minimize_time_seconds}",
            f"-exact_artifact_path={minimized}",
            str(testcase),
            *strip_placeholder(args),
        ]
        log.info("Running libFuzzer minimization: %s", " ".join(command))
        try:
            outcome, output = run_helper(
                command,
                cwd=work_dir,
                timeout=self._config.helper_timeout_seconds,
                tick=self._config.monitor_tick_seconds,
            )
        except SpawnError as e:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise MinimizationError(f"Minimization could not be started: {e}") from e

        if outcome.finished and outcome.exit_code == 0 and minimized.is_file():
            return minimized
        shutil.rmtree(work_dir, ignore_errors=True)
        if not outcome.finished:
            raise MinimizationError(f"Minimization exceeded {self._config.helper_timeout_seconds}s")
        log.debug("Minimization output:\n%s", output)
        raise MinimizationError(f"Minimization failed with exit code: {outcome.exit_code}")

    def reproduce(self, testcase: Path, target: Path, args: Sequence[str]) -> ReproductionResult:
        """Run the fuzz target once on ``testcase``."""
        command = [str(target), *substitute_input(args, Path(testcase))]
        log.info("Reproducing with: %s", " ".join(command))
        return reproduce_with(
            command,
            markers=self._config.crash_markers,
            timeout=self._config.helper_timeout_seconds,
            tick=self._config.monitor_tick_seconds,
            prefer_sanitizer_summary=True,
        )

    def coverage(self, testcase: Path, target: Path, args: Sequence[str]) -> CoverageInfo:
        """Run ``target`` on ``testcase`` with profiling and summarize with llvm-cov.

        Binaries without source-based coverage instrumentation, or a missing
        LLVM toolchain, give an empty CoverageInfo.
        """
        target = Path(target).resolve()
        work_dir = Path(tempfile.mkdtemp(prefix="libfuzzer_cov_"))
        profraw = work_dir / "default.profraw"
        profdata = work_dir / "default.profdata"
        try:
            command = [str(target), *substitute_input(args, Path(testcase))]
            try:
                run_helper(
                    command,
                    cwd=work_dir,
                    env=build_env({"LLVM_PROFILE_FILE": str(profraw)}, {}),
                    timeout=self._config.helper_timeout_seconds,
                    tick=self._config.monitor_tick_seconds,
                )
            except SpawnError as e:
                log.warning("Coverage run could not start: %s", e)
                return CoverageInfo()
            if not profraw.exists():
                log.warning("No profile written by %s; binary lacks coverage instrumentation", target.name)
                return CoverageInfo()
            try:
                return self._export_coverage(target, profraw, profdata)
            except CoverageError as e:
                log.warning("%s", e)
                return CoverageInfo()
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def _export_coverage(self, binary: Path, profraw: Path, profdata: Path) -> CoverageInfo:
        try:
            subprocess.run(
                [self._llvm_profdata, "merge", "-sparse", str(profraw), "-o", str(profdata)],
                capture_output=True,
                timeout=60,
                check=True,
            )
        except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise CoverageError(f"llvm-profdata merge failed: {e}") from e

        try:
            result = subprocess.run(
                [
                    self._llvm_cov, "export", "-summary-only",
                    "-instr-profile", str(profdata),
                    str(binary),
                ],
                capture_output=True,
                text=True,
                timeout=60,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise CoverageError(f"llvm-cov export failed: {e}") from e
        if result.returncode != 0 or not result.stdout:
            raise CoverageError(f"llvm-cov export exited with {result.returncode}")
        try:
            return coverage_from_export(json.loads(result.stdout), raw=result.stdout)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CoverageError(f"Coverage parsing failed: {e}") from e

    # -- metadata ---------------------------------------------------------

    def is_available(self) -> bool:
        ok, out = run_probe([self._clang, "--version"])
        return ok and "clang" in out

    def version(self) -> str:
        ok, out = run_probe([self._clang, "--version"])
        if ok:
            m = _CLANG_VERSION_RE.search(out)
            if m:
                return m.group(1)
        return "unknown"

    def supported_platforms(self) -> list[str]:
        return ["linux", "macos", "windows"]

    def supported_formats(self) -> list[str]:
        return ["binary", "text", "structured"]


def _pct(covered: int, total: int) -> float:
    return round(100.0 * covered / total, 2) if total else 0.0


def coverage_from_export(data: dict[str, Any], raw: str = "") -> CoverageInfo:
    """Build CoverageInfo from ``llvm-cov export -summary-only`` JSON."""
    export = data.get("data", [{}])[0]
    totals = export.get("totals", {})
    lines = totals.get("lines", {})
    functions = totals.get("functions", {})
    branches = totals.get("branches", {})

    files: dict[str, FileCoverageInfo] = {}
    for entry in export.get("files", []):
        name = entry.get("filename", "")
        summary = entry.get("summary", {}).get("lines", {})
        files[name] = FileCoverageInfo(
            filename=name,
            total_lines=summary.get("count", 0),
            covered_lines=summary.get("covered", 0),
            coverage_percentage=_pct(summary.get("covered", 0), summary.get("count", 0)),
        )

    return CoverageInfo(
        total_lines=lines.get("count", 0),
        covered_lines=lines.get("covered", 0),
        coverage_percentage=_pct(lines.get("covered", 0), lines.get("count", 0)),
        total_functions=functions.get("count", 0),
        covered_functions=functions.get("covered", 0),
        function_coverage_percentage=_pct(functions.get("covered", 0), functions.get("count", 0)),
        total_branches=branches.get("count", 0),
        covered_branches=branches.get("covered", 0),
        branch_coverage_percentage=_pct(branches.get("covered", 0), branches.get("count", 0)),
        file_coverage=files,
        raw_coverage_data=raw,
    )


def register(registry) -> None:
    """Register the libFuzzer engine."""
    registry.register(LibFuzzerEngine())
