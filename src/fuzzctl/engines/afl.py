"""AFL++ engine adapter.

Registered as "afl". Runs ``afl-fuzz`` headless against a session workspace
(``input/`` seeds, ``output/`` findings), reads ``output/fuzzer_stats`` and
collects ``output/crashes/``. Minimization uses ``afl-tmin``.

AFL++ has no built-in coverage export, so :meth:`AFLEngine.coverage`
returns an all-zero CoverageInfo.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Sequence

from fuzzctl.core.config import EngineConfigModel
from fuzzctl.core.exceptions import MinimizationError, SpawnError
from fuzzctl.core.schema import (
    CoverageInfo,
    FuzzingTask,
    LaunchSpec,
    ReproductionResult,
    StatsRecord,
)
from fuzzctl.engines.common import (
    build_env,
    ensure_placeholder,
    prepare_workspace,
    reproduce_with,
    run_probe,
    substitute_input,
)
from fuzzctl.execution.crashes import CrashCollector
from fuzzctl.execution.process import run_helper
from fuzzctl.execution.stats import AFLStatsParser

log = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"\b(\d+\.\d+[\w.+-]*)")

AFL_ENV_DEFAULTS = {
    "AFL_NO_UI": "1",
    "AFL_SKIP_CPUFREQ": "1",
    "AFL_I_DONT_CARE_ABOUT_MISSING_CRASHES": "1",
}


class AFLEngine:
    """FuzzerEngine implementation for AFL++."""

    name = "afl"

    def __init__(self, **kwargs: object) -> None:
        self._afl_fuzz = str(kwargs.get("afl_fuzz_bin", "afl-fuzz"))
        self._afl_tmin = str(kwargs.get("afl_tmin_bin", "afl-tmin"))
        self._config = EngineConfigModel()
        self.stats_parser = AFLStatsParser()
        self.crash_collector = CrashCollector(subdir="crashes", ignore_names=("README.txt",))

    def initialize(self, config: EngineConfigModel) -> None:
        self._config = config
        if config.engine_binary_path:
            base = Path(config.engine_binary_path)
            if self._afl_fuzz == "afl-fuzz":
                self._afl_fuzz = str(base / "afl-fuzz")
            if self._afl_tmin == "afl-tmin":
                self._afl_tmin = str(base / "afl-tmin")
        log.debug("Initialized AFL engine (afl-fuzz=%s)", self._afl_fuzz)

    # -- sessions ---------------------------------------------------------

    def prepare_session(self, task: FuzzingTask, session_dir: Path) -> LaunchSpec:
        """Build the afl-fuzz command for a session.

        Supported engine options:
            exec_timeout_ms: per-execution timeout (afl-fuzz -t)
            stdin_input: "true" to feed inputs on stdin instead of appending @@
            dictionary: token dictionary file (afl-fuzz -x)
        """
        input_dir, output_dir = prepare_workspace(task, session_dir)
        opts = task.engine_options

        command = [self._afl_fuzz, "-i", str(input_dir), "-o", str(output_dir)]
        if task.memory_limit_mb > 0:
            command += ["-m", str(task.memory_limit_mb)]
        if opts.get("exec_timeout_ms"):
            command += ["-t", str(opts["exec_timeout_ms"])]
        if task.timeout_seconds > 0:
            command += ["-V", str(task.timeout_seconds)]
        if opts.get("dictionary"):
            command += ["-x", str(opts["dictionary"])]
        command.append("-d")  # skip deterministic stage
        command += ["--", str(task.target_path)]

        args = list(task.arguments)
        if str(opts.get("stdin_input", "")).lower() != "true":
            args = ensure_placeholder(args)
        command += args

        return LaunchSpec(
            command=command,
            cwd=session_dir,
            env=build_env(AFL_ENV_DEFAULTS, task.environment),
            input_dir=input_dir,
            output_dir=output_dir,
            corpus_dir=output_dir / "queue",
            log_path=output_dir / "afl.log",
        )

    def parse_stats(self, output_dir: Path) -> StatsRecord:
        return self.stats_parser.parse(self.stats_parser.stats_path(output_dir))

    def collect_crashes(self, output_dir: Path) -> list[Path]:
        return self.crash_collector.collect(output_dir)

    # -- helpers ----------------------------------------------------------

    def minimize(self, testcase: Path, target: Path, args: Sequence[str]) -> Path:
        """Minimize ``testcase`` with afl-tmin in a fresh temporary directory."""
        testcase = Path(testcase)
        work_dir = Path(tempfile.mkdtemp(prefix="afl_tmin_"))
        minimized = work_dir / f"minimized_{testcase.name}"
        command = [
            self._afl_tmin,
            "-i", str(testcase),
            "-o", str(minimized),
            "--", str(target),
            *ensure_placeholder(args),
        ]
        log.info("Running afl-tmin: %s", " ".join(command))
        try:
            outcome, output = run_helper(
                command,
                cwd=work_dir,
                env=build_env(AFL_ENV_DEFAULTS, {}),
                timeout=self._config.helper_timeout_seconds,
                tick=self._config.monitor_tick_seconds,
            )
        except SpawnError as e:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise MinimizationError(f"afl-tmin could not be started: {e}") from e

        if outcome.finished and outcome.exit_code == 0 and minimized.is_file():
            return minimized
        shutil.rmtree(work_dir, ignore_errors=True)
        if not outcome.finished:
            raise MinimizationError(f"afl-tmin exceeded {self._config.helper_timeout_seconds}s")
        log.debug("afl-tmin output:\n%s", output)
        raise MinimizationError(f"AFL minimization failed with exit code: {outcome.exit_code}")

    def reproduce(self, testcase: Path, target: Path, args: Sequence[str]) -> ReproductionResult:
        """Run ``target`` directly on ``testcase`` (outside afl-fuzz)."""
        command = [str(target), *substitute_input(args, Path(testcase))]
        log.info("Reproducing with: %s", " ".join(command))
        return reproduce_with(
            command,
            markers=self._config.crash_markers,
            timeout=self._config.helper_timeout_seconds,
            tick=self._config.monitor_tick_seconds,
        )

    def coverage(self, testcase: Path, target: Path, args: Sequence[str]) -> CoverageInfo:
        """AFL++ has no coverage export path here; return an empty record."""
        log.debug("Coverage not supported by the AFL engine; returning empty CoverageInfo")
        return CoverageInfo()

    # -- metadata ---------------------------------------------------------

    def is_available(self) -> bool:
        ok, out = run_probe([self._afl_fuzz, "-h"])
        return ok and "afl-fuzz" in out

    def version(self) -> str:
        ok, out = run_probe([self._afl_fuzz, "-h"])
        if ok:
            for line in out.splitlines():
                if "afl-fuzz" in line:
                    m = _VERSION_RE.search(line)
                    if m:
                        return m.group(1)
        return "unknown"

    def supported_platforms(self) -> list[str]:
        return ["linux", "macos"]

    def supported_formats(self) -> list[str]:
        return ["binary", "file-based"]


def register(registry) -> None:
    """Register the AFL++ engine."""
    registry.register(AFLEngine())
