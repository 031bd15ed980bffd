"""Shared test helpers and factory functions for fuzzctl tests.

Import this module directly from test files::

    from _helpers import make_engine_config, make_script

Pytest fixtures that wrap these factories live in ``conftest.py``.
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import Any

from fuzzctl.core.config import ConfigManager, EngineConfigModel
from fuzzctl.core.registry import EngineRegistry
from fuzzctl.core.schema import CoverageInfo, FuzzingTask, LaunchSpec, ReproductionResult, StatsRecord
from fuzzctl.engines import register_builtin_engines


# ---------------------------------------------------------------------------
# Config factories
# ---------------------------------------------------------------------------


def make_config_manager(tmp_path: Path) -> ConfigManager:
    """Create a real ConfigManager pointed at a nonexistent config/env so defaults are used."""
    mgr = ConfigManager(project_root=tmp_path)
    mgr._config_path = tmp_path / "nonexistent.yaml"
    mgr._env_path = tmp_path / ".env"
    mgr.load()
    return mgr


def make_engine_config(tmp_path: Path, **overrides: Any) -> EngineConfigModel:
    """Engine config with a per-test work directory and a fast monitor tick."""
    values: dict[str, Any] = {
        "work_directory": str(tmp_path / "work"),
        "monitor_tick_seconds": 0.05,
        "helper_timeout_seconds": 10,
        "timeout_grace_seconds": 0.5,
    }
    values.update(overrides)
    return EngineConfigModel(**values)


def make_registry(config: EngineConfigModel | None = None) -> EngineRegistry:
    """Registry with the built-in engines registered."""
    registry = EngineRegistry(config)
    register_builtin_engines(registry)
    return registry


# ---------------------------------------------------------------------------
# Target factories
# ---------------------------------------------------------------------------


def make_script(path: Path, body: str) -> Path:
    """Write an executable ``sh`` script and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def make_fake_afl_fuzz(path: Path, *, crashes: int = 1, execs: int = 1234) -> Path:
    """A stand-in for ``afl-fuzz``: writes fuzzer_stats, a queue entry and crashes into ``-o``."""
    lines = [
        'out=""',
        'while [ $# -gt 0 ]; do',
        '  if [ "$1" = "-o" ]; then out="$2"; shift; fi',
        '  if [ "$1" = "--" ]; then break; fi',
        "  shift",
        "done",
        'mkdir -p "$out/queue" "$out/crashes"',
        'printf "x" > "$out/queue/id:000000,orig:seed"',
        'echo "Command line used to find this crash" > "$out/crashes/README.txt"',
    ]
    for i in range(crashes):
        lines.append(f'printf "crash{i}" > "$out/crashes/id:00000{i},sig:11,src:000000"')
    lines += [
        "cat > \"$out/fuzzer_stats\" <<EOF",
        "start_time        : 1700000000",
        f"execs_done        : {execs}",
        "execs_per_sec     : 250.50",
        "corpus_count      : 1",
        f"saved_crashes     : {crashes}",
        "saved_hangs       : 0",
        "map_size          : 4.20%",
        "peak_rss_mb       : 12",
        "EOF",
        "exit 0",
    ]
    return make_script(path, "\n".join(lines))


def make_task(target: Path, **kwargs: Any) -> FuzzingTask:
    kwargs.setdefault("timeout_seconds", 5)
    return FuzzingTask(target_path=target, **kwargs)


# ---------------------------------------------------------------------------
# Fake engine
# ---------------------------------------------------------------------------


class FakeEngine:
    """Minimal FuzzerEngine: runs the target with no arguments, no stats, no crashes."""

    def __init__(self, name: str = "fake", available: bool = True) -> None:
        self.name = name
        self.available = available
        self.config: EngineConfigModel | None = None

    def initialize(self, config: EngineConfigModel) -> None:
        self.config = config

    def prepare_session(self, task: FuzzingTask, session_dir: Path) -> LaunchSpec:
        input_dir = session_dir / "input"
        output_dir = session_dir / "output"
        input_dir.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(parents=True, exist_ok=True)
        return LaunchSpec(
            command=[str(task.target_path), *task.arguments],
            cwd=session_dir,
            env={},
            input_dir=input_dir,
            output_dir=output_dir,
            corpus_dir=output_dir / "queue",
            log_path=output_dir / "fake.log",
        )

    def parse_stats(self, output_dir: Path) -> StatsRecord:
        return StatsRecord()

    def collect_crashes(self, output_dir: Path) -> list[Path]:
        return []

    def minimize(self, testcase: Path, target: Path, args: Any) -> Path:
        return Path(testcase)

    def reproduce(self, testcase: Path, target: Path, args: Any) -> ReproductionResult:
        return ReproductionResult(reproduced=False)

    def coverage(self, testcase: Path, target: Path, args: Any) -> CoverageInfo:
        return CoverageInfo()

    def is_available(self) -> bool:
        return self.available

    def version(self) -> str:
        return "1.0"

    def supported_platforms(self) -> list[str]:
        return ["linux"]

    def supported_formats(self) -> list[str]:
        return ["binary"]
