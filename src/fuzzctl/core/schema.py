"""Pydantic models and data structures for fuzzing sessions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, computed_field


class SessionStatus(str, Enum):
    """Lifecycle status of a fuzzing session."""

    RUNNING = "running"
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    STOPPED = "stopped"
    ERROR = "error"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.TIMEOUT, SessionStatus.STOPPED, SessionStatus.ERROR}
)


class FuzzingTask(BaseModel):
    """Configuration for one fuzzing session. Immutable once submitted."""

    model_config = {"frozen": True}

    target_path: Path
    task_id: str = ""
    target_name: str = ""
    arguments: tuple[str, ...] = ()
    corpus_path: Path | None = None
    timeout_seconds: int = Field(default=0, ge=0, description="0 means unbounded")
    memory_limit_mb: int = Field(default=0, ge=0, description="0 means no limit")
    engine_name: str = ""
    engine_options: dict[str, str] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)
    working_directory: Path | None = None
    enable_coverage: bool = False
    enable_minimization: bool = False
    max_crashes: int = Field(default=0, ge=0, description="0 uses the configured per-session cap")
    priority: int = 0

    @property
    def display_name(self) -> str:
        return self.target_name or self.target_path.name


class StatsRecord(BaseModel):
    """Raw statistics extracted from an engine's stats file or log."""

    total_execs: int = 0
    execs_per_sec: float = 0.0
    corpus_count: int = 0
    unique_crashes: int = 0
    unique_hangs: int = 0
    coverage: int = 0
    peak_rss_mb: int = 0
    ooms: int = 0
    features: int = 0


class FuzzingStatistics(BaseModel):
    """Statistics block nested in a FuzzingResult."""

    model_config = {"frozen": True}

    total_execs: int = 0
    crashes_found: int = 0
    timeouts_found: int = 0
    ooms: int = 0
    execs_per_second: float = 0.0
    peak_memory_mb: int = 0
    corpus_size: int = 0
    features_found: int = 0


class FuzzingResult(BaseModel):
    """Final record of one fuzzing session."""

    model_config = {"frozen": True}

    session_id: str
    engine_name: str
    status: SessionStatus
    start_time: datetime
    end_time: datetime
    executions: int = 0
    coverage: int = 0
    crash_files: tuple[Path, ...] = ()
    exit_code: int | None = None
    error_message: str | None = None
    statistics: FuzzingStatistics = Field(default_factory=FuzzingStatistics)
    final_corpus_path: Path | None = None
    final_corpus_size: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def crash_count(self) -> int:
        return len(self.crash_files)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def successful(self) -> bool:
        return self.exit_code == 0

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.end_time - self.start_time).total_seconds())


class ReproductionResult(BaseModel):
    """Outcome of re-running a target directly against one testcase."""

    reproduced: bool = False
    exit_code: int = 0
    output: str = ""
    crash_type: str = "unknown"
    stack_trace: str = ""
    signal: int | None = None
    crash_address: str | None = None
    crash_details: str | None = None


class FileCoverageInfo(BaseModel):
    """Line coverage of a single source file."""

    filename: str
    total_lines: int = 0
    covered_lines: int = 0
    coverage_percentage: float = 0.0


class CoverageInfo(BaseModel):
    """Coverage information for a testcase.

    All-zero values mean the engine has no coverage path for the target,
    which is not an error.
    """

    total_lines: int = 0
    covered_lines: int = 0
    coverage_percentage: float = 0.0
    total_functions: int = 0
    covered_functions: int = 0
    function_coverage_percentage: float = 0.0
    total_branches: int = 0
    covered_branches: int = 0
    branch_coverage_percentage: float = 0.0
    file_coverage: dict[str, FileCoverageInfo] = Field(default_factory=dict)
    raw_coverage_data: str = ""


class PluginInfo(BaseModel):
    """Metadata about a discovered plugin."""

    name: str
    path: Path
    module_name: str
    plugin_type: str = ""


class LaunchSpec(BaseModel):
    """Everything needed to spawn one fuzzing session's process."""

    command: list[str]
    cwd: Path
    env: dict[str, str] = Field(default_factory=dict)
    input_dir: Path
    output_dir: Path
    corpus_dir: Path
    log_path: Path | None = None
