"""Protocol for fuzzing engine adapters."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, Sequence

if TYPE_CHECKING:
    from fuzzctl.core.config import EngineConfigModel
    from fuzzctl.core.schema import (
        CoverageInfo,
        FuzzingTask,
        LaunchSpec,
        ReproductionResult,
        StatsRecord,
    )


class FuzzerEngine(Protocol):
    """Capability set of one fuzzing tool (AFL++, libFuzzer, ...).

    Adapters hold no per-session state. Process supervision and the session
    map live in the orchestrator; an adapter only knows how to drive its
    tool and how to read what the tool left on disk.
    """

    name: str

    def initialize(self, config: EngineConfigModel) -> None:
        """Apply shared engine configuration (timeouts, crash markers, ...)."""
        ...

    def prepare_session(self, task: FuzzingTask, session_dir: Path) -> LaunchSpec:
        """Create input/output directories and build the command line."""
        ...

    def parse_stats(self, output_dir: Path) -> StatsRecord:
        """Read the tool's statistics for a session output directory."""
        ...

    def collect_crashes(self, output_dir: Path) -> list[Path]:
        """Return crash artifacts written into a session output directory."""
        ...

    def minimize(self, testcase: Path, target: Path, args: Sequence[str]) -> Path:
        """Shrink a crashing testcase; return the minimized file."""
        ...

    def reproduce(self, testcase: Path, target: Path, args: Sequence[str]) -> ReproductionResult:
        """Run the target directly on a testcase and classify the outcome."""
        ...

    def coverage(self, testcase: Path, target: Path, args: Sequence[str]) -> CoverageInfo:
        """Collect coverage for one testcase (zero record if unsupported)."""
        ...

    def is_available(self) -> bool:
        ...

    def version(self) -> str:
        ...

    def supported_platforms(self) -> list[str]:
        ...

    def supported_formats(self) -> list[str]:
        ...
