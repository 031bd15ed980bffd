"""Assemble the final FuzzingResult from exit state, stats and artifacts."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Sequence

from fuzzctl.core.schema import FuzzingResult, FuzzingStatistics, SessionStatus, StatsRecord


def count_corpus(corpus_dir: Path | None) -> int:
    """Number of regular files in a corpus directory (0 if missing)."""
    if corpus_dir is None or not Path(corpus_dir).is_dir():
        return 0
    return sum(1 for p in Path(corpus_dir).iterdir() if p.is_file())


class ResultAssembler:
    """Builds immutable FuzzingResult records."""

    def assemble(
        self,
        *,
        session_id: str,
        engine_name: str,
        status: SessionStatus,
        start_time: datetime,
        end_time: datetime,
        exit_code: int | None,
        stats: StatsRecord,
        crash_files: Sequence[Path],
        final_corpus_path: Path | None = None,
        peak_memory_mb: int = 0,
        max_crashes: int = 0,
        error_message: str | None = None,
    ) -> FuzzingResult:
        crashes = list(crash_files)
        if max_crashes > 0:
            crashes = crashes[:max_crashes]

        corpus_size = count_corpus(final_corpus_path) or stats.corpus_count
        statistics = FuzzingStatistics(
            total_execs=stats.total_execs,
            crashes_found=max(stats.unique_crashes, len(crash_files)),
            timeouts_found=stats.unique_hangs,
            ooms=stats.ooms,
            execs_per_second=stats.execs_per_sec,
            peak_memory_mb=max(stats.peak_rss_mb, peak_memory_mb),
            corpus_size=corpus_size,
            features_found=stats.features,
        )
        return FuzzingResult(
            session_id=session_id,
            engine_name=engine_name,
            status=status,
            start_time=start_time,
            end_time=end_time,
            executions=stats.total_execs,
            coverage=stats.coverage,
            crash_files=tuple(crashes),
            exit_code=exit_code,
            error_message=error_message,
            statistics=statistics,
            final_corpus_path=final_corpus_path,
            final_corpus_size=corpus_size,
        )

    def failed(
        self,
        *,
        session_id: str,
        engine_name: str,
        start_time: datetime,
        error_message: str,
        exit_code: int | None = None,
    ) -> FuzzingResult:
        """Result for a session whose monitoring itself broke down."""
        return FuzzingResult(
            session_id=session_id,
            engine_name=engine_name,
            status=SessionStatus.ERROR,
            start_time=start_time,
            end_time=datetime.now(),
            exit_code=exit_code,
            error_message=error_message,
        )
