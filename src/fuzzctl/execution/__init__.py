"""Process supervision, stats parsing, crash collection and result assembly."""

from fuzzctl.execution.crashes import CrashCollector
from fuzzctl.execution.process import ProcessHandle, WaitOutcome, run_helper
from fuzzctl.execution.results import ResultAssembler, count_corpus
from fuzzctl.execution.stats import AFLStatsParser, LibFuzzerStatsParser

__all__ = [
    "AFLStatsParser",
    "CrashCollector",
    "LibFuzzerStatsParser",
    "ProcessHandle",
    "ResultAssembler",
    "WaitOutcome",
    "count_corpus",
    "run_helper",
]
