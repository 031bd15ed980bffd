"""Parsers for engine statistics files.

Parsing is one-shot and tolerant: a missing file yields a zero record, and a
value that cannot be converted only drops that one field.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable

from fuzzctl.core.exceptions import MalformedStatsLine, StatsUnavailable
from fuzzctl.core.schema import StatsRecord

log = logging.getLogger(__name__)

_KEY_VALUE_RE = re.compile(r"^\s*([\w:.]+)\s*:\s*(.+?)\s*$")


def _to_int(raw: str) -> int:
    try:
        return int(float(raw.rstrip("%").strip()))
    except ValueError as e:
        raise MalformedStatsLine(f"not an integer: {raw!r}") from e


def _to_float(raw: str) -> float:
    try:
        return float(raw.rstrip("%").strip())
    except ValueError as e:
        raise MalformedStatsLine(f"not a number: {raw!r}") from e


def read_stats_lines(path: Path) -> list[str]:
    """Read a stats file; raise StatsUnavailable if missing or unreadable."""
    path = Path(path)
    if not path.is_file():
        raise StatsUnavailable(f"stats file not found: {path}")
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        raise StatsUnavailable(f"cannot read stats file {path}: {e}") from e


def apply_key_values(
    record: StatsRecord,
    lines: list[str],
    fields: dict[str, tuple[str, Callable[[str], int | float]]],
) -> None:
    """Set ``record`` fields from ``key : value`` lines using ``fields``.

    ``fields`` maps a file key to (record attribute, converter). Unknown keys
    are ignored and malformed values are skipped per field.
    """
    for line in lines:
        m = _KEY_VALUE_RE.match(line)
        if not m:
            continue
        key, raw = m.group(1), m.group(2)
        target = fields.get(key)
        if target is None:
            continue
        attr, convert = target
        try:
            setattr(record, attr, convert(raw))
        except MalformedStatsLine as e:
            log.debug("Skipping stats field %s: %s", key, e)


class AFLStatsParser:
    """Parser for AFL/AFL++ ``fuzzer_stats`` files."""

    filename = "fuzzer_stats"

    # Later keys win, so AFL++ 4.x names follow the classic ones.
    FIELDS: dict[str, tuple[str, Callable[[str], int | float]]] = {
        "execs_done": ("total_execs", _to_int),
        "execs_per_sec": ("execs_per_sec", _to_float),
        "paths_total": ("corpus_count", _to_int),
        "corpus_count": ("corpus_count", _to_int),
        "unique_crashes": ("unique_crashes", _to_int),
        "saved_crashes": ("unique_crashes", _to_int),
        "unique_hangs": ("unique_hangs", _to_int),
        "saved_hangs": ("unique_hangs", _to_int),
        "map_size": ("coverage", _to_int),
        "peak_rss_mb": ("peak_rss_mb", _to_int),
    }

    def stats_path(self, output_dir: Path) -> Path:
        return Path(output_dir) / self.filename

    def parse(self, path: Path) -> StatsRecord:
        record = StatsRecord()
        try:
            lines = read_stats_lines(path)
        except StatsUnavailable as e:
            log.warning("AFL stats unavailable: %s", e)
            return record
        apply_key_values(record, lines, self.FIELDS)
        return record


_PROGRESS_RE = re.compile(r"^#(\d+)\s+\w+")
_COV_RE = re.compile(r"\bcov:\s*(\d+)")
_FT_RE = re.compile(r"\bft:\s*(\d+)")
_CORP_RE = re.compile(r"\bcorp:\s*(\d+)")
_EXECS_RE = re.compile(r"\bexec/s:\s*(\d+)")
_RSS_RE = re.compile(r"\brss:\s*(\d+)Mb")
_ARTIFACT_RE = re.compile(r"Test unit written to \S*?(crash|timeout|oom|leak)-")


class LibFuzzerStatsParser:
    """Parser for the captured output log of a libFuzzer run.

    Uses the ``stat::`` block printed with ``-print_final_stats=1`` when it
    is present and the last progress line (``#N ... cov: ... exec/s: ...``)
    otherwise, so it gives sensible numbers for killed runs too.
    """

    filename = "fuzzer.log"

    FIELDS: dict[str, tuple[str, Callable[[str], int | float]]] = {
        "stat::number_of_executed_units": ("total_execs", _to_int),
        "stat::average_exec_per_sec": ("execs_per_sec", _to_float),
        "stat::peak_rss_mb": ("peak_rss_mb", _to_int),
    }

    def stats_path(self, output_dir: Path) -> Path:
        return Path(output_dir) / self.filename

    def parse(self, path: Path) -> StatsRecord:
        record = StatsRecord()
        try:
            lines = read_stats_lines(path)
        except StatsUnavailable as e:
            log.warning("libFuzzer log unavailable: %s", e)
            return record

        for line in lines:
            progress = _PROGRESS_RE.match(line)
            if progress:
                record.total_execs = int(progress.group(1))
                for regex, attr in (
                    (_COV_RE, "coverage"),
                    (_FT_RE, "features"),
                    (_CORP_RE, "corpus_count"),
                    (_RSS_RE, "peak_rss_mb"),
                ):
                    m = regex.search(line)
                    if m:
                        setattr(record, attr, int(m.group(1)))
                m = _EXECS_RE.search(line)
                if m:
                    record.execs_per_sec = float(m.group(1))
                continue
            artifact = _ARTIFACT_RE.search(line)
            if artifact:
                kind = artifact.group(1)
                if kind == "timeout":
                    record.unique_hangs += 1
                elif kind == "oom":
                    record.ooms += 1
                else:
                    record.unique_crashes += 1

        apply_key_values(record, lines, self.FIELDS)
        return record
