"""Helpers shared by the built-in engine adapters."""

from __future__ import annotations

import logging
import os
import re
import shutil
import signal
import subprocess
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from fuzzctl.core.exceptions import ReproductionError, SpawnError
from fuzzctl.core.schema import FuzzingTask, ReproductionResult
from fuzzctl.execution.process import run_helper

log = logging.getLogger(__name__)

INPUT_PLACEHOLDER = "@@"
MINIMAL_SEED = b"A"

_SUMMARY_RE = re.compile(r"^SUMMARY:\s*(.+)$", re.MULTILINE)
_SANITIZER_SUMMARY_RE = re.compile(r"SUMMARY:\s*\w*Sanitizer:\s*(\S+)")
_FRAME_RE = re.compile(r"^\s*#\d+\s+0x[0-9a-fA-F]+.*$", re.MULTILINE)
_ADDRESS_RE = re.compile(r"on (?:unknown )?address (0x[0-9a-fA-F]+)")


# ---------------------------------------------------------------------------
# Target arguments
# ---------------------------------------------------------------------------


def has_placeholder(args: Sequence[str]) -> bool:
    return any(INPUT_PLACEHOLDER in a for a in args)


def ensure_placeholder(args: Sequence[str]) -> list[str]:
    """Return ``args`` with ``@@`` appended when no argument carries it."""
    out = list(args)
    if not has_placeholder(out):
        out.append(INPUT_PLACEHOLDER)
    return out


def strip_placeholder(args: Sequence[str]) -> list[str]:
    return [a for a in args if a != INPUT_PLACEHOLDER]


def substitute_input(args: Sequence[str], input_path: Path) -> list[str]:
    """Put ``input_path`` where ``@@`` appears, or append it as last argument."""
    path = str(input_path)
    if not has_placeholder(args):
        return [*args, path]
    return [a.replace(INPUT_PLACEHOLDER, path) for a in args]


# ---------------------------------------------------------------------------
# Session workspace
# ---------------------------------------------------------------------------


def copy_corpus(source: Path, target_dir: Path) -> int:
    """Copy seed files from ``source`` (file or directory tree) into ``target_dir``.

    Files with clashing names get a numeric suffix. Returns the number of
    files copied; individual copy failures are logged and skipped.
    """
    source = Path(source)
    if source.is_dir():
        files = sorted(p for p in source.rglob("*") if p.is_file())
    elif source.is_file():
        files = [source]
    else:
        log.warning("Corpus path does not exist: %s", source)
        return 0

    copied = 0
    for f in files:
        dest = target_dir / f.name
        n = 1
        while dest.exists():
            dest = target_dir / f"{f.name}.{n}"
            n += 1
        try:
            shutil.copyfile(f, dest)
            copied += 1
        except OSError as e:
            log.warning("Failed to copy corpus file %s: %s", f, e)
    return copied


def write_minimal_seed(input_dir: Path) -> Path:
    seed = input_dir / "seed"
    seed.write_bytes(MINIMAL_SEED)
    return seed


def prepare_workspace(task: FuzzingTask, session_dir: Path) -> tuple[Path, Path]:
    """Create ``input/`` and ``output/`` under ``session_dir`` and seed ``input/``.

    The input directory is never left empty: when the task has no corpus,
    or the corpus yields no files, a one-byte seed is written.
    """
    input_dir = session_dir / "input"
    output_dir = session_dir / "output"
    input_dir.mkdir(parents=True, exist_ok=True)
    output_dir.mkdir(parents=True, exist_ok=True)

    copied = copy_corpus(task.corpus_path, input_dir) if task.corpus_path else 0
    if copied == 0:
        write_minimal_seed(input_dir)
    return input_dir, output_dir


def build_env(defaults: Mapping[str, str], overrides: Mapping[str, str]) -> dict[str, str]:
    """Process environment plus engine defaults, with task overrides on top."""
    env = os.environ.copy()
    env.update(defaults)
    env.update(overrides)
    return env


def engine_flag_options(options: Mapping[str, str], reserved: Iterable[str]) -> list[str]:
    """Turn ``engine_options`` into ``-key=value`` flags, skipping ``reserved`` keys."""
    skip = set(reserved)
    return [f"-{k}={v}" for k, v in sorted(options.items()) if k not in skip]


# ---------------------------------------------------------------------------
# Tool probing
# ---------------------------------------------------------------------------


def run_probe(cmd: list[str], timeout: int = 5) -> tuple[bool, str]:
    """Run a version/help probe; return (started_ok, combined output)."""
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return False, "command not found"
    except subprocess.TimeoutExpired:
        return False, "timeout"
    except OSError as e:
        return False, str(e)
    return True, (result.stdout or "") + (result.stderr or "")


# ---------------------------------------------------------------------------
# Crash classification
# ---------------------------------------------------------------------------


def signal_name(exit_code: int | None) -> str | None:
    """Name of the signal that killed a process (negative Popen return code)."""
    if exit_code is None or exit_code >= 0:
        return None
    try:
        return signal.Signals(-exit_code).name
    except ValueError:
        return None


def classify_crash(
    output: str,
    markers: Sequence[str],
    exit_code: int | None = None,
    *,
    prefer_sanitizer_summary: bool = False,
) -> str:
    """Best-effort crash type from process output.

    Checks the sanitizer ``SUMMARY:`` line first when asked to, then the
    first marker found in ``markers`` order, then the killing signal.
    """
    if prefer_sanitizer_summary:
        m = _SANITIZER_SUMMARY_RE.search(output)
        if m:
            return m.group(1)
    for marker in markers:
        if marker and marker in output:
            return marker
    return signal_name(exit_code) or "unknown"


def extract_stack_trace(output: str) -> str:
    return "\n".join(line.strip() for line in _FRAME_RE.findall(output))


def extract_crash_address(output: str) -> str | None:
    m = _ADDRESS_RE.search(output)
    return m.group(1) if m else None


def extract_summary(output: str) -> str | None:
    m = _SUMMARY_RE.search(output)
    return m.group(1).strip() if m else None


def reproduce_with(
    command: Sequence[str],
    *,
    markers: Sequence[str],
    timeout: float,
    tick: float,
    prefer_sanitizer_summary: bool = False,
    env: Mapping[str, str] | None = None,
) -> ReproductionResult:
    """Run ``command`` once and turn its exit state and output into a ReproductionResult."""
    try:
        outcome, output = run_helper(command, env=env, timeout=timeout, tick=tick)
    except SpawnError as e:
        raise ReproductionError(f"Could not run target for reproduction: {e}") from e
    if not outcome.finished:
        raise ReproductionError(f"Reproduction run exceeded {timeout}s: {' '.join(command)}")

    exit_code = outcome.exit_code if outcome.exit_code is not None else 0
    return ReproductionResult(
        reproduced=exit_code != 0,
        exit_code=exit_code,
        output=output,
        crash_type=classify_crash(
            output, markers, exit_code, prefer_sanitizer_summary=prefer_sanitizer_summary
        ),
        stack_trace=extract_stack_trace(output),
        signal=-exit_code if exit_code < 0 else None,
        crash_address=extract_crash_address(output),
        crash_details=extract_summary(output),
    )
