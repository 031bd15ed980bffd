"""Process handle: spawn, supervise and reap one external process.

Combined stdout/stderr is written to a file (or an anonymous temporary file)
instead of a pipe, so a chatty fuzzer can never block on a full pipe while
the monitor is waiting on it.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Mapping, Sequence

import psutil

from fuzzctl.core.exceptions import SpawnError

log = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class WaitOutcome:
    """Result of a bounded wait."""

    finished: bool
    exit_code: int | None = None


class ProcessHandle:
    """Wrapper around a spawned process and its output sink."""

    def __init__(
        self,
        popen: subprocess.Popen,
        command: list[str],
        sink: IO[bytes],
        output_path: Path | None = None,
    ) -> None:
        self._popen = popen
        self._command = command
        self._sink = sink
        self._output_path = output_path
        self._lock = threading.Lock()
        self._released = False
        self._peak_rss_bytes = 0
        try:
            self._ps: psutil.Process | None = psutil.Process(popen.pid)
        except psutil.Error:
            self._ps = None

    @classmethod
    def spawn(
        cls,
        command: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        output_path: Path | None = None,
    ) -> ProcessHandle:
        """Start ``command``; raise SpawnError if the OS refuses."""
        cmd = [str(c) for c in command]
        try:
            sink: IO[bytes] = open(output_path, "w+b") if output_path else tempfile.TemporaryFile()
        except OSError as e:
            raise SpawnError(f"Cannot open output file {output_path}: {e}") from e
        try:
            popen = subprocess.Popen(
                cmd,
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=sink,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            sink.close()
            raise SpawnError(f"Failed to spawn {cmd[0] if cmd else '<empty>'}: {e}") from e
        log.debug("Spawned pid %d: %s", popen.pid, " ".join(cmd))
        return cls(popen, cmd, sink, Path(output_path) if output_path else None)

    # -- properties -------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def returncode(self) -> int | None:
        return self._popen.poll()

    @property
    def peak_rss_mb(self) -> int:
        return self._peak_rss_bytes // _BYTES_PER_MB

    # -- lifecycle --------------------------------------------------------

    def is_alive(self) -> bool:
        return self._popen.poll() is None

    def wait_with_timeout(self, seconds: float, tick: float = 0.25) -> WaitOutcome:
        """Wait for exit, at most ``seconds`` (``<= 0`` waits without bound).

        Waits in ``tick``-sized slices and samples memory use between them.
        """
        deadline = None if seconds <= 0 else time.monotonic() + seconds
        while True:
            self._sample_rss()
            if deadline is None:
                slice_ = tick
            else:
                slice_ = min(tick, deadline - time.monotonic())
                if slice_ <= 0:
                    code = self._popen.poll()
                    return WaitOutcome(finished=code is not None, exit_code=code)
            try:
                code = self._popen.wait(timeout=slice_)
            except subprocess.TimeoutExpired:
                continue
            return WaitOutcome(finished=True, exit_code=code)

    def force_terminate(self) -> bool:
        """Kill the process tree, then any leftover members of its process group.

        Returns True if a live process was killed, False if it had already
        exited. Safe to call any number of times from any thread.
        """
        with self._lock:
            was_alive = self._popen.poll() is None
            if was_alive:
                victims: list[psutil.Process] = []
                if self._ps is not None:
                    try:
                        victims = self._ps.children(recursive=True)
                    except psutil.Error:
                        victims = []
                for child in victims:
                    try:
                        child.kill()
                    except psutil.Error:
                        pass
                try:
                    self._popen.kill()
                except ProcessLookupError:
                    pass
                if victims:
                    psutil.wait_procs(victims, timeout=5)
        if was_alive:
            try:
                self._popen.wait(timeout=10)
            except subprocess.TimeoutExpired:
                log.warning("Process %d did not exit after SIGKILL", self._popen.pid)
        self._kill_process_group()
        return was_alive

    def read_combined_output(self) -> bytes:
        """Return everything the process wrote to stdout and stderr so far."""
        with self._lock:
            if self._released:
                if self._output_path and self._output_path.exists():
                    return self._output_path.read_bytes()
                return b""
            self._sink.flush()
            pos = self._sink.tell()
            self._sink.seek(0)
            data = self._sink.read()
            self._sink.seek(pos)
            return data

    def output_text(self) -> str:
        return self.read_combined_output().decode("utf-8", errors="replace")

    def release(self) -> None:
        """Kill what is still running and close the output sink (once)."""
        self.force_terminate()
        with self._lock:
            if self._released:
                return
            self._released = True
            self._sink.close()

    def __enter__(self) -> ProcessHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    # -- helpers ----------------------------------------------------------

    def _sample_rss(self) -> None:
        if self._ps is None:
            return
        try:
            procs = [self._ps, *self._ps.children(recursive=True)]
        except psutil.Error:
            return
        total = 0
        for p in procs:
            try:
                total += p.memory_info().rss
            except psutil.Error:
                continue
        if total > self._peak_rss_bytes:
            self._peak_rss_bytes = total

    def _kill_process_group(self) -> None:
        """SIGKILL the session's process group once its leader has been reaped.

        The group id equals the leader's pid (``start_new_session``). While
        any member is alive that id cannot be handed to a new process, so a
        live process with this pid means the group is gone and the pid reused.
        """
        if self._popen.returncode is None or psutil.pid_exists(self._popen.pid):
            return
        try:
            os.killpg(self._popen.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            return
        log.debug("Killed leftover members of process group %d", self._popen.pid)


def run_helper(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float = 0,
    tick: float = 0.25,
) -> tuple[WaitOutcome, str]:
    """Run a short-lived helper to completion and return (outcome, output).

    A helper still running after ``timeout`` seconds is killed and reported
    with ``finished=False``. Raises SpawnError if the helper cannot start.
    """
    with ProcessHandle.spawn(command, cwd=cwd, env=env) as handle:
        outcome = handle.wait_with_timeout(timeout, tick=tick)
        if not outcome.finished:
            handle.force_terminate()
        return outcome, handle.output_text()
