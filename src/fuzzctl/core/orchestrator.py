"""Session orchestrator: the single entry point for running fuzzing engines.

``start_fuzzing`` spawns the engine process and returns at once; a monitor
thread per session waits for it (bounded by the task timeout), then parses
stats, collects crashes and resolves the session's future. Helper
operations (minimize / reproduce / coverage) run on a small thread pool.
"""

from __future__ import annotations

import logging
import shutil
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence, TypeVar

from fuzzctl.core.config import ConfigManager, EngineConfigModel
from fuzzctl.core.exceptions import SpawnError
from fuzzctl.core.plugin_loader import PluginLoader
from fuzzctl.core.registry import EngineRegistry
from fuzzctl.core.schema import (
    CoverageInfo,
    FuzzingResult,
    FuzzingTask,
    LaunchSpec,
    ReproductionResult,
    SessionStatus,
    StatsRecord,
)
from fuzzctl.core.session_log import session_log_context
from fuzzctl.core.sessions import Session, SessionRegistry
from fuzzctl.engines import register_builtin_engines
from fuzzctl.engines.common import INPUT_PLACEHOLDER
from fuzzctl.execution.process import ProcessHandle
from fuzzctl.execution.results import ResultAssembler
from fuzzctl.protocols import FuzzerEngine

log = logging.getLogger(__name__)

T = TypeVar("T")

_PREFERRED_ENGINES = ("libfuzzer", "afl")


class FuzzingFuture(Future):
    """Future of a FuzzingResult that also carries its session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__()
        self.session_id = session_id


class FuzzingOrchestrator:
    """Starts, supervises and reaps fuzzing sessions across all engines."""

    def __init__(
        self,
        registry: EngineRegistry,
        config: EngineConfigModel | None = None,
        sessions: SessionRegistry | None = None,
        *,
        default_engine: str = "libfuzzer",
    ) -> None:
        self._registry = registry
        self._config = config or registry.config
        self._sessions = sessions if sessions is not None else SessionRegistry()
        self._default_engine = default_engine
        self._assembler = ResultAssembler()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.helper_workers,
            thread_name_prefix="fuzzctl-helper",
        )
        self._monitors: dict[str, threading.Thread] = {}
        self._monitors_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config_manager: ConfigManager,
        plugin_dirs: Sequence[Path] | None = None,
    ) -> FuzzingOrchestrator:
        """Build an orchestrator with built-in engines and any plugin engines."""
        cfg = config_manager.config
        registry = EngineRegistry(cfg.engine)
        register_builtin_engines(registry, cfg.engine_options)
        dirs = list(plugin_dirs) if plugin_dirs is not None else [config_manager.project_root / "plugins"]
        existing = [d for d in dirs if Path(d).is_dir()]
        if existing:
            PluginLoader(existing, registry).load_all()
        return cls(registry, cfg.engine, default_engine=cfg.default_engine)

    @property
    def registry(self) -> EngineRegistry:
        return self._registry

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    # ------------------------------------------------------------------
    # Engine selection
    # ------------------------------------------------------------------

    def select_default_engine(self) -> str:
        """Configured default if registered, else libfuzzer, afl, or the first one."""
        names = self._registry.names()
        if self._default_engine and self._default_engine.lower() in names:
            return self._default_engine.lower()
        for name in _PREFERRED_ENGINES:
            if name in names:
                return name
        if not names:
            return self._default_engine
        return names[0]

    @staticmethod
    def recommend_engines(args: Sequence[str] | None) -> list[str]:
        """File-input targets (``@@`` in args) suit AFL; in-process ones libFuzzer."""
        if args and any(INPUT_PLACEHOLDER in a for a in args):
            return ["afl", "libfuzzer"]
        return ["libfuzzer", "afl"]

    def _resolve(self, engine_name: str | None) -> FuzzerEngine:
        return self._registry.resolve(engine_name or self.select_default_engine())

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_fuzzing(self, task: FuzzingTask) -> FuzzingFuture:
        """Spawn a fuzzing session and return a future of its result.

        Raises UnknownEngineError immediately for an unregistered engine.
        A process that cannot be spawned fails the returned future with
        SpawnError; nothing is left registered or on disk in that case.
        """
        adapter = self._resolve(task.engine_name)
        session_id = self._sessions.new_session_id()
        base_dir = Path(task.working_directory or self._config.work_directory)
        session_dir = base_dir / session_id
        future = FuzzingFuture(session_id)
        future.set_running_or_notify_cancel()
        log.info("Starting %s session %s for %s", adapter.name, session_id, task.display_name)

        try:
            session_dir.mkdir(parents=True, exist_ok=False)
            spec = adapter.prepare_session(task, session_dir)
            log.info("Executing %s command: %s", adapter.name, " ".join(spec.command))
            handle = ProcessHandle.spawn(spec.command, cwd=spec.cwd, env=spec.env, output_path=spec.log_path)
        except (SpawnError, OSError) as e:
            err = e if isinstance(e, SpawnError) else SpawnError(f"Failed to prepare session {session_id}: {e}")
            log.error("Session %s could not be started: %s", session_id, err)
            shutil.rmtree(session_dir, ignore_errors=True)
            future.set_exception(err)
            return future

        self._sessions.register(
            Session(
                session_id=session_id,
                engine_name=adapter.name.lower(),
                session_dir=session_dir,
                handle=handle,
            )
        )
        monitor = threading.Thread(
            target=self._monitor,
            args=(session_id, adapter, task, spec, handle, future, datetime.now()),
            name=f"fuzzctl-monitor-{session_id[:8]}",
            daemon=True,
        )
        with self._monitors_lock:
            self._monitors[session_id] = monitor
        monitor.start()
        return future

    def stop_fuzzing(self, session_id: str) -> None:
        """Force-stop a running session; no-op for unknown or finished sessions."""
        handle = self._sessions.request_stop(session_id)
        if handle is None:
            log.debug("Stop requested for inactive session %s; nothing to do", session_id)
            return
        log.info("Stopping fuzzing session: %s", session_id)
        handle.force_terminate()

    def get_fuzzing_status(self, session_id: str) -> SessionStatus:
        return self._sessions.status(session_id)

    def active_sessions(self, engine_name: str | None = None) -> list[str]:
        return self._sessions.running_ids(engine_name)

    def wait_all(self, timeout: float | None = None) -> None:
        """Join all monitor threads (mainly for shutdown and tests)."""
        with self._monitors_lock:
            monitors = list(self._monitors.values())
        for t in monitors:
            t.join(timeout)

    def _monitor(
        self,
        session_id: str,
        adapter: FuzzerEngine,
        task: FuzzingTask,
        spec: LaunchSpec,
        handle: ProcessHandle,
        future: FuzzingFuture,
        start_time: datetime,
    ) -> None:
        try:
            result = self._run_session(session_id, adapter, task, spec, handle, start_time)
        except Exception as e:
            log.error("Monitoring of session %s failed: %s", session_id, e)
            self._sessions.transition(session_id, SessionStatus.ERROR)
            self._release(handle)
            self._sessions.remove(session_id)
            future.set_exception(e)
        else:
            log.info("Session %s finished with %d crashes", session_id, result.crash_count)
            future.set_result(result)
        finally:
            with self._monitors_lock:
                self._monitors.pop(session_id, None)

    def _run_session(
        self,
        session_id: str,
        adapter: FuzzerEngine,
        task: FuzzingTask,
        spec: LaunchSpec,
        handle: ProcessHandle,
        start_time: datetime,
    ) -> FuzzingResult:
        log_file = spec.cwd / "session.log" if self._config.session_log else None
        with session_log_context(log_file, session_id, self._config.debug_logging) as slog:
            slog.info("Session %s started (%s): %s", session_id, adapter.name, " ".join(spec.command))
            try:
                status = self._wait_for_exit(session_id, task, handle)
            except Exception as e:
                slog.error("Process lifecycle failure: %s", e)
                raise

            try:
                result = self._collect(session_id, adapter, task, spec, handle, status, start_time)
            except Exception as e:
                log.exception("Result assembly failed for session %s", session_id)
                self._sessions.transition(session_id, SessionStatus.ERROR)
                result = self._assembler.failed(
                    session_id=session_id,
                    engine_name=adapter.name,
                    start_time=start_time,
                    error_message=f"Result assembly failed: {e}",
                    exit_code=handle.returncode,
                )
            slog.info(
                "Session %s finished: status=%s exit_code=%s crashes=%d execs=%d",
                session_id, result.status.value, result.exit_code, result.crash_count, result.executions,
            )
            self._release(handle)
            self._sessions.mark_finished(session_id)
        return result

    def _wait_for_exit(self, session_id: str, task: FuzzingTask, handle: ProcessHandle) -> SessionStatus:
        # engines enforce timeout_seconds themselves; the monitor deadline adds the grace period
        limit = task.timeout_seconds + self._config.timeout_grace_seconds if task.timeout_seconds > 0 else 0
        outcome = handle.wait_with_timeout(limit, tick=self._config.monitor_tick_seconds)
        if outcome.finished:
            status = self._sessions.transition(session_id, SessionStatus.COMPLETED)
        else:
            status = self._sessions.transition(session_id, SessionStatus.TIMEOUT)
            if status is SessionStatus.TIMEOUT:
                log.info("Session %s timed out after %ds", session_id, task.timeout_seconds)
            handle.force_terminate()
        if status is SessionStatus.UNKNOWN:
            # dropped by cleanup() while running
            status = SessionStatus.STOPPED
        return status

    def _collect(
        self,
        session_id: str,
        adapter: FuzzerEngine,
        task: FuzzingTask,
        spec: LaunchSpec,
        handle: ProcessHandle,
        status: SessionStatus,
        start_time: datetime,
    ) -> FuzzingResult:
        end_time = datetime.now()
        try:
            stats = adapter.parse_stats(spec.output_dir)
        except Exception as e:
            log.warning("Stats parsing failed for session %s: %s", session_id, e)
            stats = StatsRecord()
        try:
            crash_files = adapter.collect_crashes(spec.output_dir)
        except Exception as e:
            log.warning("Crash collection failed for session %s: %s", session_id, e)
            crash_files = []

        error_message = None
        if status is SessionStatus.TIMEOUT:
            error_message = f"Session timed out after {task.timeout_seconds}s"
        elif status is SessionStatus.STOPPED:
            error_message = "Session stopped"

        max_crashes = task.max_crashes or self._config.max_crashes_per_session
        return self._assembler.assemble(
            session_id=session_id,
            engine_name=adapter.name,
            status=status,
            start_time=start_time,
            end_time=end_time,
            exit_code=handle.returncode,
            stats=stats,
            crash_files=crash_files,
            final_corpus_path=spec.corpus_dir,
            peak_memory_mb=handle.peak_rss_mb,
            max_crashes=max_crashes,
            error_message=error_message,
        )

    @staticmethod
    def _release(handle: ProcessHandle) -> None:
        try:
            handle.release()
        except OSError as e:
            log.warning("Failed to release process %d: %s", handle.pid, e)

    # ------------------------------------------------------------------
    # Helper operations
    # ------------------------------------------------------------------

    def minimize_test_case(
        self,
        testcase: Path,
        target: Path,
        args: Sequence[str] | None = None,
        *,
        engine: str | None = None,
    ) -> Future[Path]:
        adapter = self._resolve(engine)
        log.info("Minimizing test case %s with engine %s", Path(testcase).name, adapter.name)
        return self._submit(
            "Test case minimization", adapter.minimize, Path(testcase), Path(target), list(args or [])
        )

    def reproduce_crash(
        self,
        testcase: Path,
        target: Path,
        args: Sequence[str] | None = None,
        *,
        engine: str | None = None,
    ) -> Future[ReproductionResult]:
        adapter = self._resolve(engine)
        log.info("Reproducing crash with test case %s using engine %s", Path(testcase).name, adapter.name)
        return self._submit(
            "Crash reproduction", adapter.reproduce, Path(testcase), Path(target), list(args or [])
        )

    def generate_coverage(
        self,
        testcase: Path,
        target: Path,
        args: Sequence[str] | None = None,
        *,
        engine: str | None = None,
    ) -> Future[CoverageInfo]:
        adapter = self._resolve(engine)
        log.info("Generating coverage for test case %s using engine %s", Path(testcase).name, adapter.name)
        return self._submit(
            "Coverage generation", adapter.coverage, Path(testcase), Path(target), list(args or [])
        )

    def _submit(self, label: str, fn: Callable[..., T], *args: object) -> Future[T]:
        future = self._executor.submit(fn, *args)

        def _log_outcome(f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                log.error("%s failed: %s", label, exc)
            else:
                log.info("%s completed", label)

        future.add_done_callback(_log_outcome)
        return future

    # ------------------------------------------------------------------
    # Engine metadata
    # ------------------------------------------------------------------

    def get_supported_platforms(self, engine: str | None = None) -> list[str]:
        return self._resolve(engine).supported_platforms()

    def get_supported_formats(self, engine: str | None = None) -> list[str]:
        return self._resolve(engine).supported_formats()

    def is_available(self, engine: str | None = None) -> bool:
        return self._resolve(engine).is_available()

    def get_version(self, engine: str | None = None) -> str:
        return self._resolve(engine).version()

    def update_config(self, config: EngineConfigModel) -> None:
        """Apply new engine config to the orchestrator and every adapter."""
        self._config = config
        self._registry.configure(config)
        log.info("Updated fuzzing engine configuration")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def cleanup(self, engine: str | None = None) -> None:
        """Kill every live session (of one engine, or all) and forget them."""
        removed = self._sessions.clear(engine)
        for session in removed:
            if session.handle is not None:
                session.handle.force_terminate()
        log.info(
            "Cleaned up %d session(s)%s", len(removed), f" for engine {engine}" if engine else ""
        )

    def shutdown(self, wait: bool = True) -> None:
        """Clean up all sessions and stop the helper pool."""
        self.cleanup()
        if wait:
            self.wait_all(timeout=30)
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> FuzzingOrchestrator:
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown()
