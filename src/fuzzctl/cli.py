"""CLI entry point for fuzzctl."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from fuzzctl import __version__
from fuzzctl.core.config import ConfigManager
from fuzzctl.core.exceptions import FuzzCtlError
from fuzzctl.core.health import HealthChecker
from fuzzctl.core.orchestrator import FuzzingOrchestrator
from fuzzctl.core.schema import FuzzingTask, SessionStatus
from fuzzctl.reporters import get_reporter


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config_and_engines(project_root: Path | None = None) -> tuple[ConfigManager, FuzzingOrchestrator]:
    """Load config (.env + YAML), register built-in and plugin engines."""
    config = ConfigManager(project_root=project_root)
    try:
        config.load()
    except FuzzCtlError as e:
        raise click.ClickException(str(e)) from e
    return config, FuzzingOrchestrator.from_config(config)


def _parse_options(pairs: tuple[str, ...]) -> dict[str, str]:
    options: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--option")
        options[key] = value
    return options


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """fuzzctl: run AFL and libFuzzer sessions behind one interface."""
    pass


@main.group()
def engines() -> None:
    """Inspect registered fuzzing engines."""
    pass


@engines.command("list")
def engines_list() -> None:
    """List registered engines with availability and version."""
    _, orch = _load_config_and_engines()
    try:
        names = orch.registry.list_available()["fuzzer_engines"]
        click.echo("Fuzzer engines:")
        if not names:
            click.echo("  (none)")
        for name in names:
            if orch.is_available(name):
                click.echo(f"  {name}: available ({orch.get_version(name)})")
            else:
                click.echo(f"  {name}: not available")
    finally:
        orch.shutdown()


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Show details for passing checks too.")
@click.option("--engine", "engine_names", multiple=True, help="Only check these engines (repeatable).")
def check(verbose: bool, engine_names: tuple[str, ...]) -> None:
    """Verify the work directory and engine tooling; show suggestions for failures."""
    config, orch = _load_config_and_engines()
    try:
        checker = HealthChecker(config=config, registry=orch.registry)
        results = checker.check_all(engines=list(engine_names) or None)
    finally:
        orch.shutdown()
    for r in results:
        status = "OK" if r.ok else "FAIL"
        click.echo(f"  {r.name}: {status}")
        if verbose or not r.ok:
            click.echo(f"    {r.message}")
        if not r.ok and r.suggestion:
            click.echo(f"    → {r.suggestion}")
    if all(r.ok for r in results):
        click.echo("All checks passed.")
    else:
        click.echo("Some checks failed. Fix the issues above or follow the suggested steps.", err=True)
        raise SystemExit(1)


@main.command()
@click.option("--target", "target_path", required=True, type=click.Path(path_type=Path, exists=True, dir_okay=False), help="Fuzz target binary.")
@click.option("--engine", "engine_name", default=None, help="Engine name (default: configured default engine).")
@click.option("--arg", "arguments", multiple=True, help="Target argument (repeatable); '@@' marks the input file.")
@click.option("--corpus", "corpus_path", type=click.Path(path_type=Path, exists=True, file_okay=False), help="Seed corpus directory.")
@click.option("--timeout", "timeout_seconds", type=click.IntRange(min=0), default=None, help="Session time limit in seconds (0 = unbounded; default from config).")
@click.option("--memory", "memory_limit_mb", type=click.IntRange(min=0), default=None, help="Memory limit in MB (0 = none; default from config).")
@click.option("--option", "engine_options", multiple=True, help="Engine option KEY=VALUE (repeatable).")
@click.option("--work-dir", "work_dir", type=click.Path(path_type=Path, file_okay=False), help="Parent directory for the session directory.")
@click.option("--max-crashes", type=click.IntRange(min=0), default=0, help="Keep at most this many crash files (0 = configured cap).")
@click.option("--output", "output_path", type=click.Path(path_type=Path), help="Write the session result to this JSON file.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def run(
    target_path: Path,
    engine_name: str | None,
    arguments: tuple[str, ...],
    corpus_path: Path | None,
    timeout_seconds: int | None,
    memory_limit_mb: int | None,
    engine_options: tuple[str, ...],
    work_dir: Path | None,
    max_crashes: int,
    output_path: Path | None,
    verbose: bool,
) -> None:
    """Run one fuzzing session and wait for its result."""
    options = _parse_options(engine_options)
    config, orch = _load_config_and_engines()
    _setup_logging(verbose or config.config.engine.debug_logging)
    engine_cfg = config.config.engine
    task = FuzzingTask(
        target_path=target_path.resolve(),
        arguments=arguments,
        corpus_path=corpus_path.resolve() if corpus_path else None,
        timeout_seconds=engine_cfg.default_timeout_seconds if timeout_seconds is None else timeout_seconds,
        memory_limit_mb=engine_cfg.max_memory_mb if memory_limit_mb is None else memory_limit_mb,
        engine_name=engine_name or "",
        engine_options=options,
        working_directory=work_dir.resolve() if work_dir else None,
        enable_coverage=engine_cfg.enable_coverage,
        max_crashes=max_crashes,
    )
    try:
        future = orch.start_fuzzing(task)
        click.echo(f"Session: {future.session_id}")
        try:
            result = future.result()
        except KeyboardInterrupt:
            click.echo("Interrupted; stopping session.", err=True)
            orch.stop_fuzzing(future.session_id)
            result = future.result()
    except FuzzCtlError as e:
        raise click.ClickException(str(e)) from e
    finally:
        orch.shutdown()

    click.echo(f"Status: {result.status.value}")
    click.echo(f"Exit code: {result.exit_code}")
    click.echo(f"Executions: {result.executions}")
    click.echo(f"Crashes: {result.crash_count}")
    for crash in result.crash_files:
        click.echo(f"  {crash}")
    if result.error_message:
        click.echo(f"Note: {result.error_message}")
    if output_path:
        get_reporter("json").report_result(result, output_path)
        click.echo(f"Result written to {output_path}")
    if result.status is SessionStatus.ERROR:
        raise SystemExit(1)


def _helper_options(fn):
    fn = click.option("--verbose", "-v", is_flag=True, help="Debug logging.")(fn)
    fn = click.option("--arg", "arguments", multiple=True, help="Target argument (repeatable); '@@' marks the input file.")(fn)
    fn = click.option("--engine", "engine_name", default=None, help="Engine name (default: configured default engine).")(fn)
    fn = click.option("--testcase", required=True, type=click.Path(path_type=Path, exists=True, dir_okay=False), help="Input file.")(fn)
    fn = click.option("--target", "target_path", required=True, type=click.Path(path_type=Path, exists=True, dir_okay=False), help="Target binary.")(fn)
    return fn


@main.command()
@_helper_options
@click.option("--output", "output_path", type=click.Path(path_type=Path), help="Write the reproduction result to this JSON file.")
def reproduce(
    target_path: Path,
    testcase: Path,
    engine_name: str | None,
    arguments: tuple[str, ...],
    verbose: bool,
    output_path: Path | None,
) -> None:
    """Run the target once on a crashing input and classify the crash."""
    _, orch = _load_config_and_engines()
    _setup_logging(verbose)
    try:
        result = orch.reproduce_crash(testcase, target_path, arguments, engine=engine_name).result()
    except FuzzCtlError as e:
        raise click.ClickException(str(e)) from e
    finally:
        orch.shutdown()
    click.echo(f"Reproduced: {'yes' if result.reproduced else 'no'}")
    click.echo(f"Exit code: {result.exit_code}")
    click.echo(f"Crash type: {result.crash_type}")
    if result.crash_address:
        click.echo(f"Address: {result.crash_address}")
    if verbose and result.stack_trace:
        click.echo(result.stack_trace)
    if output_path:
        get_reporter("json").report_reproduction(result, output_path)
        click.echo(f"Result written to {output_path}")


@main.command()
@_helper_options
def minimize(
    target_path: Path,
    testcase: Path,
    engine_name: str | None,
    arguments: tuple[str, ...],
    verbose: bool,
) -> None:
    """Shrink a crashing input while keeping it crashing."""
    _, orch = _load_config_and_engines()
    _setup_logging(verbose)
    try:
        minimized = orch.minimize_test_case(testcase, target_path, arguments, engine=engine_name).result()
    except FuzzCtlError as e:
        raise click.ClickException(str(e)) from e
    finally:
        orch.shutdown()
    click.echo(f"Minimized test case: {minimized}")


@main.command()
@_helper_options
@click.option("--output", "output_path", type=click.Path(path_type=Path), help="Write coverage to this JSON file.")
def coverage(
    target_path: Path,
    testcase: Path,
    engine_name: str | None,
    arguments: tuple[str, ...],
    verbose: bool,
    output_path: Path | None,
) -> None:
    """Measure line/function/branch coverage of one input."""
    _, orch = _load_config_and_engines()
    _setup_logging(verbose)
    try:
        info = orch.generate_coverage(testcase, target_path, arguments, engine=engine_name).result()
    except FuzzCtlError as e:
        raise click.ClickException(str(e)) from e
    finally:
        orch.shutdown()
    click.echo(f"Lines: {info.covered_lines}/{info.total_lines} ({info.coverage_percentage:.2f}%)")
    click.echo(f"Functions: {info.covered_functions}/{info.total_functions} ({info.function_coverage_percentage:.2f}%)")
    click.echo(f"Branches: {info.covered_branches}/{info.total_branches} ({info.branch_coverage_percentage:.2f}%)")
    if output_path:
        get_reporter("json").report_coverage(info, output_path)
        click.echo(f"Coverage written to {output_path}")


if __name__ == "__main__":
    main()
