from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from runners.contracts import Runner
from runtime.context import BenchmarkContext
from runtime.errors import ConfigurationError
from runtime.executor import RunnerExecutor
from runtime.manifest_store import (
    EventLogger,
    file_event_logger,
    metadata_path,
    new_run_timestamp,
    now_iso,
    read_metadata,
    run_log_path,
    today,
    write_metadata,
)
from runtime.metrics import compute_summary, fmt_ms
from runtime.report_models import BenchmarkMetadata, RunnerBenchmarkResult


@dataclass
class BenchmarkOutcome:
    """Structured metadata returned after benchmarking one app."""

    app_name: str
    timestamp: str
    output_dir: Path
    metadata_path: Path
    run_log_path: Path
    metadata: BenchmarkMetadata

    @property
    def exit_code(self) -> int:
        return 0 if self.metadata.summary.failed_runners == 0 else 1


def resolve_runners(context: BenchmarkContext, runner_filter: Optional[Sequence[str]] = None) -> List[Runner]:
    """Resolve the runner filter and check credentials before any work starts."""

    try:
        runners = context.registry.select(runner_filter)
    except KeyError as exc:
        raise ConfigurationError(exc.args[0]) from exc
    if not runners:
        raise ConfigurationError("No runners are registered.")

    missing = sorted({name for runner in runners for name in runner.required_env if not context.env.get(name)})
    if missing:
        raise ConfigurationError(f"Missing required environment variable(s): {', '.join(missing)}")
    return runners


def _allocate_output_dir(benchmarks_dir: Path, app_name: str) -> tuple[str, Path]:
    """Create `{timestamp}/{app}`; a same-second collision gets a numeric suffix."""

    base_timestamp = new_run_timestamp()
    timestamp = base_timestamp
    suffix = 1
    while True:
        output_dir = benchmarks_dir / timestamp / app_name
        try:
            output_dir.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            suffix += 1
            timestamp = f"{base_timestamp}-{suffix}"
            continue
        return timestamp, output_dir


def _collect_screenshot(result: RunnerBenchmarkResult, output_dir: Path, log: EventLogger) -> None:
    if not result.screenshot_path:
        return
    source = Path(result.screenshot_path)
    target = output_dir / f"{result.runner_id}_{today()}.png"
    try:
        shutil.copy2(source, target)
    except OSError as exc:
        log(f"Failed to copy screenshot for {result.runner_id}: {exc}", level="WARNING")
        return
    result.screenshot_path = str(target)


def _format_result_line(result: RunnerBenchmarkResult) -> str:
    durations = result.durations
    line = (
        f"runner={result.runner_id} success={result.success} "
        f"total={fmt_ms(result.total_duration_ms)} "
        f"generation={fmt_ms(durations.generation_ms)} "
        f"compile={fmt_ms(durations.compile_ms)} "
        f"serve={fmt_ms(durations.serve_ms)} "
        f"analyze={fmt_ms(durations.analyze_ms)}"
    )
    if result.failed_stage:
        line += f" failed_stage={result.failed_stage}"
    return line


async def _run_one(
    context: BenchmarkContext,
    runner: Runner,
    *,
    app_name: str,
    prompt: str,
    output_dir: Path,
    keep_workspaces: bool,
    log: EventLogger,
) -> RunnerBenchmarkResult:
    executor: Optional[RunnerExecutor] = None
    try:
        executor = RunnerExecutor(
            runner,
            context.config,
            output_dir,
            stages=context.stages,
            keep_workspace=keep_workspaces,
            event_logger=log,
        )
        log(f"{runner.runner_id} model={executor.result.model}")
        result = await executor.execute(prompt, test_id=f"{runner.runner_id}-{app_name}")
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        log(f"Unexpected error while running {runner.runner_id}: {message}", level="ERROR")
        if executor is not None:
            result = executor.result.model_copy()
        else:
            result = RunnerBenchmarkResult(runner_id=runner.runner_id, timestamp=now_iso())
        result.success = False
        result.state = "failed"
        result.failed_stage = result.failed_stage or "pipeline"
        result.error = message
        return result
    _collect_screenshot(result, output_dir, log)
    return result


async def run_benchmark(
    context: BenchmarkContext,
    app_name: str,
    prompt: str,
    *,
    runner_filter: Optional[Sequence[str]] = None,
    keep_workspaces: bool = False,
    echo: Optional[Callable[[str, str], None]] = None,
) -> BenchmarkOutcome:
    """Run every selected runner sequentially and persist `metadata.json`.

    Configuration problems raise `ConfigurationError` before anything is
    written. Once runners start, a failing runner never stops the others.
    """

    runners = resolve_runners(context, runner_filter)
    timestamp, output_dir = _allocate_output_dir(context.benchmarks_dir, app_name)
    log_path = run_log_path(output_dir)
    log = file_event_logger(log_path, echo=echo)
    log(
        "Starting benchmark:"
        f" app={app_name}"
        f" timestamp={timestamp}"
        f" runners={','.join(runner.runner_id for runner in runners)}"
        f" keep_workspaces={keep_workspaces}"
    )

    results: List[RunnerBenchmarkResult] = []
    for index, runner in enumerate(runners, start=1):
        log(f"[{index}/{len(runners)}] {runner.runner_id}")
        result = await _run_one(
            context,
            runner,
            app_name=app_name,
            prompt=prompt,
            output_dir=output_dir,
            keep_workspaces=keep_workspaces,
            log=log,
        )
        results.append(result)
        log(_format_result_line(result), level="INFO" if result.success else "ERROR")

    metadata = BenchmarkMetadata(
        app_name=app_name,
        timestamp=timestamp,
        prompt=prompt,
        keep_workspaces=keep_workspaces,
        runners=results,
        summary=compute_summary(results),
    )
    out_metadata_path = metadata_path(output_dir)
    write_metadata(out_metadata_path, metadata.model_dump(mode="json"))
    summary = metadata.summary
    log(
        f"Benchmark complete: {summary.successful_runners}/{summary.total_runners} succeeded"
        + (f", fastest={summary.fastest_runner} ({fmt_ms(summary.fastest_time)})" if summary.fastest_runner else "")
    )
    return BenchmarkOutcome(
        app_name=app_name,
        timestamp=timestamp,
        output_dir=output_dir,
        metadata_path=out_metadata_path,
        run_log_path=log_path,
        metadata=metadata,
    )


def load_benchmark_metadata(path: Path) -> BenchmarkMetadata:
    """Load a persisted metadata file; raises when missing or malformed."""

    payload = read_metadata(path)
    if not payload:
        raise FileNotFoundError(f"No benchmark metadata at {path}")
    return BenchmarkMetadata.model_validate(payload)
