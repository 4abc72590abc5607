import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import typer
import yaml
from dotenv import load_dotenv
from rich import print
from rich.markup import escape

from apps.catalog import AppCatalog, AppPrompt
from runtime.benchmark_service import BenchmarkOutcome, run_benchmark
from runtime.config_loader import apply_run_overrides, load_run_config
from runtime.config_models import RunConfig
from runtime.context import build_context
from runtime.errors import ConfigurationError
from runtime.manifest_store import list_benchmark_runs
from runtime.metrics import fmt_ms, fmt_pct, success_rate

app = typer.Typer(add_completion=False)
load_dotenv()

LEVEL_STYLES = {"WARNING": "yellow", "ERROR": "red"}


def _echo(message: str, level: str) -> None:
    style = LEVEL_STYLES.get(level)
    text = escape(message)
    print(f"[{style}]{text}[/{style}]" if style else text)


def _parse_model_overrides(values: List[str]) -> Dict[str, str]:
    """Parse repeated `runner=model` options."""

    models: Dict[str, str] = {}
    for value in values:
        runner_id, sep, model = value.partition("=")
        if not sep or not runner_id.strip() or not model.strip():
            raise typer.BadParameter(f"Expected RUNNER=MODEL, got '{value}'", param_hint="--model")
        models[runner_id.strip()] = model.strip()
    return models


CONFIG_ERRORS = (FileNotFoundError, ValueError, yaml.YAMLError)


def _config_error(exc: Exception) -> typer.Exit:
    message = exc.args[0] if isinstance(exc, KeyError) and exc.args else str(exc)
    print(f"[red]Configuration error:[/red] {escape(str(message))}")
    return typer.Exit(code=1)


def _load_config(run_config: str) -> RunConfig:
    try:
        return load_run_config(Path(run_config))
    except CONFIG_ERRORS as exc:
        raise _config_error(exc) from exc


def _load_apps(catalog: AppCatalog) -> List[AppPrompt]:
    try:
        return catalog.list_apps()
    except CONFIG_ERRORS as exc:
        raise _config_error(exc) from exc


def _print_prompts(catalog: AppCatalog) -> None:
    for entry in _load_apps(catalog):
        print(f"[bold]{entry.app_id}[/bold]: {escape(entry.prompt)}")


def _print_outcome(outcome: BenchmarkOutcome) -> None:
    metadata = outcome.metadata
    for result in metadata.runners:
        status = "[green]ok[/green]" if result.success else f"[red]failed ({result.failed_stage})[/red]"
        durations = result.durations
        print(
            f"{result.runner_id} [{escape(result.model)}]: {status} "
            f"total={fmt_ms(result.total_duration_ms)} "
            f"generation={fmt_ms(durations.generation_ms)} "
            f"compile={fmt_ms(durations.compile_ms)} "
            f"serve={fmt_ms(durations.serve_ms)} "
            f"analyze={fmt_ms(durations.analyze_ms)} "
            f"console_errors={result.console_error_count} page_errors={result.page_error_count}"
        )
        if result.error:
            print(f"  error: {escape(result.error)}")
        if result.workspace_retained:
            print(f"  workspace: {result.workspace_dir}")

    summary = metadata.summary
    print(
        f"Benchmark summary: app={metadata.app_name} runners={summary.total_runners} "
        f"succeeded={summary.successful_runners} failed={summary.failed_runners} "
        f"success_rate={fmt_pct(success_rate(summary))}"
    )
    if summary.fastest_runner:
        print(f"Fastest: {summary.fastest_runner} ({fmt_ms(summary.fastest_time)})")
    print(f"Metadata written to {outcome.metadata_path}")
    print(f"Run log written to {outcome.run_log_path}")


@app.command()
def list(
    run_config: str = typer.Option("profiles/runs/default.yaml", help="Run config path"),
):
    """List available apps and runners."""
    config = _load_config(run_config)
    base_dir = Path.cwd()
    catalog = AppCatalog(base_dir, config.apps.catalog_dir)
    context = build_context(config, base_dir)
    apps = [entry.app_id for entry in _load_apps(catalog)]
    runners = context.registry.list_runners()
    print(f"Apps: {', '.join(apps)}" if apps else "Apps: (none)")
    print(f"Runners: {', '.join(runners)}" if runners else "Runners: (none)")


@app.command()
def history(
    run_config: str = typer.Option("profiles/runs/default.yaml", help="Run config path"),
    limit: int = typer.Option(20, help="Maximum number of runs to show"),
):
    """List persisted benchmark runs, newest first."""
    config = _load_config(run_config)
    context = build_context(config, Path.cwd())
    runs = list_benchmark_runs(context.benchmarks_dir)
    if not runs:
        print(f"No benchmark runs under {context.benchmarks_dir}")
        return
    for entry in runs[:limit]:
        summary = entry["metadata"].get("summary", {})
        fastest = summary.get("fastest_runner")
        line = (
            f"{entry['timestamp']} {entry['app_name']}: "
            f"{summary.get('successful_runners', 0)}/{summary.get('total_runners', 0)} succeeded"
        )
        if fastest:
            line += f", fastest={fastest} ({fmt_ms(summary.get('fastest_time'))})"
        print(line)


@app.command()
def run(
    app_name: Optional[str] = typer.Argument(None, help="App id from the catalog, or a new name with --prompt"),
    prompt: Optional[str] = typer.Option(None, help="Prompt text; overrides the catalog prompt"),
    runner: List[str] = typer.Option([], "--runner", help="Runner id to include (repeatable); default all"),
    model: List[str] = typer.Option([], "--model", help="Model override as RUNNER=MODEL (repeatable)"),
    keep_workspaces: bool = typer.Option(False, help="Keep generated workspaces for inspection"),
    list_prompts: bool = typer.Option(False, help="Print the available app prompts and exit"),
    benchmarks_dir: Optional[str] = typer.Option(None, help="Benchmarks output directory override"),
    workspace_root: Optional[str] = typer.Option(None, help="Workspace root directory override"),
    run_config: str = typer.Option("profiles/runs/default.yaml", help="Run config path"),
    verbose: bool = typer.Option(
        False,
        "--verbose/--quiet",
        help="Quiet by default; use --verbose to stream run log lines to the terminal.",
    ),
):
    """Benchmark every selected runner on one app."""
    config = _load_config(run_config)
    base_dir = Path.cwd()
    catalog = AppCatalog(base_dir, config.apps.catalog_dir)

    if list_prompts:
        _print_prompts(catalog)
        return
    if not app_name:
        raise typer.BadParameter("APP is required unless --list-prompts is given", param_hint="APP")

    if prompt is None:
        try:
            prompt = catalog.get(app_name).prompt
        except (KeyError, *CONFIG_ERRORS) as exc:
            raise _config_error(exc) from exc

    effective_config = apply_run_overrides(
        config,
        benchmarks_dir=benchmarks_dir,
        workspace_root=workspace_root,
        models=_parse_model_overrides(model),
    )
    context = build_context(effective_config, base_dir)

    print(f"Starting benchmark: app={app_name} runners={','.join(runner) or 'all'}")
    try:
        outcome = asyncio.run(
            run_benchmark(
                context,
                app_name,
                prompt,
                runner_filter=runner,
                keep_workspaces=keep_workspaces,
                echo=_echo if verbose else None,
            )
        )
    except ConfigurationError as exc:
        raise _config_error(exc) from exc

    _print_outcome(outcome)
    raise typer.Exit(code=outcome.exit_code)


if __name__ == "__main__":
    app()
