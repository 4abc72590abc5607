from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from runners.contracts import Runner
from runtime.config_models import RunConfig
from runtime.manifest_store import EventLogger, now_iso, null_logger
from runtime.report_models import ConsoleMessageRecord, PageAnalysis, PageMetricsRecord, RunnerBenchmarkResult
from runtime.schemas import AnalyzeResult, CompileResult, GenerationResult, ServeResult
from stages.analyze import analyze_app
from stages.compile import compile_app
from stages.serve import serve_app, stop_server


class PipelineState(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPILING = "compiling"
    SERVING = "serving"
    ANALYZING = "analyzing"
    STOPPING = "stopping"
    CLEANING = "cleaning"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class StageSet:
    """Stage callables used by the executor; swapped out in tests."""

    compile: Callable[..., Awaitable[CompileResult]] = compile_app
    serve: Callable[..., Awaitable[ServeResult]] = serve_app
    analyze: Callable[..., Awaitable[AnalyzeResult]] = analyze_app
    stop: Callable[..., Awaitable[None]] = stop_server


class RunnerExecutor:
    """Drive one runner through generate, compile, serve and analyze.

    The first unsuccessful stage ends the run for this runner. Teardown always
    follows: a started server is stopped, then the workspace is deleted unless
    it is being kept.
    """

    def __init__(
        self,
        runner: Runner,
        config: RunConfig,
        results_dir: Path,
        *,
        stages: Optional[StageSet] = None,
        keep_workspace: bool = False,
        event_logger: EventLogger = null_logger,
    ) -> None:
        self.runner = runner
        self.config = config
        self.results_dir = results_dir
        self.stages = stages or StageSet()
        self.keep_workspace = keep_workspace
        self.log = event_logger
        self.state = PipelineState.PENDING
        self.result = RunnerBenchmarkResult(
            runner_id=runner.runner_id,
            display_name=runner.display_name,
            model=runner.model,
            timestamp=now_iso(),
            state=self.state.value,
        )
        self._server: Optional[Any] = None

    async def execute(self, prompt: str, test_id: str) -> RunnerBenchmarkResult:
        try:
            await self._run_stages(prompt, test_id)
        finally:
            await self._teardown()
        return self.result

    def _transition(self, state: PipelineState) -> None:
        self.state = state
        self.result.state = state.value

    def _fail(self, stage: str, error: Optional[str]) -> None:
        self.result.success = False
        self.result.failed_stage = stage
        self.result.error = error or f"{stage} failed"
        self._transition(PipelineState.FAILED)
        self.log(f"{self.runner.runner_id} failed at {stage}: {self.result.error}", level="ERROR")

    def _refresh_total(self) -> None:
        self.result.total_duration_ms = self.result.durations.total_ms()

    async def _run_stages(self, prompt: str, test_id: str) -> None:
        self._transition(PipelineState.GENERATING)
        generation = await self.runner.generate(prompt, self.result.model, event_logger=self.log)
        self._record_generation(generation)
        if not generation.success:
            self._fail("generation", generation.error)
            return

        workspace_path = Path(generation.workspace_dir)
        self._transition(PipelineState.COMPILING)
        compiled = await self.stages.compile(workspace_path, self.config.compile, self.log)
        self._record_compile(compiled)
        if not compiled.success:
            self._fail("compile", compiled.error)
            return

        self._transition(PipelineState.SERVING)
        served = await self.stages.serve(workspace_path, self.config.serve, self.log)
        if served.server is not None:
            self._server = served.server
        self._record_serve(served)
        if not served.success:
            self._fail("serve", served.error)
            return

        self._transition(PipelineState.ANALYZING)
        analyzed = await self.stages.analyze(
            served.server_url,
            test_id,
            self.results_dir,
            self.config.analyze,
            self.log,
        )
        self._record_analyze(analyzed)
        if not analyzed.success:
            self._fail("analyze", analyzed.error)
            return

        self.result.success = True

    def _enter_teardown(self, state: PipelineState) -> None:
        # `failed` is absorbing; teardown still runs but the state stays put.
        if self.state is not PipelineState.FAILED:
            self._transition(state)

    async def _teardown(self) -> None:
        if self._server is not None:
            self._enter_teardown(PipelineState.STOPPING)
            try:
                await self.stages.stop(self._server, self.config.serve.stop_grace_s, self.log)
            except Exception as exc:
                self.log(f"Failed to stop server for {self.runner.runner_id}: {exc}", level="WARNING")
            output = getattr(self._server, "output", None)
            if output is not None:
                self.result.server_output = output.text
            self._server = None

        workspace_dir = self.result.workspace_dir
        if workspace_dir and self.keep_workspace:
            self.result.workspace_retained = True
            self.log(f"Workspace kept: {workspace_dir}")
        elif workspace_dir:
            self._enter_teardown(PipelineState.CLEANING)
            try:
                self.runner.cleanup_workspace(Path(workspace_dir), event_logger=self.log)
            except Exception as exc:
                self.log(f"Failed to delete workspace {workspace_dir}: {exc}", level="WARNING")

        self._transition(PipelineState.DONE if self.result.success else PipelineState.FAILED)

    def _record_generation(self, generation: GenerationResult) -> None:
        self.result.durations.generation_ms = generation.duration_ms
        self.result.workspace_dir = generation.workspace_dir
        self.result.workspace_id = generation.workspace_id
        self.result.content_preview = generation.content_preview
        self.result.scaffold_archive = generation.scaffold_archive
        self._refresh_total()

    def _record_compile(self, compiled: CompileResult) -> None:
        durations = self.result.durations
        durations.compile_ms = compiled.duration_ms
        durations.install_ms = compiled.install_duration_ms
        durations.build_ms = compiled.build_duration_ms
        self.result.install_needed = compiled.install_needed
        self.result.compile_stdout = compiled.stdout or None
        self.result.compile_stderr = compiled.stderr or None
        self._refresh_total()

    def _record_serve(self, served: ServeResult) -> None:
        self.result.durations.serve_ms = served.duration_ms
        self.result.server_url = served.server_url
        self.result.server_output = served.output or None
        self._refresh_total()

    def _record_analyze(self, analyzed: AnalyzeResult) -> None:
        self.result.durations.analyze_ms = analyzed.duration_ms
        self.result.title = analyzed.title
        self.result.screenshot_path = analyzed.screenshot_path
        self.result.console_errors = list(analyzed.console_errors)
        self.result.page_errors = list(analyzed.page_errors)
        self.result.console_error_count = len(analyzed.console_errors)
        self.result.page_error_count = len(analyzed.page_errors)
        self.result.has_errors = analyzed.has_errors
        if analyzed.success:
            metrics = analyzed.metrics
            self.result.analysis = PageAnalysis(
                navigation_duration_ms=analyzed.navigation_duration_ms,
                metrics=PageMetricsRecord(
                    url=metrics.url,
                    ready_state=metrics.ready_state,
                    body_children=metrics.body_children,
                )
                if metrics is not None
                else None,
                console_messages=[
                    ConsoleMessageRecord(type=message.type, text=message.text)
                    for message in analyzed.console_messages
                ],
            )
        self._refresh_total()
