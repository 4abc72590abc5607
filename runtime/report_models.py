from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt


class StageDurations(BaseModel):
    """Per-stage wall time in milliseconds; `None` means the stage never ran."""

    model_config = ConfigDict(extra="forbid")

    generation_ms: Optional[NonNegativeInt] = None
    compile_ms: Optional[NonNegativeInt] = None
    install_ms: Optional[NonNegativeInt] = None
    build_ms: Optional[NonNegativeInt] = None
    serve_ms: Optional[NonNegativeInt] = None
    analyze_ms: Optional[NonNegativeInt] = None

    def total_ms(self) -> int:
        """Sum of the benchmarked stages; install/build are already inside compile."""

        return sum(
            value or 0
            for value in (self.generation_ms, self.compile_ms, self.serve_ms, self.analyze_ms)
        )


class PageMetricsRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    ready_state: str
    body_children: NonNegativeInt = 0


class ConsoleMessageRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    text: str


class PageAnalysis(BaseModel):
    """What the browser saw once the page settled."""

    model_config = ConfigDict(extra="forbid")

    navigation_duration_ms: Optional[NonNegativeInt] = None
    metrics: Optional[PageMetricsRecord] = None
    console_messages: List[ConsoleMessageRecord] = Field(default_factory=list)


class RunnerBenchmarkResult(BaseModel):
    """One runner's complete pass through the pipeline."""

    model_config = ConfigDict(extra="forbid")

    runner_id: str
    display_name: str = ""
    model: str = ""
    timestamp: str = ""
    success: bool = False
    state: str = "pending"
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    total_duration_ms: NonNegativeInt = 0
    durations: StageDurations = Field(default_factory=StageDurations)
    install_needed: Optional[bool] = None
    content_preview: Optional[str] = None
    scaffold_archive: Optional[str] = None
    compile_stdout: Optional[str] = None
    compile_stderr: Optional[str] = None
    server_url: Optional[str] = None
    server_output: Optional[str] = None
    title: Optional[str] = None
    console_error_count: NonNegativeInt = 0
    page_error_count: NonNegativeInt = 0
    console_errors: List[str] = Field(default_factory=list)
    page_errors: List[str] = Field(default_factory=list)
    has_errors: bool = False
    analysis: Optional[PageAnalysis] = None
    screenshot_path: Optional[str] = None
    workspace_dir: str = ""
    workspace_id: str = ""
    workspace_retained: bool = False


class BenchmarkSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_runners: NonNegativeInt = 0
    successful_runners: NonNegativeInt = 0
    failed_runners: NonNegativeInt = 0
    fastest_runner: Optional[str] = None
    fastest_time: Optional[NonNegativeInt] = None


class BenchmarkMetadata(BaseModel):
    """Persisted record of one orchestrator invocation."""

    model_config = ConfigDict(extra="forbid")

    app_name: str
    timestamp: str
    prompt: str
    keep_workspaces: bool = False
    runners: List[RunnerBenchmarkResult] = Field(default_factory=list)
    summary: BenchmarkSummary = Field(default_factory=BenchmarkSummary)
