from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScaffoldConfig(BaseModel):
    """Scaffold archives and the root under which workspaces are created."""

    model_config = ConfigDict(extra="forbid")

    archive: str = "test-fixtures/react-scaffold.tar.gz"
    prewarmed_archive: Optional[str] = "test-fixtures/react-scaffold-cached.tar.gz"
    workspace_root: Optional[str] = None


class CompileConfig(BaseModel):
    """Dependency install and build commands run inside each workspace."""

    model_config = ConfigDict(extra="forbid")

    install_cmd: List[str] = Field(default_factory=lambda: ["npm", "install"])
    build_cmd: List[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    dependency_dir: str = "node_modules"
    install_timeout_s: float = 300.0
    build_timeout_s: float = 180.0
    excerpt_chars: int = 500

    @field_validator("install_cmd", "build_cmd")
    @classmethod
    def validate_command(cls, value: List[str]) -> List[str]:
        """Reject empty argument lists."""

        if not value:
            raise ValueError("command must contain at least one argument")
        return value


class ServeConfig(BaseModel):
    """Development server launch and readiness detection settings."""

    model_config = ConfigDict(extra="forbid")

    cmd: List[str] = Field(default_factory=lambda: ["npm", "run", "dev"])
    ready_pattern: str = r"Local:\s+(http://localhost:\d+)"
    startup_timeout_s: float = 30.0
    stop_grace_s: float = 5.0
    output_excerpt_chars: int = 1000

    @field_validator("cmd")
    @classmethod
    def validate_command(cls, value: List[str]) -> List[str]:
        """Reject empty argument lists."""

        if not value:
            raise ValueError("serve.cmd must contain at least one argument")
        return value


class AnalyzeConfig(BaseModel):
    """Headless browser analysis limits."""

    model_config = ConfigDict(extra="forbid")

    navigation_timeout_s: float = 30.0
    settle_delay_s: float = 1.0
    max_console_messages: int = 20
    headless: bool = True


class RunnerSettings(BaseModel):
    """Per-runner overrides keyed by runner id."""

    model_config = ConfigDict(extra="forbid")

    model: Optional[str] = None
    timeout_s: Optional[float] = None
    params: Dict[str, Any] = Field(default_factory=dict)


class AppsConfig(BaseModel):
    """Location of extra app prompt definitions."""

    model_config = ConfigDict(extra="forbid")

    catalog_dir: str = "profiles/apps"


class OutputConfig(BaseModel):
    """Artifact output locations for benchmark products."""

    model_config = ConfigDict(extra="forbid")

    benchmarks_dir: str = "benchmarks"


class RunConfig(BaseModel):
    """Top-level strongly typed benchmark configuration."""

    model_config = ConfigDict(extra="forbid")

    scaffold: ScaffoldConfig = Field(default_factory=ScaffoldConfig)
    compile: CompileConfig = Field(default_factory=CompileConfig)
    serve: ServeConfig = Field(default_factory=ServeConfig)
    analyze: AnalyzeConfig = Field(default_factory=AnalyzeConfig)
    runners: Dict[str, RunnerSettings] = Field(default_factory=dict)
    apps: AppsConfig = Field(default_factory=AppsConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    def runner_settings(self, runner_id: str) -> RunnerSettings:
        """Return configured overrides for a runner, or empty defaults."""

        return self.runners.get(runner_id) or RunnerSettings()
