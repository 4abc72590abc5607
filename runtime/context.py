from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from runners.registry import RunnerRegistry
from runtime.config_models import RunConfig
from runtime.executor import StageSet
from runtime.workspace import WorkspaceManager


@dataclass(frozen=True)
class BenchmarkContext:
    """Everything a benchmark invocation needs, built once at startup."""

    config: RunConfig
    registry: RunnerRegistry
    workspaces: WorkspaceManager
    base_dir: Path
    stages: StageSet = field(default_factory=StageSet)
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def resolve(self, configured: str) -> Path:
        """Resolve a configured path against the repository base."""

        path = Path(configured)
        return path if path.is_absolute() else self.base_dir / path

    @property
    def benchmarks_dir(self) -> Path:
        return self.resolve(self.config.output.benchmarks_dir)


def build_context(
    config: RunConfig,
    base_dir: Optional[Path] = None,
    *,
    runner_overrides: Optional[Mapping[str, type]] = None,
    stages: Optional[StageSet] = None,
    env: Optional[Mapping[str, str]] = None,
) -> BenchmarkContext:
    base = base_dir or Path.cwd()
    workspaces = WorkspaceManager.from_config(config.scaffold, base)
    registry = RunnerRegistry.from_config(config, workspaces, overrides=runner_overrides)
    return BenchmarkContext(
        config=config,
        registry=registry,
        workspaces=workspaces,
        base_dir=base,
        stages=stages or StageSet(),
        env=dict(os.environ) if env is None else dict(env),
    )
