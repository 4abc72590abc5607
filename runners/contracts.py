from __future__ import annotations

from pathlib import Path
from typing import ClassVar, Optional, Protocol, Tuple

from runtime.config_models import RunConfig
from runtime.manifest_store import EventLogger
from runtime.schemas import GenerationResult
from runtime.workspace import WorkspaceManager


class Runner(Protocol):
    """Code-generation backend driven by the benchmark pipeline."""

    runner_id: ClassVar[str]
    display_name: ClassVar[str]
    default_model: ClassVar[str]
    required_env: ClassVar[Tuple[str, ...]]

    @classmethod
    def from_config(cls, config: RunConfig, workspaces: WorkspaceManager) -> "Runner": ...

    @property
    def model(self) -> str: ...

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        *,
        event_logger: Optional[EventLogger] = None,
    ) -> GenerationResult: ...

    def cleanup_workspace(
        self,
        workspace_dir: Path,
        *,
        event_logger: Optional[EventLogger] = None,
    ) -> bool: ...
