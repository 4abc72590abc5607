from __future__ import annotations

import time
from pathlib import Path
from typing import ClassVar, Optional, Tuple

from runtime.config_models import RunConfig, RunnerSettings
from runtime.manifest_store import EventLogger, null_logger
from runtime.schemas import GenerationResult, Workspace
from runtime.workspace import WorkspaceManager
from stages.commands import elapsed_ms


class GenerationError(RuntimeError):
    """Backend-specific generation failure with a human-readable reason."""


class BaseRunner:
    """Shared workspace provisioning around a backend-specific generation call.

    Subclasses implement `generate_into`. Every failure, including workspace
    creation and scaffold extraction, is folded into a failed
    `GenerationResult`; nothing escapes `generate`.
    """

    runner_id: ClassVar[str] = ""
    display_name: ClassVar[str] = ""
    default_model: ClassVar[str] = ""
    required_env: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, workspaces: WorkspaceManager, settings: Optional[RunnerSettings] = None) -> None:
        self.workspaces = workspaces
        self.settings = settings or RunnerSettings()

    @classmethod
    def from_config(cls, config: RunConfig, workspaces: WorkspaceManager) -> "BaseRunner":
        return cls(workspaces, config.runner_settings(cls.runner_id))

    @property
    def model(self) -> str:
        """Configured model override, falling back to the runner default."""

        return self.settings.model or self.default_model

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        *,
        event_logger: Optional[EventLogger] = None,
    ) -> GenerationResult:
        log = event_logger or null_logger
        model_name = model or self.model
        workspaces = self.workspaces.with_logger(log)

        try:
            workspace = workspaces.create()
        except Exception as exc:
            log(f"Workspace creation failed: {exc}", level="ERROR")
            return GenerationResult(success=False, duration_ms=0, error=f"Workspace creation failed: {exc}")

        try:
            archive = await workspaces.populate(workspace)
        except Exception as exc:
            log(f"Scaffold population failed: {exc}", level="ERROR")
            return self._failed(workspace, f"Scaffold population failed: {exc}", 0)

        log(f"Generating with {self.display_name or self.runner_id} (model={model_name})")
        start = time.monotonic()
        try:
            content = await self.generate_into(workspace, prompt, model_name, log)
        except Exception as exc:
            duration_ms = elapsed_ms(start)
            message = str(exc) or type(exc).__name__
            log(f"Code generation failed ({duration_ms}ms): {message}", level="ERROR")
            return self._failed(workspace, message, duration_ms, archive=archive)

        duration_ms = elapsed_ms(start)
        log(f"Code generated ({duration_ms}ms)")
        return GenerationResult(
            success=True,
            duration_ms=duration_ms,
            workspace_dir=str(workspace.path),
            workspace_id=workspace.id,
            content=content,
            scaffold_archive=str(archive),
        )

    async def generate_into(
        self,
        workspace: Workspace,
        prompt: str,
        model: str,
        event_logger: EventLogger,
    ) -> str:
        raise NotImplementedError

    def cleanup_workspace(
        self,
        workspace_dir: Path,
        *,
        event_logger: Optional[EventLogger] = None,
    ) -> bool:
        return self.workspaces.with_logger(event_logger or null_logger).destroy(Path(workspace_dir))

    @staticmethod
    def _failed(
        workspace: Workspace,
        error: str,
        duration_ms: int,
        archive: Optional[Path] = None,
    ) -> GenerationResult:
        return GenerationResult(
            success=False,
            duration_ms=duration_ms,
            workspace_dir=str(workspace.path),
            workspace_id=workspace.id,
            error=error,
            scaffold_archive=str(archive) if archive else None,
        )
