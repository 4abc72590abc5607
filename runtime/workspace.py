from __future__ import annotations

import asyncio
import secrets
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Optional

from runtime.config_models import ScaffoldConfig
from runtime.manifest_store import EventLogger, null_logger
from runtime.schemas import Workspace


class WorkspaceManager:
    """Create, populate and delete per-run workspace directories."""

    def __init__(
        self,
        root: Path,
        archive: Path,
        prewarmed_archive: Optional[Path] = None,
        event_logger: EventLogger = null_logger,
    ) -> None:
        self.root = root
        self.archive = archive
        self.prewarmed_archive = prewarmed_archive
        self.log = event_logger

    @classmethod
    def from_config(
        cls,
        config: ScaffoldConfig,
        base_dir: Path,
        event_logger: EventLogger = null_logger,
    ) -> "WorkspaceManager":
        """Resolve configured archive paths relative to the repository base."""

        root = (
            Path(config.workspace_root)
            if config.workspace_root
            else Path(tempfile.gettempdir()) / "abe-workspaces"
        )
        archive = Path(config.archive)
        if not archive.is_absolute():
            archive = base_dir / archive
        prewarmed = Path(config.prewarmed_archive) if config.prewarmed_archive else None
        if prewarmed is not None and not prewarmed.is_absolute():
            prewarmed = base_dir / prewarmed
        return cls(root=root, archive=archive, prewarmed_archive=prewarmed, event_logger=event_logger)

    def with_logger(self, event_logger: EventLogger) -> "WorkspaceManager":
        return WorkspaceManager(
            root=self.root,
            archive=self.archive,
            prewarmed_archive=self.prewarmed_archive,
            event_logger=event_logger,
        )

    def create(self) -> Workspace:
        """Allocate a uniquely named directory; errors propagate to the caller."""

        workspace_id = secrets.token_hex(8)
        path = self.root / workspace_id
        path.mkdir(parents=True, exist_ok=False)
        self.log(f"Workspace created: {path}")
        return Workspace(path=path, id=workspace_id)

    def select_archive(self) -> Path:
        """Prefer the pre-warmed archive (dependencies already installed) when present."""

        if self.prewarmed_archive is not None and self.prewarmed_archive.is_file():
            return self.prewarmed_archive
        return self.archive

    async def populate(self, workspace: Workspace, archive: Optional[Path] = None) -> Path:
        """Extract the scaffold into the workspace and return the archive used."""

        source = archive or self.select_archive()
        if not source.is_file():
            raise FileNotFoundError(f"Scaffold archive not found: {source}")
        await asyncio.to_thread(_extract_archive, source, workspace.path)
        prewarmed = source == self.prewarmed_archive
        self.log(
            f"Workspace populated from {'pre-warmed ' if prewarmed else ''}archive {source.name}"
        )
        return source

    def destroy(self, workspace_dir: Path) -> bool:
        """Delete a workspace tree; failures are warnings, never raised."""

        try:
            shutil.rmtree(workspace_dir)
        except FileNotFoundError:
            return True
        except OSError as exc:
            self.log(f"Failed to delete workspace {workspace_dir}: {exc}", level="WARNING")
            return False
        self.log(f"Workspace deleted: {workspace_dir}")
        return True


def _extract_archive(archive: Path, destination: Path) -> None:
    with tarfile.open(archive, "r:*") as tar:
        tar.extractall(destination, filter="data")
