from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from stages.serve import ServerHandle


@dataclass(frozen=True)
class Workspace:
    """One runner's isolated project directory."""

    path: Path
    id: str


@dataclass(frozen=True)
class GenerationResult:
    """Uniform outcome returned by every runner adapter."""

    success: bool
    duration_ms: int
    workspace_dir: str = ""
    workspace_id: str = ""
    content: Optional[str] = None
    error: Optional[str] = None
    scaffold_archive: Optional[str] = None

    @property
    def content_preview(self) -> Optional[str]:
        return self.content[:200] if self.content else None


@dataclass(frozen=True)
class CompileResult:
    """Install + build stage outcome; build fields only exist after install succeeded."""

    success: bool
    duration_ms: int
    install_needed: bool = False
    install_duration_ms: Optional[int] = None
    build_duration_ms: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(
        cls,
        *,
        duration_ms: int,
        install_needed: bool,
        install_duration_ms: Optional[int],
        build_duration_ms: int,
        stdout: str,
        stderr: str,
    ) -> "CompileResult":
        return cls(
            success=True,
            duration_ms=duration_ms,
            install_needed=install_needed,
            install_duration_ms=install_duration_ms,
            build_duration_ms=build_duration_ms,
            stdout=stdout,
            stderr=stderr,
        )

    @classmethod
    def failed(
        cls,
        error: str,
        *,
        duration_ms: int,
        install_needed: bool = False,
        install_duration_ms: Optional[int] = None,
        build_duration_ms: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> "CompileResult":
        return cls(
            success=False,
            duration_ms=duration_ms,
            install_needed=install_needed,
            install_duration_ms=install_duration_ms,
            build_duration_ms=build_duration_ms,
            stdout=stdout,
            stderr=stderr,
            error=error,
        )


@dataclass(frozen=True)
class ServeResult:
    """Dev-server startup outcome; `server` is set only when the ready pattern matched."""

    success: bool
    duration_ms: int
    output: str = ""
    server: Optional["ServerHandle"] = None
    error: Optional[str] = None

    @property
    def server_url(self) -> Optional[str]:
        return self.server.url if self.server is not None else None

    @classmethod
    def ok(cls, server: "ServerHandle", *, duration_ms: int, output: str) -> "ServeResult":
        return cls(success=True, duration_ms=duration_ms, output=output, server=server)

    @classmethod
    def failed(cls, error: str, *, duration_ms: int, output: str = "") -> "ServeResult":
        return cls(success=False, duration_ms=duration_ms, output=output, error=error)


@dataclass(frozen=True)
class ConsoleMessage:
    type: str
    text: str


@dataclass(frozen=True)
class PageMetrics:
    url: str
    ready_state: str
    body_children: int


@dataclass(frozen=True)
class AnalyzeResult:
    """Browser analysis outcome; page artifacts only exist on success."""

    success: bool
    duration_ms: int
    navigation_duration_ms: Optional[int] = None
    screenshot_path: Optional[str] = None
    title: Optional[str] = None
    metrics: Optional[PageMetrics] = None
    console_messages: List[ConsoleMessage] = field(default_factory=list)
    console_errors: List[str] = field(default_factory=list)
    page_errors: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return bool(self.console_errors or self.page_errors)

    @classmethod
    def ok(
        cls,
        *,
        duration_ms: int,
        navigation_duration_ms: int,
        screenshot_path: str,
        title: str,
        metrics: PageMetrics,
        console_messages: List[ConsoleMessage],
        console_errors: List[str],
        page_errors: List[str],
    ) -> "AnalyzeResult":
        return cls(
            success=True,
            duration_ms=duration_ms,
            navigation_duration_ms=navigation_duration_ms,
            screenshot_path=screenshot_path,
            title=title,
            metrics=metrics,
            console_messages=list(console_messages),
            console_errors=list(console_errors),
            page_errors=list(page_errors),
        )

    @classmethod
    def failed(
        cls,
        error: str,
        *,
        duration_ms: int,
        console_errors: Optional[List[str]] = None,
        page_errors: Optional[List[str]] = None,
    ) -> "AnalyzeResult":
        return cls(
            success=False,
            duration_ms=duration_ms,
            console_errors=list(console_errors or []),
            page_errors=list(page_errors or []),
            error=error,
        )
