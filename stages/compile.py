from __future__ import annotations

import time
from pathlib import Path

from runtime.config_models import CompileConfig
from runtime.manifest_store import EventLogger, null_logger
from runtime.schemas import CompileResult
from stages.commands import elapsed_ms, run_command, truncate


async def compile_app(
    workspace_path: Path,
    config: CompileConfig,
    event_logger: EventLogger = null_logger,
) -> CompileResult:
    """Install dependencies when missing, then build the generated project."""

    log = event_logger
    start = time.monotonic()
    limit = config.excerpt_chars
    install_needed = not (workspace_path / config.dependency_dir).exists()
    install_duration_ms = None

    if install_needed:
        install_label = " ".join(config.install_cmd)
        log(f"Installing dependencies: {install_label}")
        install = await run_command(config.install_cmd, workspace_path, config.install_timeout_s)
        install_duration_ms = install.duration_ms
        if not install.ok:
            reason = install.describe_failure(config.install_timeout_s)
            log(f"Install failed after {install.duration_ms}ms ({reason})", level="ERROR")
            return CompileResult.failed(
                f"{install_label} failed",
                duration_ms=elapsed_ms(start),
                install_needed=True,
                install_duration_ms=install_duration_ms,
                stdout=truncate(install.stdout, limit),
                stderr=truncate(install.stderr or reason, limit),
            )
        log(f"Dependencies installed ({install.duration_ms}ms)")
    else:
        log("Dependencies already installed")

    build_label = " ".join(config.build_cmd)
    log(f"Building app: {build_label}")
    build = await run_command(config.build_cmd, workspace_path, config.build_timeout_s)
    if not build.ok:
        reason = build.describe_failure(config.build_timeout_s)
        log(f"Build failed after {build.duration_ms}ms ({reason})", level="ERROR")
        return CompileResult.failed(
            f"{build_label} failed: {reason}",
            duration_ms=elapsed_ms(start),
            install_needed=install_needed,
            install_duration_ms=install_duration_ms,
            build_duration_ms=build.duration_ms,
            stdout=truncate(build.stdout, limit),
            stderr=truncate(build.stderr or reason, limit),
        )

    duration_ms = elapsed_ms(start)
    log(f"Compilation succeeded ({duration_ms}ms)")
    return CompileResult.ok(
        duration_ms=duration_ms,
        install_needed=install_needed,
        install_duration_ms=install_duration_ms,
        build_duration_ms=build.duration_ms,
        stdout=truncate(build.stdout, limit),
        stderr=truncate(build.stderr, limit),
    )
