from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence


@dataclass(frozen=True)
class CommandOutcome:
    """Captured result of one bounded subprocess invocation."""

    argv: Sequence[str]
    returncode: Optional[int]
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    spawn_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.spawn_error is None

    def describe_failure(self, timeout_s: float) -> str:
        if self.spawn_error:
            return self.spawn_error
        if self.timed_out:
            return f"timed out after {timeout_s:g}s"
        return f"exited with code {self.returncode}"


def elapsed_ms(start: float) -> int:
    return max(0, int((time.monotonic() - start) * 1000))


def truncate(text: str, limit: int) -> str:
    return text[:limit] if limit >= 0 else text


def command_env(extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env


def signal_process_group(proc: asyncio.subprocess.Process, sig: int) -> bool:
    """Signal the child's whole process group; `npm run x` forks the real worker.

    The child leads its own session, so the group outlives it while any worker
    is still alive. Returns False once nothing is left in the group.
    """

    if not hasattr(os, "killpg"):
        if proc.returncode is not None:
            return False
        proc.send_signal(sig)
        return True
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        return False
    except PermissionError:
        if proc.returncode is None:
            proc.send_signal(sig)
    return True


def process_group_alive(proc: asyncio.subprocess.Process) -> bool:
    return signal_process_group(proc, 0)


async def kill_and_reap(proc: asyncio.subprocess.Process) -> None:
    signal_process_group(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
    await proc.wait()


async def run_command(
    argv: Sequence[str],
    cwd: Path,
    timeout_s: float,
    env: Optional[Mapping[str, str]] = None,
) -> CommandOutcome:
    """Run a command to completion, killing its process group on timeout."""

    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=command_env(env),
            start_new_session=True,
        )
    except OSError as exc:
        return CommandOutcome(
            argv=list(argv),
            returncode=None,
            stdout="",
            stderr="",
            duration_ms=elapsed_ms(start),
            spawn_error=f"failed to start {argv[0]}: {exc}",
        )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        await kill_and_reap(proc)
        return CommandOutcome(
            argv=list(argv),
            returncode=proc.returncode,
            stdout="",
            stderr="",
            duration_ms=elapsed_ms(start),
            timed_out=True,
        )

    return CommandOutcome(
        argv=list(argv),
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        duration_ms=elapsed_ms(start),
    )
