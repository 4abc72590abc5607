from __future__ import annotations

import asyncio
import codecs
import re
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from runtime.config_models import ServeConfig
from runtime.manifest_store import EventLogger, null_logger
from runtime.schemas import ServeResult
from stages.commands import (
    command_env,
    elapsed_ms,
    kill_and_reap,
    process_group_alive,
    signal_process_group,
)

ANSI_ESCAPE = re.compile(r"\x1B(?:\[[0-?]*[ -/]*[@-~]|\][^\x07]*\x07|[@-Z\\-_])")
NO_COLOR_ENV = {"FORCE_COLOR": "0", "NO_COLOR": "1"}
READ_CHUNK_BYTES = 4096
DRAIN_CLOSE_TIMEOUT_S = 1.0
GROUP_POLL_S = 0.05


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


class ReadyPatternMatcher:
    """Resolve-once line matcher over incrementally arriving server output.

    Text is buffered until a newline so that neither an escape sequence nor a
    URL split across reads can match early. After the first match the latch is
    closed and later output never produces another URL.
    """

    def __init__(self, pattern: str) -> None:
        self._pattern = re.compile(pattern, re.IGNORECASE)
        self._partial = ""
        self.url: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.url is not None

    def feed(self, text: str) -> Optional[str]:
        """Consume a chunk; return the URL only on the chunk that first matches."""

        if self.matched:
            return None
        self._partial += text
        *lines, self._partial = self._partial.split("\n")
        for line in lines:
            url = self._match(line)
            if url:
                self.url = url
                self._partial = ""
                return url
        return None

    def flush(self) -> Optional[str]:
        """Match the trailing unterminated line once the stream has ended."""

        if self.matched or not self._partial:
            return None
        line, self._partial = self._partial, ""
        url = self._match(line)
        if url:
            self.url = url
        return url

    def _match(self, line: str) -> Optional[str]:
        found = self._pattern.search(strip_ansi(line).rstrip("\r"))
        if not found:
            return None
        return found.group(1) if found.groups() else found.group(0)


class OutputExcerpt:
    """Decode streamed bytes and keep the first `limit` characters."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: List[str] = []
        self._size = 0

    def append(self, chunk: bytes) -> str:
        text = self._decoder.decode(chunk)
        remaining = self.limit - self._size
        if remaining > 0 and text:
            kept = text[:remaining]
            self._parts.append(kept)
            self._size += len(kept)
        return text

    @property
    def text(self) -> str:
        return "".join(self._parts)


@dataclass
class ServerHandle:
    """A started dev server; the caller owns it until `stop_server` runs."""

    process: asyncio.subprocess.Process
    url: str
    output: OutputExcerpt
    drain_task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def close_output(self) -> None:
        task = self.drain_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(task, timeout=DRAIN_CLOSE_TIMEOUT_S)
        except asyncio.TimeoutError:
            pass


@dataclass(frozen=True)
class _ReadyOutcome:
    url: Optional[str] = None
    returncode: Optional[int] = None


async def _wait_until_ready(
    proc: asyncio.subprocess.Process,
    matcher: ReadyPatternMatcher,
    output: OutputExcerpt,
) -> _ReadyOutcome:
    assert proc.stdout is not None
    while True:
        chunk = await proc.stdout.read(READ_CHUNK_BYTES)
        if not chunk:
            url = matcher.flush()
            if url:
                return _ReadyOutcome(url=url)
            return _ReadyOutcome(returncode=await proc.wait())
        url = matcher.feed(output.append(chunk))
        if url:
            return _ReadyOutcome(url=url)


async def _drain(proc: asyncio.subprocess.Process, output: OutputExcerpt) -> None:
    # Keep reading so a chatty server never blocks on a full pipe.
    assert proc.stdout is not None
    while True:
        chunk = await proc.stdout.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        output.append(chunk)


async def serve_app(
    workspace_path: Path,
    config: ServeConfig,
    event_logger: EventLogger = null_logger,
) -> ServeResult:
    """Start the dev server and wait for its ready line, a timeout, or an early exit."""

    log = event_logger
    start = time.monotonic()
    output = OutputExcerpt(config.output_excerpt_chars)
    matcher = ReadyPatternMatcher(config.ready_pattern)
    log(f"Starting dev server: {' '.join(config.cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *config.cmd,
            cwd=str(workspace_path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=command_env(NO_COLOR_ENV),
            start_new_session=True,
        )
    except OSError as exc:
        duration_ms = elapsed_ms(start)
        log(f"Failed to start server ({duration_ms}ms): {exc}", level="ERROR")
        return ServeResult.failed(f"Failed to start server: {exc}", duration_ms=duration_ms)

    try:
        outcome = await asyncio.wait_for(
            _wait_until_ready(proc, matcher, output),
            timeout=config.startup_timeout_s,
        )
    except asyncio.TimeoutError:
        await kill_and_reap(proc)
        duration_ms = elapsed_ms(start)
        log(f"Server startup timeout after {duration_ms}ms; process killed", level="ERROR")
        return ServeResult.failed(
            f"Server startup timeout ({config.startup_timeout_s:g}s)",
            duration_ms=duration_ms,
            output=output.text,
        )
    except BaseException:
        await kill_and_reap(proc)
        raise

    duration_ms = elapsed_ms(start)
    if outcome.url is None:
        await kill_and_reap(proc)
        log(
            f"Server exited unexpectedly (code: {outcome.returncode}, {duration_ms}ms)",
            level="ERROR",
        )
        return ServeResult.failed(
            f"Server exited with code {outcome.returncode} before becoming ready",
            duration_ms=duration_ms,
            output=output.text,
        )

    handle = ServerHandle(process=proc, url=outcome.url, output=output)
    handle.drain_task = asyncio.create_task(_drain(proc, output))
    log(f"App running at {outcome.url} (pid={handle.pid}, {duration_ms}ms)")
    return ServeResult.ok(handle, duration_ms=duration_ms, output=output.text)


async def _wait_for_group_exit(proc: asyncio.subprocess.Process, timeout_s: float) -> bool:
    deadline = time.monotonic() + timeout_s
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout_s)
    except asyncio.TimeoutError:
        return False
    while process_group_alive(proc):
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(GROUP_POLL_S)
    return True


async def stop_server(
    handle: Optional[ServerHandle],
    grace_s: float = 5.0,
    event_logger: EventLogger = null_logger,
) -> None:
    """Terminate a dev server: SIGTERM, then SIGKILL after `grace_s`. Idempotent.

    The whole process group is signalled even when the direct child has
    already exited, so workers it forked never outlive the runner.
    """

    if handle is None:
        return
    proc = handle.process
    if signal_process_group(proc, signal.SIGTERM):
        if not await _wait_for_group_exit(proc, grace_s):
            event_logger(
                f"Server pid={proc.pid} ignored SIGTERM for {grace_s:g}s; killing",
                level="WARNING",
            )
            await kill_and_reap(proc)
        event_logger(f"Server stopped (pid={proc.pid}, code={proc.returncode})")
    await handle.close_output()
