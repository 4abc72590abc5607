from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Any, Dict, List

from playwright.async_api import async_playwright

from runtime.config_models import AnalyzeConfig
from runtime.manifest_store import EventLogger, null_logger
from runtime.schemas import AnalyzeResult, ConsoleMessage, PageMetrics
from stages.commands import elapsed_ms

PAGE_METRICS_JS = """() => ({
  url: window.location.href,
  readyState: document.readyState,
  bodyChildren: document.body ? document.body.children.length : 0
})"""

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def screenshot_path_for(results_dir: Path, test_id: str) -> Path:
    """Deterministic screenshot location for one analysis target."""

    safe_id = _UNSAFE_NAME_CHARS.sub("_", test_id).strip("_") or "app"
    return results_dir / "screenshots" / f"{safe_id}.png"


def _page_metrics(raw: Dict[str, Any]) -> PageMetrics:
    return PageMetrics(
        url=str(raw.get("url", "")),
        ready_state=str(raw.get("readyState", "")),
        body_children=int(raw.get("bodyChildren", 0) or 0),
    )


async def analyze_app(
    server_url: str,
    test_id: str,
    results_dir: Path,
    config: AnalyzeConfig,
    event_logger: EventLogger = null_logger,
) -> AnalyzeResult:
    """Load the running app in headless Chromium and capture page diagnostics."""

    log = event_logger
    start = time.monotonic()
    console_messages: List[ConsoleMessage] = []
    console_errors: List[str] = []
    page_errors: List[str] = []

    def _on_console(msg: Any) -> None:
        text = msg.text
        if len(console_messages) < config.max_console_messages:
            console_messages.append(ConsoleMessage(type=msg.type, text=text))
        if msg.type == "error":
            console_errors.append(text)

    def _on_page_error(error: Any) -> None:
        page_errors.append(getattr(error, "message", None) or str(error))

    log(f"Analyzing app at {server_url}")
    try:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=config.headless)
            try:
                page = await browser.new_page()
                page.on("console", _on_console)
                page.on("pageerror", _on_page_error)

                navigation_start = time.monotonic()
                await page.goto(
                    server_url,
                    wait_until="networkidle",
                    timeout=config.navigation_timeout_s * 1000,
                )
                navigation_duration_ms = elapsed_ms(navigation_start)

                await page.wait_for_timeout(config.settle_delay_s * 1000)

                screenshot_path = screenshot_path_for(results_dir, test_id)
                screenshot_path.parent.mkdir(parents=True, exist_ok=True)
                await page.screenshot(path=str(screenshot_path), full_page=True)

                title = await page.title()
                metrics = _page_metrics(await page.evaluate(PAGE_METRICS_JS))
            finally:
                await browser.close()
    except Exception as exc:
        duration_ms = elapsed_ms(start)
        log(f"Analysis failed ({duration_ms}ms): {exc}", level="ERROR")
        return AnalyzeResult.failed(
            str(exc) or type(exc).__name__,
            duration_ms=duration_ms,
            console_errors=console_errors,
            page_errors=page_errors,
        )

    duration_ms = elapsed_ms(start)
    log(
        f"Analysis complete ({duration_ms}ms): screenshot={screenshot_path} "
        f"console_errors={len(console_errors)} page_errors={len(page_errors)}"
    )
    return AnalyzeResult.ok(
        duration_ms=duration_ms,
        navigation_duration_ms=navigation_duration_ms,
        screenshot_path=str(screenshot_path),
        title=title,
        metrics=metrics,
        console_messages=console_messages,
        console_errors=console_errors,
        page_errors=page_errors,
    )
