from __future__ import annotations

import asyncio
from pathlib import Path

from runtime.config_models import AnalyzeConfig
from stages.analyze import analyze_app, screenshot_path_for


class _Message:
    def __init__(self, type: str, text: str):
        self.type = type
        self.text = text


class _PageError:
    def __init__(self, message: str):
        self.message = message


class _FakePage:
    def __init__(self, fail_navigation: bool = False, console_count: int = 2):
        self.fail_navigation = fail_navigation
        self.console_count = console_count
        self.handlers = {}
        self.goto_calls = []
        self.waits = []

    def on(self, event, handler):
        self.handlers[event] = handler

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until, timeout))
        self.handlers["console"](_Message("error", "Uncaught TypeError: x is undefined"))
        for index in range(self.console_count - 1):
            self.handlers["console"](_Message("log", f"render {index}"))
        self.handlers["pageerror"](_PageError("ReferenceError: React is not defined"))
        if self.fail_navigation:
            raise TimeoutError("Timeout 30000ms exceeded")

    async def wait_for_timeout(self, ms):
        self.waits.append(ms)

    async def screenshot(self, path, full_page=False):
        assert full_page is True
        Path(path).write_bytes(b"\x89PNG")

    async def title(self):
        return "Todo App"

    async def evaluate(self, script):
        return {"url": "http://localhost:5173/", "readyState": "complete", "bodyChildren": 1}


class _FakeBrowser:
    def __init__(self, page):
        self.page = page
        self.closed = False

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class _FakeChromium:
    def __init__(self, browser):
        self.browser = browser
        self.launch_kwargs = None

    async def launch(self, **kwargs):
        self.launch_kwargs = kwargs
        return self.browser


class _FakePlaywright:
    def __init__(self, browser):
        self.chromium = _FakeChromium(browser)


def _install_fake(monkeypatch, page):
    browser = _FakeBrowser(page)
    playwright = _FakePlaywright(browser)

    class _Manager:
        async def __aenter__(self):
            return playwright

        async def __aexit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr("stages.analyze.async_playwright", lambda: _Manager())
    return browser, playwright


def test_analyze_collects_errors_screenshot_and_metrics(monkeypatch, tmp_path: Path):
    page = _FakePage()
    browser, playwright = _install_fake(monkeypatch, page)

    result = asyncio.run(analyze_app("http://localhost:5173", "openrouter-todo-app", tmp_path, AnalyzeConfig()))

    assert result.success is True
    assert result.title == "Todo App"
    assert result.console_errors == ["Uncaught TypeError: x is undefined"]
    assert result.page_errors == ["ReferenceError: React is not defined"]
    assert result.has_errors
    assert result.metrics.ready_state == "complete"
    assert result.metrics.body_children == 1
    assert Path(result.screenshot_path) == tmp_path / "screenshots" / "openrouter-todo-app.png"
    assert Path(result.screenshot_path).read_bytes() == b"\x89PNG"
    assert page.goto_calls == [("http://localhost:5173", "networkidle", 30000.0)]
    assert page.waits == [1000.0]
    assert playwright.chromium.launch_kwargs == {"headless": True}
    assert browser.closed is True


def test_analyze_keeps_at_most_configured_console_messages(monkeypatch, tmp_path: Path):
    page = _FakePage(console_count=30)
    _install_fake(monkeypatch, page)

    result = asyncio.run(analyze_app("http://localhost:5173", "counter", tmp_path, AnalyzeConfig()))

    assert len(result.console_messages) == 20
    assert result.console_messages[0].type == "error"


def test_navigation_failure_closes_browser_and_keeps_errors(monkeypatch, tmp_path: Path):
    page = _FakePage(fail_navigation=True)
    browser, _ = _install_fake(monkeypatch, page)

    result = asyncio.run(analyze_app("http://localhost:5173", "counter", tmp_path, AnalyzeConfig()))

    assert result.success is False
    assert "Timeout 30000ms exceeded" in result.error
    assert result.screenshot_path is None
    assert result.console_errors == ["Uncaught TypeError: x is undefined"]
    assert result.page_errors == ["ReferenceError: React is not defined"]
    assert browser.closed is True


def test_screenshot_path_sanitizes_test_id(tmp_path: Path):
    assert screenshot_path_for(tmp_path, "claude-code/color picker") == (
        tmp_path / "screenshots" / "claude-code_color_picker.png"
    )
