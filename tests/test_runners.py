from __future__ import annotations

import asyncio
import io
import sys
import tarfile
from pathlib import Path

import pytest

from runners.base import BaseRunner, GenerationError
from runners.claude_code.adapter import ClaudeCodeRunner
from runners.openrouter.adapter import AI_RULES_FALLBACK, OpenRouterRunner, build_messages
from runtime.config_models import RunnerSettings
from runtime.schemas import Workspace
from runtime.workspace import WorkspaceManager


def _scaffold(tmp_path: Path, files=None) -> Path:
    files = files or {"package.json": "{}", "src/App.tsx": "export default function App() {}\n"}
    archive = tmp_path / "scaffold.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return archive


def _manager(tmp_path: Path, archive=None) -> WorkspaceManager:
    return WorkspaceManager(root=tmp_path / "ws", archive=archive or _scaffold(tmp_path))


class _EchoRunner(BaseRunner):
    runner_id = "echo"
    display_name = "Echo"
    default_model = "echo-1"

    async def generate_into(self, workspace: Workspace, prompt: str, model: str, event_logger) -> str:
        (workspace.path / "src" / "App.tsx").write_text(f"// {prompt}\n", encoding="utf-8")
        return f"{model}: " + "x" * 400


class _BrokenRunner(BaseRunner):
    runner_id = "broken"
    default_model = "broken-1"

    async def generate_into(self, workspace, prompt, model, event_logger) -> str:
        raise GenerationError("model refused")


def test_generate_success_populates_workspace_and_preview(tmp_path: Path):
    runner = _EchoRunner(_manager(tmp_path))
    result = asyncio.run(runner.generate("Build a counter"))

    assert result.success is True
    workspace = Path(result.workspace_dir)
    assert (workspace / "package.json").is_file()
    assert (workspace / "src" / "App.tsx").read_text(encoding="utf-8") == "// Build a counter\n"
    assert result.content.startswith("echo-1: ")
    assert len(result.content_preview) == 200
    assert result.workspace_id == workspace.name


def test_generate_failure_keeps_workspace_for_cleanup(tmp_path: Path):
    runner = _BrokenRunner(_manager(tmp_path))
    result = asyncio.run(runner.generate("Build a counter"))

    assert result.success is False
    assert result.error == "model refused"
    assert Path(result.workspace_dir).is_dir()
    assert runner.cleanup_workspace(Path(result.workspace_dir)) is True
    assert not Path(result.workspace_dir).exists()


def test_workspace_creation_failure_is_a_failed_result(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    runner = _EchoRunner(WorkspaceManager(root=blocker, archive=_scaffold(tmp_path)))
    result = asyncio.run(runner.generate("Build a counter"))

    assert result.success is False
    assert result.duration_ms == 0
    assert result.workspace_dir == ""
    assert result.error.startswith("Workspace creation failed:")


def test_missing_scaffold_is_a_failed_result(tmp_path: Path):
    runner = _EchoRunner(WorkspaceManager(root=tmp_path / "ws", archive=tmp_path / "missing.tar.gz"))
    result = asyncio.run(runner.generate("Build a counter"))

    assert result.success is False
    assert result.error.startswith("Scaffold population failed:")
    assert Path(result.workspace_dir).is_dir()


def test_model_prefers_settings_over_default(tmp_path: Path):
    manager = _manager(tmp_path)
    assert _EchoRunner(manager).model == "echo-1"
    assert _EchoRunner(manager, RunnerSettings(model="echo-2")).model == "echo-2"


def test_build_messages_uses_ai_rules_and_lists_files(tmp_path: Path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text("export default function App() {}\n", encoding="utf-8")
    (tmp_path / "node_modules" / "react").mkdir(parents=True)
    (tmp_path / "node_modules" / "react" / "index.js").write_text("", encoding="utf-8")
    (tmp_path / "AI_RULES.md").write_text("Use Tailwind for styling.", encoding="utf-8")

    messages = build_messages(tmp_path, "Build a todo app")

    system = messages[0]["content"]
    assert messages[0]["role"] == "system"
    assert system.startswith("Use Tailwind for styling.")
    assert "- src/App.tsx" in system
    assert "node_modules" not in system
    assert "path=src/App.tsx" in system
    assert messages[1] == {"role": "user", "content": "Build a todo app"}


def test_build_messages_falls_back_when_rules_missing(tmp_path: Path):
    messages = build_messages(tmp_path, "Build a counter")
    assert messages[0]["content"].startswith(AI_RULES_FALLBACK)


def test_openrouter_runner_writes_returned_files(monkeypatch, tmp_path: Path):
    class _FakeBackend:
        async def complete(self, messages, decoding=None):
            return (
                "Done.\n"
                "```tsx path=src/App.tsx\nexport default function App() { return <h1>Todo</h1>; }\n```\n"
                "```txt path=../../outside.txt\nescape\n```\n"
            )

    runner = OpenRouterRunner(_manager(tmp_path))
    monkeypatch.setattr(runner, "build_backend", lambda model: _FakeBackend())
    events = []

    result = asyncio.run(
        runner.generate("Build a todo app", event_logger=lambda message, level="INFO": events.append((level, message)))
    )

    assert result.success is True
    app_source = Path(result.workspace_dir) / "src" / "App.tsx"
    assert "<h1>Todo</h1>" in app_source.read_text(encoding="utf-8")
    assert any(level == "WARNING" and "outside.txt" in message for level, message in events)


def test_openrouter_runner_fails_without_file_blocks(monkeypatch, tmp_path: Path):
    class _FakeBackend:
        async def complete(self, messages, decoding=None):
            return "I cannot help with that."

    runner = OpenRouterRunner(_manager(tmp_path))
    monkeypatch.setattr(runner, "build_backend", lambda model: _FakeBackend())

    result = asyncio.run(runner.generate("Build a todo app"))

    assert result.success is False
    assert "no path-tagged file blocks" in result.error


def test_claude_code_command_shape(tmp_path: Path):
    runner = ClaudeCodeRunner(_manager(tmp_path))
    assert runner.build_command("Build a counter", "sonnet") == [
        "claude",
        "-p",
        "--model",
        "sonnet",
        "--dangerously-skip-permissions",
        "Build a counter",
    ]


def test_claude_code_runner_runs_cli_in_workspace(tmp_path: Path):
    script = tmp_path / "fake_claude.py"
    script.write_text(
        "import pathlib, sys\n"
        "pathlib.Path('src/App.tsx').write_text('// ' + sys.argv[-1] + '\\n')\n"
        "print('edited src/App.tsx')\n",
        encoding="utf-8",
    )
    runner = ClaudeCodeRunner(_manager(tmp_path), RunnerSettings(timeout_s=30))
    runner.build_command = lambda prompt, model: [sys.executable, str(script), prompt]

    result = asyncio.run(runner.generate("Build a counter"))

    assert result.success is True
    assert result.content.strip() == "edited src/App.tsx"
    assert (Path(result.workspace_dir) / "src" / "App.tsx").read_text() == "// Build a counter\n"


def test_claude_code_runner_reports_cli_failure(tmp_path: Path):
    runner = ClaudeCodeRunner(_manager(tmp_path), RunnerSettings(timeout_s=30))
    runner.build_command = lambda prompt, model: [
        sys.executable,
        "-c",
        "import sys; print('not logged in', file=sys.stderr); sys.exit(1)",
    ]

    result = asyncio.run(runner.generate("Build a counter"))

    assert result.success is False
    assert result.error == "claude CLI exited with code 1: not logged in"


@pytest.mark.parametrize("runner_cls", [OpenRouterRunner, ClaudeCodeRunner])
def test_shipped_runners_declare_identity(runner_cls):
    assert runner_cls.runner_id
    assert runner_cls.display_name
    assert runner_cls.default_model
