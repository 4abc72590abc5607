from pathlib import Path

import pytest

from runners.base import BaseRunner
from runners.registry import DEFAULT_RUNNERS, RunnerRegistry
from runtime.config_loader import normalize_run_config
from runtime.workspace import WorkspaceManager


class _LocalRunner(BaseRunner):
    runner_id = "local"
    display_name = "Local"
    default_model = "tiny"

    async def generate_into(self, workspace, prompt, model, event_logger) -> str:
        return ""


def _registry(tmp_path: Path, overrides=None) -> RunnerRegistry:
    config = normalize_run_config({"runners": {"claude-code": {"model": "opus"}}})
    manager = WorkspaceManager(root=tmp_path, archive=tmp_path / "scaffold.tar.gz")
    return RunnerRegistry.from_config(config, manager, overrides=overrides)


def test_default_runners_are_registered_in_order(tmp_path: Path):
    registry = _registry(tmp_path)
    assert registry.list_runners() == ["openrouter", "claude-code"]
    assert registry.get_runner("claude-code").model == "opus"
    assert registry.get_runner("openrouter").model == "openai/gpt-4o-mini"


def test_default_runner_table_is_read_only():
    with pytest.raises(TypeError):
        DEFAULT_RUNNERS["other"] = _LocalRunner


def test_unknown_runner_lists_supported_ids(tmp_path: Path):
    registry = _registry(tmp_path)
    with pytest.raises(KeyError, match="Unknown runner 'gemini'. Supported runners: openrouter, claude-code"):
        registry.get_runner("gemini")


def test_select_keeps_filter_order_and_drops_duplicates(tmp_path: Path):
    registry = _registry(tmp_path, overrides={"local": _LocalRunner})
    selected = registry.select(["local", "openrouter", "local"])
    assert [runner.runner_id for runner in selected] == ["local", "openrouter"]
    assert [runner.runner_id for runner in registry.select(None)] == ["openrouter", "claude-code", "local"]
    assert [runner.runner_id for runner in registry.select([])] == ["openrouter", "claude-code", "local"]


def test_select_rejects_unknown_ids(tmp_path: Path):
    registry = _registry(tmp_path)
    with pytest.raises(KeyError):
        registry.select(["openrouter", "nope"])
