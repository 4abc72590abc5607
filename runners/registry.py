from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence

from runners.base import BaseRunner
from runners.claude_code.adapter import ClaudeCodeRunner
from runners.contracts import Runner
from runners.openrouter.adapter import OpenRouterRunner
from runtime.config_models import RunConfig
from runtime.workspace import WorkspaceManager

# Registration order is the default execution order.
DEFAULT_RUNNERS: Mapping[str, type[BaseRunner]] = MappingProxyType(
    {
        OpenRouterRunner.runner_id: OpenRouterRunner,
        ClaudeCodeRunner.runner_id: ClaudeCodeRunner,
    }
)


class RunnerRegistry:
    """Read-only lookup table of runner instances, built once at startup."""

    def __init__(self, runners: Mapping[str, Runner]) -> None:
        self._registry: Mapping[str, Runner] = MappingProxyType(dict(runners))

    @classmethod
    def from_config(
        cls,
        config: RunConfig,
        workspaces: WorkspaceManager,
        overrides: Optional[Mapping[str, type]] = None,
    ) -> "RunnerRegistry":
        """Instantiate the default runners, with optional substitutions or additions."""

        classes: Dict[str, type] = dict(DEFAULT_RUNNERS)
        if overrides:
            classes.update(dict(overrides))
        return cls({runner_id: runner_cls.from_config(config, workspaces) for runner_id, runner_cls in classes.items()})

    def get_runner(self, runner_id: str) -> Runner:
        """Return a runner by id or raise a deterministic error."""

        if runner_id not in self._registry:
            supported = ", ".join(self.list_runners())
            raise KeyError(f"Unknown runner '{runner_id}'. Supported runners: {supported}")
        return self._registry[runner_id]

    def list_runners(self) -> List[str]:
        """List runner ids in registration order."""

        return list(self._registry.keys())

    def select(self, runner_filter: Optional[Sequence[str]] = None) -> List[Runner]:
        """Resolve a filter to runners, keeping filter order; empty means all."""

        if not runner_filter:
            return list(self._registry.values())
        selected: List[Runner] = []
        seen = set()
        for runner_id in runner_filter:
            runner = self.get_runner(runner_id)
            if runner_id in seen:
                continue
            seen.add(runner_id)
            selected.append(runner)
        return selected
