from __future__ import annotations

from typing import List

from runners.base import BaseRunner, GenerationError
from runtime.manifest_store import EventLogger
from runtime.schemas import Workspace
from stages.commands import run_command, truncate

DEFAULT_TIMEOUT_S = 900.0


class ClaudeCodeRunner(BaseRunner):
    """Local CLI runner: `claude -p` edits the workspace in place."""

    runner_id = "claude-code"
    display_name = "Claude Code CLI"
    default_model = "sonnet"
    required_env = ()

    def build_command(self, prompt: str, model: str) -> List[str]:
        binary = self.settings.params.get("binary", "claude")
        return [binary, "-p", "--model", model, "--dangerously-skip-permissions", prompt]

    async def generate_into(
        self,
        workspace: Workspace,
        prompt: str,
        model: str,
        event_logger: EventLogger,
    ) -> str:
        timeout_s = self.settings.timeout_s or DEFAULT_TIMEOUT_S
        outcome = await run_command(self.build_command(prompt, model), workspace.path, timeout_s)
        if not outcome.ok:
            detail = truncate(outcome.stderr.strip(), 500)
            reason = outcome.describe_failure(timeout_s)
            raise GenerationError(f"claude CLI {reason}" + (f": {detail}" if detail else ""))
        return outcome.stdout
