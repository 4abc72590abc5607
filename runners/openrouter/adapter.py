from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List

from runners.base import BaseRunner, GenerationError
from runners.file_blocks import extract_file_blocks, write_file_blocks
from runners.openrouter.backend import OpenRouterBackend
from runtime.manifest_store import EventLogger
from runtime.schemas import Workspace

AI_RULES_FILE = "AI_RULES.md"
AI_RULES_FALLBACK = "Read and follow the guidelines in AI_RULES.md file in the project root."
SCAFFOLD_INSTRUCTIONS = (
    "Analyze the existing scaffold structure and create appropriate components.\n"
    "Follow the project structure and conventions."
)
OUTPUT_CONTRACT = (
    "Return every file you create or change as a fenced code block whose info string "
    "names the workspace-relative path, for example:\n"
    "```tsx path=src/App.tsx\n<full file contents>\n```\n"
    "Always return complete file contents. Do not return diffs."
)
SKIPPED_DIRS = {"node_modules", ".git", "dist", "build"}
MAX_LISTED_FILES = 200
SOURCE_DIR = "src"
MAX_SOURCE_CHARS = 20000


def _scaffold_files(root: Path) -> List[Path]:
    files: List[Path] = []
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part in SKIPPED_DIRS for part in rel.parts):
            continue
        if path.is_file():
            files.append(rel)
        if len(files) >= MAX_LISTED_FILES:
            break
    return files


def _source_excerpts(root: Path, files: List[Path]) -> str:
    """Inline scaffold sources under `src/` until the character budget is spent."""

    sections: List[str] = []
    budget = MAX_SOURCE_CHARS
    for rel in files:
        if not rel.parts or rel.parts[0] != SOURCE_DIR:
            continue
        try:
            text = (root / rel).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        if len(text) > budget:
            break
        budget -= len(text)
        sections.append(f"```{rel.suffix.lstrip('.')} path={rel.as_posix()}\n{text}\n```")
    return "\n\n".join(sections)


def build_messages(workspace_root: Path, prompt: str) -> List[Dict[str, Any]]:
    """Compose the system instructions from the scaffold and the user prompt."""

    rules_path = workspace_root / AI_RULES_FILE
    rules = rules_path.read_text(encoding="utf-8") if rules_path.is_file() else AI_RULES_FALLBACK
    files = _scaffold_files(workspace_root)
    listing = "\n".join(f"- {rel.as_posix()}" for rel in files)
    sections = [rules, SCAFFOLD_INSTRUCTIONS, OUTPUT_CONTRACT, f"Project files:\n{listing}"]
    sources = _source_excerpts(workspace_root, files)
    if sources:
        sections.append(f"Current sources:\n{sources}")
    return [
        {"role": "system", "content": "\n\n".join(sections)},
        {"role": "user", "content": prompt},
    ]


class OpenRouterRunner(BaseRunner):
    """API-backed runner: one chat completion, files written from path-tagged blocks."""

    runner_id = "openrouter"
    display_name = "OpenRouter"
    default_model = "openai/gpt-4o-mini"
    required_env = ("OPENROUTER_API_KEY",)

    def build_backend(self, model: str) -> OpenRouterBackend:
        params = self.settings.params
        return OpenRouterBackend(
            api_key=os.getenv("OPENROUTER_API_KEY"),
            model=model,
            base_url=params.get("base_url", "https://openrouter.ai/api/v1"),
            timeout_s=self.settings.timeout_s or 300.0,
            max_retries=params.get("max_retries", 4),
            initial_backoff_s=params.get("initial_backoff_s", 1.0),
            max_backoff_s=params.get("max_backoff_s", 10.0),
        )

    async def generate_into(
        self,
        workspace: Workspace,
        prompt: str,
        model: str,
        event_logger: EventLogger,
    ) -> str:
        if (workspace.path / AI_RULES_FILE).is_file():
            event_logger(f"{AI_RULES_FILE} loaded from workspace")
        else:
            event_logger(f"{AI_RULES_FILE} not found in workspace, instructing model to load it", level="WARNING")
        messages = build_messages(workspace.path, prompt)
        backend = self.build_backend(model)
        text = await backend.complete(messages, decoding=self.settings.params.get("decoding"))

        blocks = extract_file_blocks(text)
        if not blocks:
            raise GenerationError("model response contained no path-tagged file blocks")
        report = write_file_blocks(workspace.path, blocks)
        for rejected in report.rejected:
            event_logger(f"Refused file outside workspace: {rejected}", level="WARNING")
        if not report.written:
            raise GenerationError("model response contained no writable files")
        event_logger(f"Wrote {len(report.written)} file(s): {', '.join(report.written)}")
        return text
