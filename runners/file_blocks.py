import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

_FENCE = re.compile(r"```([^\n`]*)\n([\s\S]*?)```")
_PATH_KEYS = ("path=", "file=", "filename=")
_PATH_TOKEN = re.compile(r"^[\w./@-]*[\w@-]\.[A-Za-z0-9]+$")


@dataclass
class FileBlock:
    """One file emitted by the model as a path-tagged fenced block."""

    path: str
    content: str


@dataclass
class WriteReport:
    written: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


def extract_file_blocks(raw_text: str) -> List[FileBlock]:
    """Collect fenced blocks whose info string names a file; later duplicates win."""

    text = _normalize_newlines(raw_text or "")
    blocks: Dict[str, FileBlock] = {}
    for match in _FENCE.finditer(text):
        path = _path_from_info(match.group(1))
        if not path:
            continue
        content = match.group(2)
        if not content.endswith("\n"):
            content += "\n"
        blocks[path] = FileBlock(path=path, content=content)
    return list(blocks.values())


def write_file_blocks(workspace_root: Path, blocks: List[FileBlock]) -> WriteReport:
    """Write blocks under the workspace, refusing paths that escape it."""

    report = WriteReport()
    root = workspace_root.resolve()
    for block in blocks:
        target = (root / block.path).resolve()
        if root not in target.parents:
            report.rejected.append(block.path)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(block.content, encoding="utf-8")
        report.written.append(str(target.relative_to(root)))
    return report


def _path_from_info(info: str) -> Optional[str]:
    """Read `path=src/App.tsx` or a bare `src/App.tsx` token from a fence info string."""

    for token in info.strip().split():
        lowered = token.lower()
        for key in _PATH_KEYS:
            if lowered.startswith(key):
                value = token[len(key):].strip("\"'")
                return value or None
        if _PATH_TOKEN.match(token):
            return token
    return None


def _normalize_newlines(text: str) -> str:
    """Normalize CRLF/CR newlines to LF for deterministic downstream parsing."""

    return text.replace("\r\n", "\n").replace("\r", "\n")
