from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass(frozen=True)
class AppPrompt:
    """Named prompt describing one app to benchmark."""

    app_id: str
    prompt: str
    source: str = "builtin"


BUILTIN_APPS: Dict[str, AppPrompt] = {
    "todo-app": AppPrompt("todo-app", "Build a simple todo app with add, complete, and delete functionality"),
    "counter": AppPrompt("counter", "Create a counter app with increment, decrement, and reset buttons"),
    "color-picker": AppPrompt("color-picker", "Build a color picker that shows RGB values and a preview square"),
}


class AppCatalog:
    """Built-in app prompts plus YAML definitions from the catalog directory."""

    def __init__(self, base_dir: Path, catalog_dir: Optional[str] = "profiles/apps") -> None:
        self.base_dir = base_dir
        self.catalog_dir = self._resolve(catalog_dir) if catalog_dir else None

    def _resolve(self, raw: str) -> Path:
        path = Path(raw)
        return path if path.is_absolute() else self.base_dir / path

    def list_apps(self) -> List[AppPrompt]:
        """Built-ins first, then catalog files sorted by name; files override built-ins."""

        apps: Dict[str, AppPrompt] = dict(BUILTIN_APPS)
        if self.catalog_dir is not None and self.catalog_dir.is_dir():
            for path in sorted(self.catalog_dir.glob("*.yaml")):
                app = self.load(path)
                apps[app.app_id] = app
        return list(apps.values())

    def get(self, app_id: str) -> AppPrompt:
        """Return an app by id or raise a deterministic error."""

        apps = {app.app_id: app for app in self.list_apps()}
        if app_id not in apps:
            supported = ", ".join(apps)
            raise KeyError(f"Unknown app '{app_id}'. Known apps: {supported}")
        return apps[app_id]

    def load(self, path: Path) -> AppPrompt:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"App definition must be a mapping: {path}")
        app_id = data.get("id") or path.stem
        if not isinstance(app_id, str) or not app_id.strip():
            raise ValueError(f"`id` must be a non-empty string: {path}")
        return AppPrompt(app_id=app_id.strip(), prompt=self._resolve_prompt(data, path), source=str(path))

    def _resolve_prompt(self, data: Dict[str, Any], app_path: Path) -> str:
        """Resolve prompt text from inline `prompt` or an external `prompt_file`."""

        prompt = data.get("prompt")
        prompt_file = data.get("prompt_file")

        if prompt is not None and prompt_file is not None:
            raise ValueError("App definition must define only one of `prompt` or `prompt_file`")

        if prompt_file is not None:
            if not isinstance(prompt_file, str) or not prompt_file.strip():
                raise ValueError("`prompt_file` must be a non-empty string path")
            raw = Path(prompt_file.strip())
            prompt_path = raw if raw.is_absolute() else app_path.parent / raw
            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")
            return prompt_path.read_text(encoding="utf-8").strip()

        if prompt is None:
            raise ValueError("Missing required prompt definition: set `prompt` or `prompt_file`")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("`prompt` must be a non-empty string")
        return prompt.strip()
