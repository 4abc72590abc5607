from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from runtime.config_models import RunConfig


def default_run_config_dict() -> Dict[str, Any]:
    """Return the canonical nested defaults for all run config sections."""

    return {
        "scaffold": {
            "archive": "test-fixtures/react-scaffold.tar.gz",
            "prewarmed_archive": "test-fixtures/react-scaffold-cached.tar.gz",
            "workspace_root": None,
        },
        "compile": {
            "install_cmd": ["npm", "install"],
            "build_cmd": ["npm", "run", "build"],
            "dependency_dir": "node_modules",
            "install_timeout_s": 300.0,
            "build_timeout_s": 180.0,
            "excerpt_chars": 500,
        },
        "serve": {
            "cmd": ["npm", "run", "dev"],
            "ready_pattern": r"Local:\s+(http://localhost:\d+)",
            "startup_timeout_s": 30.0,
            "stop_grace_s": 5.0,
            "output_excerpt_chars": 1000,
        },
        "analyze": {
            "navigation_timeout_s": 30.0,
            "settle_delay_s": 1.0,
            "max_console_messages": 20,
            "headless": True,
        },
        "runners": {},
        "apps": {
            "catalog_dir": "profiles/apps",
        },
        "output": {
            "benchmarks_dir": "benchmarks",
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge nested config values while preserving default sections."""

    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif value is not None:
            merged[key] = value
    return merged


def normalize_run_config_dict(raw_config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate top-level section shapes and merge with canonical defaults."""

    for key, value in raw_config.items():
        if value is not None and not isinstance(value, dict):
            raise ValueError(
                "Run config must use nested sections; "
                f"section '{key}' is not an object."
            )
    return _deep_merge(default_run_config_dict(), raw_config)


def normalize_run_config(raw_config: Dict[str, Any]) -> RunConfig:
    """Parse and strictly validate benchmark config values."""

    return RunConfig.model_validate(normalize_run_config_dict(raw_config))


def load_run_config(run_config_path: Path) -> RunConfig:
    """Load and validate a run config YAML file from disk."""

    if not run_config_path.exists():
        raise FileNotFoundError(
            "Missing run config: "
            f"{run_config_path}. Create one from `profiles/runs/default.yaml`."
        )
    with run_config_path.open("r", encoding="utf-8") as config_file:
        raw_config = yaml.safe_load(config_file) or {}
    if not isinstance(raw_config, dict):
        raise ValueError(f"Invalid run config shape in {run_config_path}: expected object at root")
    return normalize_run_config(raw_config)


def apply_run_overrides(
    config: RunConfig,
    *,
    benchmarks_dir: Optional[str] = None,
    workspace_root: Optional[str] = None,
    models: Optional[Dict[str, str]] = None,
) -> RunConfig:
    """Apply CLI overrides after strict config parsing."""

    effective = config.model_copy(deep=True)
    if benchmarks_dir:
        effective.output.benchmarks_dir = benchmarks_dir
    if workspace_root:
        effective.scaffold.workspace_root = workspace_root
    for runner_id, model in (models or {}).items():
        settings = effective.runner_settings(runner_id).model_copy()
        settings.model = model
        effective.runners[runner_id] = settings
    return effective
