from __future__ import annotations

import inspect
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

EventLogger = Callable[..., None]


def new_run_timestamp() -> str:
    """Create a timestamped identifier used in benchmark output paths."""

    return datetime.now().strftime("%Y-%m-%d_%H%M%S")


def today() -> str:
    """Return the local date used in screenshot artifact names."""

    return datetime.now().strftime("%Y-%m-%d")


def now_iso() -> str:
    """Return local timestamp in ISO-8601 format."""

    return datetime.now().isoformat(timespec="seconds")


def now_human() -> str:
    """Return local timestamp in a compact log-friendly format."""

    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def metadata_path(run_root: Path) -> Path:
    """Return canonical metadata location for a benchmark directory."""

    return run_root / "metadata.json"


def run_log_path(run_root: Path) -> Path:
    return run_root / "run.log"


def read_metadata(path: Path) -> Dict[str, Any]:
    """Read metadata JSON; return empty object when missing or invalid."""

    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    if isinstance(payload, dict):
        return payload
    return {}


def write_metadata(path: Path, payload: Dict[str, Any]) -> None:
    """Write metadata JSON and fail fast on non-serializable values."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def list_benchmark_runs(benchmarks_dir: Path) -> List[Dict[str, Any]]:
    """List persisted `{timestamp}/{app}/metadata.json` records, newest first."""

    runs: List[Dict[str, Any]] = []
    if not benchmarks_dir.is_dir():
        return runs
    for timestamp_dir in benchmarks_dir.iterdir():
        if not timestamp_dir.is_dir():
            continue
        for app_dir in timestamp_dir.iterdir():
            if not app_dir.is_dir():
                continue
            payload = read_metadata(metadata_path(app_dir))
            if not payload:
                continue
            runs.append(
                {
                    "timestamp": timestamp_dir.name,
                    "app_name": app_dir.name,
                    "path": app_dir,
                    "metadata": payload,
                    "screenshots": sorted(p.name for p in app_dir.glob("*.png")),
                }
            )
    runs.sort(key=lambda run: (run["timestamp"], run["app_name"]), reverse=True)
    return runs


def _infer_log_source(depth: int = 2) -> str:
    """Best-effort caller source in file:line format."""

    frame = inspect.currentframe()
    try:
        caller = frame
        for _ in range(depth):
            caller = caller.f_back if caller is not None else None
        if caller is None:
            return "unknown:0"
        return f"{Path(caller.f_code.co_filename).name}:{caller.f_lineno}"
    finally:
        del frame


def append_log(
    path: Path,
    message: str,
    *,
    level: str = "INFO",
    source: Optional[str] = None,
) -> None:
    """Append one formatted line to the run log."""

    path.parent.mkdir(parents=True, exist_ok=True)
    normalized_level = (level or "INFO").upper()
    normalized_source = source or _infer_log_source()
    line = f"{now_human()} | {normalized_level:<8} | {normalized_source:<24} | {message}"
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


def null_logger(message: str, *, level: str = "INFO") -> None:
    return None


def file_event_logger(
    path: Path,
    echo: Optional[Callable[[str, str], None]] = None,
) -> EventLogger:
    """Build an event logger that appends to a run log and optionally echoes."""

    def _log(message: str, *, level: str = "INFO") -> None:
        append_log(path, message, level=level, source=_infer_log_source())
        if echo is not None:
            echo(message, level)

    return _log
