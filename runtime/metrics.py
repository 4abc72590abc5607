from __future__ import annotations

from typing import Any, Sequence

from runtime.report_models import BenchmarkSummary, RunnerBenchmarkResult


def _safe_div(numerator: int, denominator: int) -> float:
    """Return zero-safe division result for derived rate metrics."""

    if denominator <= 0:
        return 0.0
    return float(numerator) / float(denominator)


def compute_summary(results: Sequence[RunnerBenchmarkResult]) -> BenchmarkSummary:
    """Count outcomes and pick the fastest successful runner.

    Ties keep the runner that appears first in `results`.
    """

    successful = [result for result in results if result.success]
    fastest = None
    for result in successful:
        if fastest is None or result.total_duration_ms < fastest.total_duration_ms:
            fastest = result
    return BenchmarkSummary(
        total_runners=len(results),
        successful_runners=len(successful),
        failed_runners=len(results) - len(successful),
        fastest_runner=fastest.runner_id if fastest else None,
        fastest_time=fastest.total_duration_ms if fastest else None,
    )


def success_rate(summary: BenchmarkSummary) -> float:
    return _safe_div(summary.successful_runners, summary.total_runners)


def fmt_pct(value: Any) -> str:
    """Format ratios as percentage strings for CLI summaries."""

    try:
        return f"{float(value) * 100:.2f}%"
    except (TypeError, ValueError):
        return "0.00%"


def fmt_ms(value: Any) -> str:
    """Render a millisecond duration for terminal output; missing stages show `-`."""

    if value is None:
        return "-"
    try:
        return f"{int(value)}ms"
    except (TypeError, ValueError):
        return "-"
