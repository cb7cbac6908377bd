"""Human-readable terminal output: live progress bar and end-of-run summary."""

import sys
from typing import List, Optional, TextIO

from relayping.engine.models import LatencyThresholds, ProgressSnapshot, RunResult
from relayping.history.trends import RelayChange, RunComparison


class ConsoleProgressBar:
    """Progress callback redrawing a single line such as

    ``[==========          ] 50% | 5/10 | ✓ 4 | ✗ 1``
    """

    def __init__(self, stream: Optional[TextIO] = None, width: int = 30) -> None:
        self._stream = stream or sys.stderr
        self._width = width

    def render(self, snapshot: ProgressSnapshot) -> str:
        filled = int(round(self._width * snapshot.percent / 100.0))
        bar = "=" * filled + " " * (self._width - filled)
        return (
            f"[{bar}] {snapshot.percent:.0f}% | {snapshot.completed}/{snapshot.total} "
            f"| ✓ {snapshot.succeeded} | ✗ {snapshot.failed}"
        )

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        end = "\n" if snapshot.completed >= snapshot.total else ""
        self._stream.write("\r" + self.render(snapshot) + end)
        self._stream.flush()


def _ms(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}ms"


def format_summary(
    result: RunResult,
    thresholds: Optional[LatencyThresholds] = None,
    top: int = 10,
    verbose: bool = False,
) -> str:
    thresholds = thresholds or LatencyThresholds()
    stats = result.statistics
    lines: List[str] = ["===== Relay latency summary ====="]
    if result.partial:
        lines.append(
            f"Run interrupted: {len(result.outcomes)} of {result.expected_total} relays probed"
        )
    lines.extend(
        [
            f"Total relays: {stats.total}",
            f"Reachable: {stats.reachable}",
            f"Unreachable: {stats.unreachable}",
            f"Average ping: {_ms(stats.mean_latency_ms)} (median {_ms(stats.median_latency_ms)}, "
            f"min {_ms(stats.min_latency_ms)}, max {_ms(stats.max_latency_ms)})",
            f"Good: {stats.good}  Medium: {stats.medium}  Bad: {stats.bad}",
        ]
    )
    if stats.best is not None:
        best = stats.best.endpoint
        lines.append(
            f"Best relay: {best.hostname} ({best.city_name}, {best.country_name}) - "
            f"{_ms(stats.best.latency_ms)}"
        )

    lines.append(f"===== Top {top} relays =====")
    for position, outcome in enumerate(result.outcomes[:top], start=1):
        endpoint = outcome.endpoint
        latency = _ms(outcome.latency_ms) if outcome.reachable else "Unreachable"
        status = thresholds.classify(outcome.latency_ms).value
        lines.append(
            f"{position}. {endpoint.hostname} ({endpoint.city_name}, {endpoint.country_name}) "
            f"- {latency} [{status}]"
        )
        if verbose:
            lines.append(
                f"    Provider: {endpoint.provider}, Active: {endpoint.active}, "
                f"Owned: {endpoint.owned}, Attempts: {outcome.attempts}, "
                f"Loss: {outcome.packet_loss:.0f}%"
            )
    lines.append(f"{stats.reachable} reachable, {stats.unreachable} unreachable")
    return "\n".join(lines)


def _change_line(label: str, change: RelayChange) -> str:
    percent = "" if change.percent_change is None else f" ({change.percent_change:+.1f}%)"
    return (
        f"{label}: {change.hostname} ({change.city_name}, {change.country_code}) "
        f"{_ms(change.previous_latency_ms)} -> {_ms(change.latency_ms)}{percent}"
    )


def format_comparison(comparison: RunComparison, verbose: bool = False) -> str:
    """Render the change since the previous run, or a note when there is none."""
    if not comparison.has_previous:
        return "No previous run to compare with"
    lines: List[str] = [
        f"===== Changes since run {comparison.previous_run_id} =====",
        f"Total relays: {comparison.total}",
        f"Improved: {len(comparison.improved)} (avg {comparison.avg_improvement_ms:.1f}ms faster)",
        f"Degraded: {len(comparison.degraded)} (avg {comparison.avg_degradation_ms:.1f}ms slower)",
        f"Unchanged: {len(comparison.unchanged)}",
        f"New: {len(comparison.new_relays)}",
        f"Removed: {len(comparison.removed_relays)}",
    ]
    if comparison.most_improved is not None:
        lines.append(_change_line("Most improved", comparison.most_improved))
    if comparison.most_degraded is not None:
        lines.append(_change_line("Most degraded", comparison.most_degraded))
    if verbose:
        for change in comparison.top_improved:
            lines.append(_change_line("  improved", change))
        for change in comparison.top_degraded:
            lines.append(_change_line("  degraded", change))
    return "\n".join(lines)


__all__ = ["ConsoleProgressBar", "format_comparison", "format_summary"]
