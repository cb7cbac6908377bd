"""Sorting and summary statistics for a finished (or interrupted) run."""

import logging
import statistics
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from relayping.engine.errors import IncompleteRunError
from relayping.engine.models import (
    LatencyStatus,
    LatencyThresholds,
    ProbeOutcome,
    RunResult,
    Statistics,
)

LOGGER = logging.getLogger(__name__)


def sort_outcomes(indexed: Iterable[Tuple[int, ProbeOutcome]]) -> List[ProbeOutcome]:
    """Order by latency ascending, unreachable last, ties by input index."""

    def _key(item: Tuple[int, ProbeOutcome]):
        index, outcome = item
        if outcome.reachable:
            return (0, outcome.latency_ms, index)
        return (1, 0.0, index)

    return [outcome for _, outcome in sorted(indexed, key=_key)]


def compute_statistics(
    outcomes: Sequence[ProbeOutcome],
    thresholds: Optional[LatencyThresholds] = None,
    *,
    duration_seconds: float = 0.0,
    partial: bool = False,
) -> Statistics:
    """Summarise ``outcomes``, which must already be sorted.

    Latency aggregates are ``None`` when nothing was reachable.
    """
    thresholds = thresholds or LatencyThresholds()
    reachable = [outcome for outcome in outcomes if outcome.reachable]
    latencies = [outcome.latency_ms for outcome in reachable]

    buckets = {status: 0 for status in LatencyStatus}
    for latency in latencies:
        buckets[thresholds.classify(latency)] += 1

    return Statistics(
        total=len(outcomes),
        reachable=len(reachable),
        unreachable=len(outcomes) - len(reachable),
        mean_latency_ms=statistics.fmean(latencies) if latencies else None,
        median_latency_ms=statistics.median(latencies) if latencies else None,
        min_latency_ms=min(latencies) if latencies else None,
        max_latency_ms=max(latencies) if latencies else None,
        good=buckets[LatencyStatus.GOOD],
        medium=buckets[LatencyStatus.MEDIUM],
        bad=buckets[LatencyStatus.BAD],
        best=reachable[0] if reachable else None,
        worst=reachable[-1] if reachable else None,
        duration_seconds=duration_seconds,
        partial=partial,
    )


class ResultAggregator:
    """Collect indexed outcomes and turn them into a ``RunResult``."""

    def __init__(self, total: int, thresholds: Optional[LatencyThresholds] = None) -> None:
        if total < 0:
            raise ValueError("total must be non-negative")
        self._total = total
        self._thresholds = thresholds or LatencyThresholds()
        self._entries: Dict[int, ProbeOutcome] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, index: int, outcome: ProbeOutcome) -> None:
        if not 0 <= index < self._total:
            raise ValueError(f"outcome index {index} outside 0..{self._total - 1}")
        if index in self._entries:
            raise ValueError(f"duplicate outcome for endpoint #{index}")
        self._entries[index] = outcome

    def finalize(self, *, cancelled: bool = False, duration_seconds: float = 0.0) -> RunResult:
        received = len(self._entries)
        if received != self._total and not cancelled:
            raise IncompleteRunError(self._total, received)

        partial = received < self._total
        if partial:
            LOGGER.warning("Partial run: %s of %s endpoints probed", received, self._total)

        ordered = sort_outcomes(self._entries.items())
        stats = compute_statistics(
            ordered,
            self._thresholds,
            duration_seconds=duration_seconds,
            partial=partial,
        )
        return RunResult(
            outcomes=tuple(ordered),
            statistics=stats,
            expected_total=self._total,
            cancelled=cancelled,
        )


__all__ = ["ResultAggregator", "compute_statistics", "sort_outcomes"]
