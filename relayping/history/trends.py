"""Trend analysis over stored run snapshots.

Trends compare the mean of the older half of a series with the mean of the
newer half: a drop of at least ``STABLE_BAND_MS`` is "improving", a rise of at
least that much is "degrading", anything in between is "stable".
Consecutive runs are compared relay by relay using the same band.
"""

import functools
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from relayping.persistence.snapshots import HistoryEntry, HistorySnapshot

LOGGER = logging.getLogger(__name__)

STABLE_BAND_MS = 5.0
MIN_STABLE_REACHABILITY = 80.0
REACHABILITY_PRIORITY_GAP = 10.0
COMPARISON_DETAIL_COUNT = 10


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RelayTrend:
    hostname: str
    country_code: str
    city_name: str
    latency_history: Tuple[Optional[float], ...]
    mean_latency_ms: Optional[float]
    stddev_ms: float
    reachability_rate: float
    trend: Trend


@dataclass(frozen=True)
class TrendReport:
    overall: Trend
    mean_latency_series: Tuple[Optional[float], ...] = ()
    reachability_series: Tuple[float, ...] = ()
    timeframe: Tuple[str, ...] = ()
    relays: Tuple[RelayTrend, ...] = ()


def classify_trend(values: Sequence[float]) -> Trend:
    """Compare the older half of ``values`` with the newer half."""
    if len(values) < 2:
        return Trend.UNKNOWN
    middle = len(values) // 2
    older, newer = values[:middle], values[middle:]
    difference = sum(older) / len(older) - sum(newer) / len(newer)
    if abs(difference) < STABLE_BAND_MS:
        return Trend.STABLE
    return Trend.IMPROVING if difference > 0 else Trend.DEGRADING


def _relay_trend(
    hostname: str,
    country_code: str,
    city_name: str,
    history: List[Optional[float]],
) -> RelayTrend:
    valid = [value for value in history if value is not None]
    mean = sum(valid) / len(valid) if valid else None
    stddev = 0.0
    if mean is not None and len(valid) > 1:
        stddev = math.sqrt(sum((value - mean) ** 2 for value in valid) / len(valid))
    return RelayTrend(
        hostname=hostname,
        country_code=country_code,
        city_name=city_name,
        latency_history=tuple(history),
        mean_latency_ms=mean,
        stddev_ms=stddev,
        reachability_rate=100.0 * len(valid) / len(history) if history else 0.0,
        trend=classify_trend(valid),
    )


def analyze_trends(snapshots: Sequence[HistorySnapshot]) -> TrendReport:
    """Build the overall and per-relay trends from chronologically ordered snapshots."""
    if len(snapshots) < 2:
        LOGGER.warning("Not enough history for trend analysis (%s snapshots)", len(snapshots))
        return TrendReport(overall=Trend.UNKNOWN)

    ordered = sorted(snapshots, key=lambda snap: snap.taken_at)
    means = tuple(snap.mean_latency_ms for snap in ordered)
    reachability = tuple(
        100.0 * snap.reachable / snap.total if snap.total else 0.0 for snap in ordered
    )

    histories: Dict[str, List[Optional[float]]] = {}
    locations: Dict[str, Tuple[str, str]] = {}
    for position, snap in enumerate(ordered):
        for entry in snap.entries:
            if entry.hostname not in histories:
                histories[entry.hostname] = [None] * len(ordered)
                locations[entry.hostname] = (entry.country_code, entry.city_name)
            histories[entry.hostname][position] = entry.latency_ms if entry.reachable else None

    relays = sorted(
        (
            _relay_trend(hostname, *locations[hostname], history)
            for hostname, history in histories.items()
        ),
        key=lambda relay: (relay.mean_latency_ms is None, relay.mean_latency_ms or 0.0),
    )

    return TrendReport(
        overall=classify_trend([mean for mean in means if mean is not None]),
        mean_latency_series=means,
        reachability_series=reachability,
        timeframe=tuple(snap.taken_at.isoformat() for snap in ordered),
        relays=tuple(relays),
    )


def _stability_order(left: RelayTrend, right: RelayTrend) -> int:
    if abs(left.reachability_rate - right.reachability_rate) > REACHABILITY_PRIORITY_GAP:
        return -1 if left.reachability_rate > right.reachability_rate else 1
    if left.stddev_ms != right.stddev_ms:
        return -1 if left.stddev_ms < right.stddev_ms else 1
    left_mean = left.mean_latency_ms or 0.0
    right_mean = right.mean_latency_ms or 0.0
    if left_mean != right_mean:
        return -1 if left_mean < right_mean else 1
    return 0


def most_stable(snapshots: Sequence[HistorySnapshot], count: int = 10) -> List[RelayTrend]:
    """Relays reachable in more than 80% of runs, most consistent first."""
    report = analyze_trends(snapshots)
    candidates = [
        relay for relay in report.relays if relay.reachability_rate > MIN_STABLE_REACHABILITY
    ]
    return sorted(candidates, key=functools.cmp_to_key(_stability_order))[:count]


@dataclass(frozen=True)
class RelayChange:
    hostname: str
    country_code: str
    city_name: str
    latency_ms: float
    previous_latency_ms: float
    difference_ms: float
    percent_change: Optional[float]


@dataclass(frozen=True)
class RunComparison:
    """Per-relay latency changes between two consecutive runs.

    ``improved`` is ordered by largest drop first, ``degraded`` by largest rise
    first. Relays unreachable in either run only count towards ``total``.
    """

    current_run_id: str
    previous_run_id: Optional[str]
    total: int
    improved: Tuple[RelayChange, ...] = ()
    degraded: Tuple[RelayChange, ...] = ()
    unchanged: Tuple[RelayChange, ...] = ()
    new_relays: Tuple[str, ...] = ()
    removed_relays: Tuple[str, ...] = ()

    @property
    def has_previous(self) -> bool:
        return self.previous_run_id is not None

    @property
    def avg_improvement_ms(self) -> float:
        if not self.improved:
            return 0.0
        return abs(sum(change.difference_ms for change in self.improved) / len(self.improved))

    @property
    def avg_degradation_ms(self) -> float:
        if not self.degraded:
            return 0.0
        return sum(change.difference_ms for change in self.degraded) / len(self.degraded)

    @property
    def most_improved(self) -> Optional[RelayChange]:
        return self.improved[0] if self.improved else None

    @property
    def most_degraded(self) -> Optional[RelayChange]:
        return self.degraded[0] if self.degraded else None

    @property
    def top_improved(self) -> Tuple[RelayChange, ...]:
        return self.improved[:COMPARISON_DETAIL_COUNT]

    @property
    def top_degraded(self) -> Tuple[RelayChange, ...]:
        return self.degraded[:COMPARISON_DETAIL_COUNT]


def _latency(entry: HistoryEntry) -> Optional[float]:
    return entry.latency_ms if entry.reachable else None


def compare_with_previous(
    current: HistorySnapshot, previous: Optional[HistorySnapshot]
) -> RunComparison:
    """Compare each relay's latency in ``current`` against ``previous``.

    Args:
        current: Snapshot of the run that just finished.
        previous: The run before it, or ``None`` for a first run.

    Returns:
        A ``RunComparison``. Without a previous run every relay is new.
    """
    if previous is None:
        return RunComparison(
            current_run_id=current.run_id,
            previous_run_id=None,
            total=len(current.entries),
            new_relays=tuple(entry.hostname for entry in current.entries),
        )

    earlier = {entry.hostname: entry for entry in previous.entries}
    seen = set()
    improved: List[RelayChange] = []
    degraded: List[RelayChange] = []
    unchanged: List[RelayChange] = []
    new_relays: List[str] = []

    for entry in current.entries:
        seen.add(entry.hostname)
        before = earlier.get(entry.hostname)
        if before is None:
            new_relays.append(entry.hostname)
            continue
        now_ms, then_ms = _latency(entry), _latency(before)
        if now_ms is None or then_ms is None:
            continue

        difference = now_ms - then_ms
        change = RelayChange(
            hostname=entry.hostname,
            country_code=entry.country_code,
            city_name=entry.city_name,
            latency_ms=now_ms,
            previous_latency_ms=then_ms,
            difference_ms=difference,
            percent_change=difference / then_ms * 100.0 if then_ms else None,
        )
        if abs(difference) < STABLE_BAND_MS:
            unchanged.append(change)
        elif difference < 0:
            improved.append(change)
        else:
            degraded.append(change)

    removed = tuple(entry.hostname for entry in previous.entries if entry.hostname not in seen)
    comparison = RunComparison(
        current_run_id=current.run_id,
        previous_run_id=previous.run_id,
        total=len(current.entries),
        improved=tuple(sorted(improved, key=lambda change: change.difference_ms)),
        degraded=tuple(sorted(degraded, key=lambda change: change.difference_ms, reverse=True)),
        unchanged=tuple(unchanged),
        new_relays=tuple(new_relays),
        removed_relays=removed,
    )
    LOGGER.info(
        "Compared with run %s: %s improved, %s degraded, %s unchanged, %s new, %s removed",
        previous.run_id,
        len(comparison.improved),
        len(comparison.degraded),
        len(comparison.unchanged),
        len(comparison.new_relays),
        len(comparison.removed_relays),
    )
    return comparison


__all__ = [
    "RelayChange",
    "RelayTrend",
    "RunComparison",
    "Trend",
    "TrendReport",
    "analyze_trends",
    "classify_trend",
    "compare_with_previous",
    "most_stable",
]
