"""Entry point tying scheduler, progress reporting and aggregation together."""

import asyncio
import logging
import time
from typing import Iterable, Optional

from relayping.engine.aggregator import ResultAggregator
from relayping.engine.models import Endpoint, LatencyThresholds, RetryPolicy, RunResult
from relayping.engine.prober import Prober
from relayping.engine.progress import ProgressCallback, ProgressReporter
from relayping.engine.scheduler import ConcurrencyScheduler, effective_concurrency

LOGGER = logging.getLogger(__name__)


async def run(
    endpoints: Iterable[Endpoint],
    prober: Prober,
    policy: RetryPolicy,
    concurrency_limit: int,
    *,
    max_threads: Optional[int] = None,
    thresholds: Optional[LatencyThresholds] = None,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[asyncio.Event] = None,
    retry_delay: float = 0.0,
) -> RunResult:
    """Probe every endpoint and return the sorted outcomes with statistics.

    Args:
        endpoints: Relays to probe; each one is probed exactly once.
        prober: Measurement capability used by every probe task.
        policy: Per-attempt timeout and retry count.
        concurrency_limit: Requested number of simultaneous probes, capped by
            ``max_threads`` (``None``/``0`` means twice the CPU count).
        thresholds: Latency buckets for the good/medium/bad counts.
        progress: Optional callback receiving a snapshot after every outcome.
        cancel_event: Setting this event stops the run; the result then holds
            only the outcomes collected so far and is flagged as cancelled.
        retry_delay: Fixed pause between attempts of the same endpoint.

    Returns:
        A ``RunResult`` whose outcomes are ordered fastest first with
        unreachable relays last.

    Raises:
        ValueError: on a missing prober or policy, or a non-positive limit.
            Raised before anything is probed.
    """
    if prober is None:
        raise ValueError("a prober is required")
    if policy is None:
        raise ValueError("a retry policy is required")
    targets = list(endpoints)
    limit = effective_concurrency(concurrency_limit, max_threads)

    scheduler = ConcurrencyScheduler(prober, policy, limit, retry_delay=retry_delay)
    reporter = ProgressReporter(len(targets), progress)
    aggregator = ResultAggregator(len(targets), thresholds)

    LOGGER.info(
        "Probing %s endpoints concurrency=%s timeout=%.3fs retries=%s",
        len(targets),
        limit,
        policy.timeout,
        policy.max_retries,
    )

    started = time.perf_counter()
    stream = scheduler.stream(targets, cancel_event)
    try:
        async for index, outcome in stream:
            aggregator.add(index, outcome)
            reporter.record(outcome)
    finally:
        await stream.aclose()
    duration = time.perf_counter() - started

    cancelled = (
        cancel_event is not None and cancel_event.is_set() and len(aggregator) < len(targets)
    )
    result = aggregator.finalize(cancelled=cancelled, duration_seconds=duration)
    stats = result.statistics
    LOGGER.info(
        "Probe run finished reachable=%s unreachable=%s peak_in_flight=%s duration_s=%.3f cancelled=%s",
        stats.reachable,
        stats.unreachable,
        scheduler.peak_in_flight,
        duration,
        str(cancelled).lower(),
    )
    return result


def run_sync(
    endpoints: Iterable[Endpoint],
    prober: Prober,
    policy: RetryPolicy,
    concurrency_limit: int,
    **kwargs,
) -> RunResult:
    """Blocking wrapper around ``run`` for callers without an event loop."""
    return asyncio.run(run(endpoints, prober, policy, concurrency_limit, **kwargs))


__all__ = ["run", "run_sync"]
