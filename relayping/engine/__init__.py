"""Concurrent probing engine.

Exports the value objects, the ``Prober`` capability, the scheduler and
aggregator building blocks, and ``run`` / ``run_sync`` which wire them together.
"""

from relayping.engine.aggregator import ResultAggregator, compute_statistics, sort_outcomes
from relayping.engine.errors import (
    AddressResolutionFailure,
    IncompleteRunError,
    NetworkUnreachable,
    ProbeError,
    ProbeTimeout,
    TransportError,
)
from relayping.engine.models import (
    Endpoint,
    FailureReason,
    LatencyStatus,
    LatencyThresholds,
    ProbeOutcome,
    ProgressSnapshot,
    RetryPolicy,
    RunResult,
    ScheduleState,
    Statistics,
)
from relayping.engine.probe_task import ProbeTask, TaskState
from relayping.engine.prober import Prober
from relayping.engine.progress import ProgressCallback, ProgressReporter
from relayping.engine.runner import run, run_sync
from relayping.engine.scheduler import ConcurrencyScheduler, effective_concurrency

__all__ = [
    "AddressResolutionFailure",
    "ConcurrencyScheduler",
    "Endpoint",
    "FailureReason",
    "IncompleteRunError",
    "LatencyStatus",
    "LatencyThresholds",
    "NetworkUnreachable",
    "ProbeError",
    "ProbeOutcome",
    "ProbeTask",
    "ProbeTimeout",
    "Prober",
    "ProgressCallback",
    "ProgressReporter",
    "ProgressSnapshot",
    "ResultAggregator",
    "RetryPolicy",
    "RunResult",
    "ScheduleState",
    "Statistics",
    "TaskState",
    "TransportError",
    "compute_statistics",
    "effective_concurrency",
    "run",
    "run_sync",
    "sort_outcomes",
]
