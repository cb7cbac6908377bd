"""Job runner orchestrating relay fetch, probing, reports and history."""

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import psycopg

from relayping import engine
from relayping.config import AppConfig
from relayping.db import DatabaseClient
from relayping.engine import Prober, ProgressCallback, RunResult
from relayping.history import (
    RelayTrend,
    RunComparison,
    TrendReport,
    analyze_trends,
    compare_with_previous,
    most_stable,
)
from relayping.logging_utils import generate_run_id, perf, perf_span
from relayping.persistence import (
    ensure_schema,
    load_history,
    prune_snapshots,
    save_snapshot,
    snapshot_from_result,
)
from relayping.relays import RelayDirectoryClient, load_relays
from relayping.reports import save_results

LOGGER = logging.getLogger(__name__)

STATUS_OK = "OK"
STATUS_PARTIAL = "PARTIAL"
STATUS_EMPTY = "EMPTY"


@dataclass(frozen=True)
class JobOptions:
    output_dir: Optional[Path] = None
    write_reports: bool = True
    report_top: Optional[int] = None
    stable_count: int = 10
    deadline_seconds: Optional[float] = None
    handle_interrupts: bool = False

    def __post_init__(self) -> None:
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ValueError(f"deadline_seconds must be positive, got {self.deadline_seconds}")


@dataclass(frozen=True)
class JobSummary:
    run_id: str
    status: str
    result: Optional[RunResult] = None
    report_paths: Tuple[Path, ...] = ()
    trends: Optional[TrendReport] = None
    stable_relays: Tuple[RelayTrend, ...] = ()
    comparison: Optional[RunComparison] = None


def _interrupt_once(loop: asyncio.AbstractEventLoop, cancel_event: asyncio.Event):
    """SIGINT callback that stops the run once, then restores the default handler.

    The first Ctrl-C keeps the results gathered so far; a second one raises
    ``KeyboardInterrupt`` as usual.
    """

    def _handle() -> None:
        LOGGER.warning("Interrupted; finishing with partial results (Ctrl-C again to abort)")
        cancel_event.set()
        loop.remove_signal_handler(signal.SIGINT)

    return _handle


async def _probe_with_cancellation(
    endpoints,
    prober: Prober,
    config: AppConfig,
    options: JobOptions,
    progress: Optional[ProgressCallback],
) -> RunResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    interrupt_installed = False
    if options.handle_interrupts:
        try:
            loop.add_signal_handler(signal.SIGINT, _interrupt_once(loop, cancel_event))
            interrupt_installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            LOGGER.debug("SIGINT handler unavailable; interrupting will not keep partial results")

    deadline = None
    if options.deadline_seconds is not None:
        deadline = loop.call_later(options.deadline_seconds, cancel_event.set)

    try:
        return await engine.run(
            endpoints,
            prober,
            config.retry_policy(),
            config.concurrent_pings,
            max_threads=config.max_threads,
            thresholds=config.thresholds(),
            progress=progress,
            cancel_event=cancel_event,
        )
    finally:
        if deadline is not None:
            deadline.cancel()
        if interrupt_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _update_history(
    db_client: DatabaseClient,
    run_id: str,
    result: RunResult,
    config: AppConfig,
    stable_count: int,
) -> Tuple[TrendReport, Tuple[RelayTrend, ...], RunComparison]:
    with perf_span("jobs.history", tags={"run_id": run_id}, logger=LOGGER):
        ensure_schema(db_client)
        save_snapshot(db_client, run_id, result)
        prune_snapshots(db_client, config.max_history)
        snapshots = load_history(db_client, limit=config.max_history)
    trends = analyze_trends(snapshots)
    LOGGER.info("History: %s snapshots overall_trend=%s", len(snapshots), trends.overall.value)
    earlier = [snap for snap in snapshots if snap.run_id != run_id]
    comparison = compare_with_previous(
        snapshot_from_result(run_id, result), earlier[-1] if earlier else None
    )
    return trends, tuple(most_stable(snapshots, stable_count)), comparison


@perf("jobs.run_probe_job", tags={"component": "jobs"})
def run_probe_job(
    config: AppConfig,
    prober: Prober,
    options: Optional[JobOptions] = None,
    *,
    run_id: Optional[str] = None,
    directory: Optional[RelayDirectoryClient] = None,
    db_client: Optional[DatabaseClient] = None,
    progress: Optional[ProgressCallback] = None,
) -> JobSummary:
    options = options or JobOptions()
    run_id = run_id or generate_run_id()
    LOGGER.info("%s run %s started", config.app_name, run_id)

    with perf_span("jobs.load_relays", tags={"api": config.api_url}, logger=LOGGER):
        endpoints = load_relays(config, client=directory)
    if not endpoints:
        LOGGER.warning("Run summary: no relays available status=%s", STATUS_EMPTY)
        return JobSummary(run_id=run_id, status=STATUS_EMPTY)

    result = asyncio.run(_probe_with_cancellation(endpoints, prober, config, options, progress))
    stats = result.statistics

    report_paths: Tuple[Path, ...] = ()
    if options.write_reports and config.save_formats:
        report_paths = tuple(
            save_results(
                result,
                options.output_dir or config.save_path,
                config.save_formats,
                thresholds=config.thresholds(),
                top=options.report_top,
            )
        )

    trends: Optional[TrendReport] = None
    stable: Tuple[RelayTrend, ...] = ()
    comparison: Optional[RunComparison] = None
    if db_client is not None:
        try:
            trends, stable, comparison = _update_history(
                db_client, run_id, result, config, options.stable_count
            )
        except psycopg.Error as exc:
            LOGGER.error("History update failed for run %s: %s", run_id, exc)

    status = STATUS_PARTIAL if result.partial else STATUS_OK
    log = LOGGER.warning if result.partial else LOGGER.info
    log(
        "Run summary: probed=%s/%s reachable=%s unreachable=%s status=%s",
        len(result.outcomes),
        result.expected_total,
        stats.reachable,
        stats.unreachable,
        status,
    )
    LOGGER.info("%s run %s completed", config.app_name, run_id)
    return JobSummary(
        run_id=run_id,
        status=status,
        result=result,
        report_paths=report_paths,
        trends=trends,
        stable_relays=stable,
        comparison=comparison,
    )


__all__ = ["JobOptions", "JobSummary", "run_probe_job"]
