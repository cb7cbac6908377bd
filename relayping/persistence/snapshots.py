"""Persist probe runs as history snapshots and read them back."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from relayping.db.client import DatabaseClient
from relayping.engine.models import RunResult
from relayping.logging_utils import perf

LOGGER = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS probe_runs (
        run_id TEXT PRIMARY KEY,
        taken_at TIMESTAMPTZ NOT NULL,
        total INTEGER NOT NULL,
        reachable INTEGER NOT NULL,
        unreachable INTEGER NOT NULL,
        mean_latency_ms DOUBLE PRECISION,
        median_latency_ms DOUBLE PRECISION,
        min_latency_ms DOUBLE PRECISION,
        max_latency_ms DOUBLE PRECISION,
        good INTEGER NOT NULL,
        medium INTEGER NOT NULL,
        bad INTEGER NOT NULL,
        duration_seconds DOUBLE PRECISION NOT NULL,
        partial BOOLEAN NOT NULL DEFAULT FALSE
    );
    CREATE TABLE IF NOT EXISTS probe_outcomes (
        run_id TEXT NOT NULL REFERENCES probe_runs (run_id) ON DELETE CASCADE,
        hostname TEXT NOT NULL,
        country_code TEXT,
        country_name TEXT,
        city_name TEXT,
        address TEXT,
        reachable BOOLEAN NOT NULL,
        latency_ms DOUBLE PRECISION,
        packet_loss DOUBLE PRECISION NOT NULL,
        attempts INTEGER NOT NULL,
        failure_reason TEXT,
        measured_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (run_id, hostname)
    );
    CREATE INDEX IF NOT EXISTS probe_runs_taken_at_idx ON probe_runs (taken_at);
"""

INSERT_RUN_SQL = """
    INSERT INTO probe_runs (
        run_id,
        taken_at,
        total,
        reachable,
        unreachable,
        mean_latency_ms,
        median_latency_ms,
        min_latency_ms,
        max_latency_ms,
        good,
        medium,
        bad,
        duration_seconds,
        partial
    )
    VALUES (
        %(run_id)s,
        %(taken_at)s,
        %(total)s,
        %(reachable)s,
        %(unreachable)s,
        %(mean_latency_ms)s,
        %(median_latency_ms)s,
        %(min_latency_ms)s,
        %(max_latency_ms)s,
        %(good)s,
        %(medium)s,
        %(bad)s,
        %(duration_seconds)s,
        %(partial)s
    )
"""

INSERT_OUTCOME_SQL = """
    INSERT INTO probe_outcomes (
        run_id,
        hostname,
        country_code,
        country_name,
        city_name,
        address,
        reachable,
        latency_ms,
        packet_loss,
        attempts,
        failure_reason,
        measured_at
    )
    VALUES (
        %(run_id)s,
        %(hostname)s,
        %(country_code)s,
        %(country_name)s,
        %(city_name)s,
        %(address)s,
        %(reachable)s,
        %(latency_ms)s,
        %(packet_loss)s,
        %(attempts)s,
        %(failure_reason)s,
        %(measured_at)s
    )
    ON CONFLICT (run_id, hostname) DO NOTHING
"""

PRUNE_SQL = """
    DELETE FROM probe_runs
    WHERE run_id NOT IN (
        SELECT run_id FROM probe_runs ORDER BY taken_at DESC LIMIT %(keep)s
    )
"""

SELECT_RUNS_SQL = """
    SELECT run_id, taken_at, total, reachable, unreachable, mean_latency_ms
    FROM probe_runs
    ORDER BY taken_at DESC
    LIMIT %(limit)s
"""

SELECT_OUTCOMES_SQL = """
    SELECT run_id, hostname, country_code, city_name, reachable, latency_ms
    FROM probe_outcomes
    WHERE run_id = ANY(%(run_ids)s)
"""


@dataclass(frozen=True)
class HistoryEntry:
    hostname: str
    reachable: bool
    latency_ms: Optional[float] = None
    country_code: str = ""
    city_name: str = ""


@dataclass(frozen=True)
class HistorySnapshot:
    """One stored run: headline numbers plus a per-relay entry."""

    run_id: str
    taken_at: datetime
    total: int
    reachable: int
    mean_latency_ms: Optional[float]
    entries: Tuple[HistoryEntry, ...] = ()


def snapshot_from_result(run_id: str, result: RunResult, taken_at: Optional[datetime] = None) -> HistorySnapshot:
    """Build the in-memory snapshot equivalent of a stored run."""
    stats = result.statistics
    return HistorySnapshot(
        run_id=run_id,
        taken_at=taken_at or datetime.now(timezone.utc),
        total=stats.total,
        reachable=stats.reachable,
        mean_latency_ms=stats.mean_latency_ms,
        entries=tuple(
            HistoryEntry(
                hostname=outcome.endpoint.hostname,
                reachable=outcome.reachable,
                latency_ms=outcome.latency_ms,
                country_code=outcome.endpoint.country_code,
                city_name=outcome.endpoint.city_name,
            )
            for outcome in result.outcomes
        ),
    )


def ensure_schema(db_client: DatabaseClient) -> None:
    db_client.execute(SCHEMA_SQL)


def _run_row(run_id: str, result: RunResult, taken_at: datetime) -> Dict[str, Any]:
    stats = result.statistics
    return {
        "run_id": run_id,
        "taken_at": taken_at,
        "total": stats.total,
        "reachable": stats.reachable,
        "unreachable": stats.unreachable,
        "mean_latency_ms": stats.mean_latency_ms,
        "median_latency_ms": stats.median_latency_ms,
        "min_latency_ms": stats.min_latency_ms,
        "max_latency_ms": stats.max_latency_ms,
        "good": stats.good,
        "medium": stats.medium,
        "bad": stats.bad,
        "duration_seconds": stats.duration_seconds,
        "partial": stats.partial,
    }


def _outcome_rows(run_id: str, result: RunResult) -> List[Dict[str, Any]]:
    rows = []
    for outcome in result.outcomes:
        endpoint = outcome.endpoint
        rows.append(
            {
                "run_id": run_id,
                "hostname": endpoint.hostname,
                "country_code": endpoint.country_code,
                "country_name": endpoint.country_name,
                "city_name": endpoint.city_name,
                "address": endpoint.address,
                "reachable": outcome.reachable,
                "latency_ms": outcome.latency_ms,
                "packet_loss": outcome.packet_loss,
                "attempts": outcome.attempts,
                "failure_reason": outcome.failure_reason.value if outcome.failure_reason else None,
                "measured_at": outcome.measured_at,
            }
        )
    return rows


@perf("persistence.save_snapshot", tags={"component": "persistence"})
def save_snapshot(
    db_client: DatabaseClient,
    run_id: str,
    result: RunResult,
    taken_at: Optional[datetime] = None,
) -> int:
    """Store the run and its outcomes atomically; return the number of outcome rows."""
    run_row = _run_row(run_id, result, taken_at or datetime.now(timezone.utc))
    outcome_rows = _outcome_rows(run_id, result)

    def _write(conn) -> int:
        with conn.cursor() as cur:
            cur.execute(INSERT_RUN_SQL, run_row)
            if outcome_rows:
                cur.executemany(INSERT_OUTCOME_SQL, outcome_rows)
        return len(outcome_rows)

    written = db_client.run_in_transaction(_write)
    LOGGER.info("Stored history snapshot %s with %s outcomes", run_id, written)
    return written


def prune_snapshots(db_client: DatabaseClient, keep: int) -> None:
    """Delete all but the ``keep`` most recent runs (outcomes cascade)."""
    if keep < 1:
        raise ValueError("keep must be >= 1")
    db_client.execute(PRUNE_SQL, {"keep": keep})


@perf("persistence.load_history", tags={"component": "persistence"})
def load_history(db_client: DatabaseClient, limit: int = 100) -> List[HistorySnapshot]:
    """Return up to ``limit`` most recent snapshots, oldest first."""
    runs = db_client.fetch_all(SELECT_RUNS_SQL, {"limit": limit})
    if not runs:
        return []

    run_ids = [row["run_id"] for row in runs]
    entries: Dict[str, List[HistoryEntry]] = {run_id: [] for run_id in run_ids}
    for row in db_client.fetch_all(SELECT_OUTCOMES_SQL, {"run_ids": run_ids}):
        entries.setdefault(row["run_id"], []).append(
            HistoryEntry(
                hostname=row["hostname"],
                reachable=bool(row["reachable"]),
                latency_ms=row.get("latency_ms"),
                country_code=row.get("country_code") or "",
                city_name=row.get("city_name") or "",
            )
        )

    snapshots = [
        HistorySnapshot(
            run_id=row["run_id"],
            taken_at=row["taken_at"],
            total=row["total"],
            reachable=row["reachable"],
            mean_latency_ms=row.get("mean_latency_ms"),
            entries=tuple(entries.get(row["run_id"], ())),
        )
        for row in runs
    ]
    snapshots.reverse()
    return snapshots


__all__ = [
    "HistoryEntry",
    "HistorySnapshot",
    "ensure_schema",
    "load_history",
    "prune_snapshots",
    "save_snapshot",
    "snapshot_from_result",
]
