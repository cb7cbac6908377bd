"""History snapshot storage."""

from relayping.persistence.snapshots import (
    HistoryEntry,
    HistorySnapshot,
    ensure_schema,
    load_history,
    prune_snapshots,
    save_snapshot,
    snapshot_from_result,
)

__all__ = [
    "HistoryEntry",
    "HistorySnapshot",
    "ensure_schema",
    "load_history",
    "prune_snapshots",
    "save_snapshot",
    "snapshot_from_result",
]
