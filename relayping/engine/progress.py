"""Live run counters handed to a display layer."""

import logging
from typing import Callable, Optional

from relayping.engine.models import ProbeOutcome, ProgressSnapshot, ScheduleState

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]


class ProgressReporter:
    """Count outcomes as they arrive and notify an optional observer.

    ``record`` is O(1) and never suspends. The observer receives an immutable
    snapshot; anything it raises is logged and dropped so a broken display can
    not abort a run.
    """

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None) -> None:
        if total < 0:
            raise ValueError("total must be non-negative")
        self._state = ScheduleState(total=total)
        self._callback = callback

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._state.snapshot()

    def record(self, outcome: ProbeOutcome) -> ProgressSnapshot:
        state = self._state
        if state.completed >= state.total:
            raise RuntimeError("received more outcomes than scheduled endpoints")

        state.completed += 1
        if outcome.reachable:
            state.succeeded += 1
        else:
            state.failed += 1

        snapshot = state.snapshot()
        if self._callback is not None:
            try:
                self._callback(snapshot)
            except Exception:  # noqa: BLE001 - observers must not break the run
                LOGGER.warning("Progress callback raised; ignoring", exc_info=True)
        return snapshot


__all__ = ["ProgressCallback", "ProgressReporter"]
