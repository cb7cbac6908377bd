"""Per-endpoint retry state machine.

A ``ProbeTask`` drives one endpoint through

    PENDING -> ATTEMPTING -> SUCCEEDED
                          -> RETRYING -> ATTEMPTING ...
                          -> EXHAUSTED

and always finishes with exactly one ``ProbeOutcome``. Errors raised by the
prober (including ones it was never supposed to raise) are converted into a
retry or an unreachable outcome; only cancellation escapes.
"""

import asyncio
import errno
import logging
import math
import socket
from enum import Enum
from typing import Optional

from relayping.engine.errors import ProbeError, TransportError
from relayping.engine.models import Endpoint, FailureReason, ProbeOutcome, RetryPolicy
from relayping.engine.prober import Prober

LOGGER = logging.getLogger(__name__)

# Slack on top of the policy timeout before a stuck prober call is abandoned.
PROBE_GRACE_SECONDS = 0.25

_UNREACHABLE_ERRNOS = {
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.EHOSTDOWN,
}


class TaskState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


def classify_failure(exc: BaseException) -> FailureReason:
    """Map an exception raised during an attempt onto a ``FailureReason``."""
    if isinstance(exc, ProbeError):
        return exc.reason
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, socket.timeout)):
        return FailureReason.TIMEOUT
    if isinstance(exc, socket.gaierror):
        return FailureReason.ADDRESS_RESOLUTION_FAILURE
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return FailureReason.NETWORK_UNREACHABLE
    return FailureReason.TRANSPORT_ERROR


class ProbeTask:
    """Probe a single endpoint under a ``RetryPolicy``."""

    def __init__(
        self,
        endpoint: Endpoint,
        prober: Prober,
        policy: RetryPolicy,
        *,
        retry_delay: float = 0.0,
        grace: float = PROBE_GRACE_SECONDS,
    ) -> None:
        if retry_delay < 0:
            raise ValueError("retry_delay must be non-negative")
        self.endpoint = endpoint
        self.state = TaskState.PENDING
        self.attempts_used = 0
        self.last_failure: Optional[FailureReason] = None
        self._prober = prober
        self._policy = policy
        self._retry_delay = retry_delay
        self._grace = grace

    async def _attempt(self) -> float:
        latency = await asyncio.wait_for(
            self._prober.probe(self.endpoint.target, self._policy.timeout),
            timeout=self._policy.timeout + self._grace,
        )
        try:
            latency = float(latency)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"prober returned {latency!r}") from exc
        if not math.isfinite(latency) or latency < 0:
            raise TransportError(f"prober returned {latency!r}")
        return latency

    async def run(self) -> ProbeOutcome:
        if self.state is not TaskState.PENDING:
            raise RuntimeError(f"probe task for {self.endpoint.hostname} already ran")

        while True:
            self.state = TaskState.ATTEMPTING
            try:
                latency = await self._attempt()
            except Exception as exc:  # noqa: BLE001 - every attempt failure becomes data
                self.last_failure = classify_failure(exc)
                LOGGER.debug(
                    "Probe attempt %s for %s failed: %s (%s)",
                    self.attempts_used + 1,
                    self.endpoint.hostname,
                    self.last_failure.value,
                    exc,
                )
                if self.attempts_used < self._policy.max_retries:
                    self.attempts_used += 1
                    self.state = TaskState.RETRYING
                    if self._retry_delay:
                        await asyncio.sleep(self._retry_delay)
                    continue

                self.state = TaskState.EXHAUSTED
                return ProbeOutcome.unreachable(
                    self.endpoint,
                    attempts=self.attempts_used + 1,
                    failure_reason=self.last_failure,
                )

            attempts = self.attempts_used + 1
            self.state = TaskState.SUCCEEDED
            return ProbeOutcome(
                endpoint=self.endpoint,
                reachable=True,
                latency_ms=latency,
                packet_loss=100.0 * (attempts - 1) / attempts,
                attempts=attempts,
                failure_reason=self.last_failure,
            )


__all__ = ["PROBE_GRACE_SECONDS", "ProbeTask", "TaskState", "classify_failure"]
