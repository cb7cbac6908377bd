"""Bounded fan-out of probe tasks.

The scheduler admits at most ``limit`` probe tasks at a time through an
``asyncio.Semaphore`` and yields each outcome as soon as its task finishes, so
callers see completion order rather than input order. Sorting is left to the
aggregator.
"""

import asyncio
import logging
import os
from typing import AsyncIterator, Iterable, Optional, Set, Tuple

from relayping.engine.models import Endpoint, FailureReason, ProbeOutcome, RetryPolicy
from relayping.engine.probe_task import ProbeTask
from relayping.engine.prober import Prober

LOGGER = logging.getLogger(__name__)


def effective_concurrency(
    configured: int,
    max_threads: Optional[int] = None,
    cpu_count: Optional[int] = None,
) -> int:
    """Return ``min(configured, max_threads)``.

    ``max_threads`` of ``None`` or ``0`` means twice the number of CPUs. Too many
    simultaneous probes exhaust sockets and skew the latencies being measured,
    hence the cap.

    Raises:
        ValueError: if the resulting limit is not a positive integer.
    """
    if configured is None or configured <= 0:
        raise ValueError(f"concurrency limit must be positive, got {configured!r}")

    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    cap = max_threads if max_threads else 2 * cpus
    limit = min(configured, cap)
    if limit <= 0:
        raise ValueError(f"effective concurrency must be positive, got {limit}")
    return limit


class ConcurrencyScheduler:
    """Run one ``ProbeTask`` per endpoint with a bounded number in flight."""

    def __init__(
        self,
        prober: Prober,
        policy: RetryPolicy,
        limit: int,
        *,
        retry_delay: float = 0.0,
    ) -> None:
        if prober is None:
            raise ValueError("a prober is required")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._prober = prober
        self._policy = policy
        self._limit = limit
        self._retry_delay = retry_delay
        self.in_flight = 0
        self.peak_in_flight = 0

    @property
    def limit(self) -> int:
        return self._limit

    async def _run_task(self, index: int, endpoint: Endpoint) -> ProbeOutcome:
        task = ProbeTask(endpoint, self._prober, self._policy, retry_delay=self._retry_delay)
        try:
            return await task.run()
        except Exception:  # noqa: BLE001 - a broken task must not stall the run
            LOGGER.exception("Probe task for %s crashed", endpoint.hostname)
            return ProbeOutcome.unreachable(
                endpoint,
                attempts=task.attempts_used + 1,
                failure_reason=FailureReason.TRANSPORT_ERROR,
            )

    async def stream(
        self,
        endpoints: Iterable[Endpoint],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Tuple[int, ProbeOutcome]]:
        """Yield ``(input_index, outcome)`` pairs in completion order.

        Iteration stops early when ``cancel_event`` is set; tasks still in
        flight are cancelled and endpoints not yet launched produce nothing.
        """
        targets = list(endpoints)
        total = len(targets)
        if not total:
            return

        semaphore = asyncio.Semaphore(self._limit)
        queue: "asyncio.Queue[Tuple[int, ProbeOutcome]]" = asyncio.Queue()
        tasks: Set["asyncio.Task[None]"] = set()

        async def _probe(index: int, endpoint: Endpoint) -> None:
            outcome = await self._run_task(index, endpoint)
            queue.put_nowait((index, outcome))

        def _finished(task: "asyncio.Task[None]") -> None:
            # Runs even for tasks cancelled before their first step.
            tasks.discard(task)
            self.in_flight -= 1
            semaphore.release()

        async def _launch() -> None:
            for index, endpoint in enumerate(targets):
                await semaphore.acquire()
                if cancel_event is not None and cancel_event.is_set():
                    semaphore.release()
                    return
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                task = asyncio.ensure_future(_probe(index, endpoint))
                tasks.add(task)
                task.add_done_callback(_finished)

        launcher = asyncio.ensure_future(_launch())
        cancel_waiter = (
            asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        )
        getter: Optional[asyncio.Future] = None
        received = 0
        try:
            while received < total:
                if cancel_event is not None and cancel_event.is_set():
                    break
                getter = asyncio.ensure_future(queue.get())
                waiters = {getter} if cancel_waiter is None else {getter, cancel_waiter}
                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    break
                received += 1
                item = getter.result()
                getter = None
                yield item
        finally:
            abandoned = [task for task in tasks if not task.done()]
            if received < total:
                LOGGER.info(
                    "Probe run stopped after %s of %s outcomes; abandoning %s in-flight probes",
                    received,
                    total,
                    len(abandoned),
                )
            pending = [launcher, *abandoned]
            if getter is not None:
                pending.append(getter)
            if cancel_waiter is not None:
                pending.append(cancel_waiter)
            for future in pending:
                future.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["ConcurrencyScheduler", "effective_concurrency"]
