import asyncio
import time

import pytest

from relayping.engine import ConcurrencyScheduler, Prober, RetryPolicy, effective_concurrency


class DelayedProber(Prober):
    """Answers each address after its own delay, echoing the delay in ms."""

    def __init__(self, delays):
        self._delays = delays
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = []

    async def probe(self, address, timeout):
        self.started.append(address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self._delays[address])
        finally:
            self.in_flight -= 1
        return self._delays[address] * 1000.0


async def _collect(scheduler, endpoints, cancel_event=None):
    return [item async for item in scheduler.stream(endpoints, cancel_event)]


def test_effective_concurrency_caps_by_max_threads():
    assert effective_concurrency(30, max_threads=8) == 8
    assert effective_concurrency(4, max_threads=8) == 4


def test_effective_concurrency_defaults_to_twice_cpu_count():
    assert effective_concurrency(100, max_threads=0, cpu_count=4) == 8
    assert effective_concurrency(100, max_threads=None, cpu_count=2) == 4


@pytest.mark.parametrize("configured, max_threads", [(0, None), (-1, 4), (5, -2)])
def test_effective_concurrency_rejects_non_positive(configured, max_threads):
    with pytest.raises(ValueError):
        effective_concurrency(configured, max_threads=max_threads, cpu_count=4)


def test_scheduler_rejects_bad_arguments():
    with pytest.raises(ValueError):
        ConcurrencyScheduler(None, RetryPolicy(timeout=1.0), 2)
    with pytest.raises(ValueError):
        ConcurrencyScheduler(DelayedProber({}), RetryPolicy(timeout=1.0), 0)


def test_stream_yields_each_endpoint_once_in_completion_order(endpoint_factory):
    endpoints = [endpoint_factory(name) for name in ("slow", "fast", "medium")]
    prober = DelayedProber({"slow.example": 0.15, "fast.example": 0.01, "medium.example": 0.05})
    scheduler = ConcurrencyScheduler(prober, RetryPolicy(timeout=1.0), limit=3)

    items = asyncio.run(_collect(scheduler, endpoints))

    assert [index for index, _ in items] == [1, 2, 0]
    assert sorted(index for index, _ in items) == [0, 1, 2]
    assert all(outcome.reachable for _, outcome in items)


def test_stream_respects_limit_and_launches_in_input_order(endpoint_factory):
    endpoints = [endpoint_factory(f"relay-{i}") for i in range(5)]
    prober = DelayedProber({ep.target: 0.1 for ep in endpoints})
    scheduler = ConcurrencyScheduler(prober, RetryPolicy(timeout=1.0), limit=2)

    started = time.perf_counter()
    items = asyncio.run(_collect(scheduler, endpoints))
    elapsed = time.perf_counter() - started

    assert len(items) == 5
    assert prober.max_in_flight == 2
    assert scheduler.peak_in_flight == 2
    assert scheduler.in_flight == 0
    assert prober.started == [ep.target for ep in endpoints]
    # ceil(5 / 2) waves of 0.1s each
    assert 0.28 <= elapsed < 0.6


def test_stream_empty_input_yields_nothing():
    scheduler = ConcurrencyScheduler(DelayedProber({}), RetryPolicy(timeout=1.0), limit=2)

    assert asyncio.run(_collect(scheduler, [])) == []


def test_cancel_event_stops_stream_and_abandons_in_flight(endpoint_factory):
    endpoints = [endpoint_factory(f"relay-{i}") for i in range(6)]
    delays = {ep.target: 0.02 for ep in endpoints[:2]}
    delays.update({ep.target: 10.0 for ep in endpoints[2:]})
    prober = DelayedProber(delays)
    scheduler = ConcurrencyScheduler(prober, RetryPolicy(timeout=30.0), limit=3)

    async def scenario():
        cancel_event = asyncio.Event()
        received = []
        async for item in scheduler.stream(endpoints, cancel_event):
            received.append(item)
            if len(received) == 2:
                cancel_event.set()
        return received

    started = time.perf_counter()
    received = asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert [index for index, _ in received] == [0, 1]
    assert time.perf_counter() - started < 5
    assert prober.in_flight == 0
    assert len(prober.started) < len(endpoints)


def test_cancel_event_set_while_waiting_wakes_consumer(endpoint_factory):
    endpoints = [endpoint_factory(f"relay-{i}") for i in range(3)]
    prober = DelayedProber({ep.target: 10.0 for ep in endpoints})
    scheduler = ConcurrencyScheduler(prober, RetryPolicy(timeout=30.0), limit=3)

    async def scenario():
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)
        return await _collect(scheduler, endpoints, cancel_event)

    assert asyncio.run(asyncio.wait_for(scenario(), timeout=5)) == []
    assert prober.in_flight == 0


def test_breaking_out_of_stream_cleans_up(endpoint_factory):
    endpoints = [endpoint_factory(f"relay-{i}") for i in range(4)]
    delays = {endpoints[0].target: 0.01}
    delays.update({ep.target: 10.0 for ep in endpoints[1:]})
    prober = DelayedProber(delays)
    scheduler = ConcurrencyScheduler(prober, RetryPolicy(timeout=30.0), limit=4)

    async def scenario():
        stream = scheduler.stream(endpoints)
        async for item in stream:
            await stream.aclose()
            return item

    index, outcome = asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert index == 0
    assert outcome.reachable
    assert prober.in_flight == 0
