import asyncio
import time

import pytest

from relayping.engine import (
    LatencyThresholds,
    ProgressSnapshot,
    RetryPolicy,
    TransportError,
    run,
    run_sync,
)


def test_mixed_batch_sorted_with_unreachable_last(endpoints, prober_factory):
    a, b, c, d = endpoints
    prober = prober_factory(
        {
            a.target: [10.0],
            b.target: [80.0],
            c.target: [TransportError(), TransportError()],
            d.target: [150.0],
        }
    )

    result = run_sync(endpoints, prober, RetryPolicy(timeout=1.0, max_retries=1), 4)

    assert [o.endpoint.hostname for o in result.outcomes] == [
        a.hostname,
        b.hostname,
        d.hostname,
        c.hostname,
    ]
    assert [o.latency_ms for o in result.outcomes] == [10.0, 80.0, 150.0, None]
    stats = result.statistics
    assert stats.reachable == 3
    assert stats.unreachable == 1
    assert stats.min_latency_ms == 10.0
    assert stats.max_latency_ms == 150.0
    assert result.outcomes[-1].attempts == 2
    assert prober.calls[c.target] == 2
    assert result.cancelled is False
    assert result.partial is False


def test_every_endpoint_gets_exactly_one_outcome(endpoint_factory, prober_factory):
    endpoints = [endpoint_factory(f"relay-{i:03d}") for i in range(50)]
    script = {ep.target: [TransportError()] for ep in endpoints[::3]}
    prober = prober_factory(script, default=25.0)

    result = run_sync(endpoints, prober, RetryPolicy(timeout=1.0, max_retries=2), 8)

    assert len(result.outcomes) == len(endpoints)
    assert {o.endpoint.hostname for o in result.outcomes} == {ep.hostname for ep in endpoints}
    for outcome in result.outcomes:
        assert 1 <= outcome.attempts <= 3
        if not outcome.reachable:
            assert outcome.latency_ms is None
            assert outcome.packet_loss == 100.0


def test_concurrency_limit_bounds_in_flight_and_wall_time(endpoint_factory, prober_factory):
    endpoints = [endpoint_factory(f"relay-{i}") for i in range(5)]
    prober = prober_factory(delay=0.1)

    started = time.perf_counter()
    result = run_sync(endpoints, prober, RetryPolicy(timeout=1.0), 2)
    elapsed = time.perf_counter() - started

    assert prober.max_in_flight == 2
    assert len(result.outcomes) == 5
    assert 0.28 <= elapsed < 0.6


def test_cancellation_after_two_outcomes_returns_partial_result(endpoint_factory, prober_factory):
    endpoints = [endpoint_factory(f"relay-{i}") for i in range(5)]
    prober = prober_factory(delay=0.05)

    async def scenario():
        cancel_event = asyncio.Event()

        def on_progress(snapshot):
            if snapshot.completed == 2:
                cancel_event.set()

        return await run(
            endpoints,
            prober,
            RetryPolicy(timeout=1.0),
            1,
            progress=on_progress,
            cancel_event=cancel_event,
        )

    result = asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert len(result.outcomes) == 2
    assert result.cancelled is True
    assert result.partial is True
    assert result.expected_total == 5
    assert result.statistics.partial is True
    assert result.statistics.total == 2


def test_cancel_after_completion_is_not_partial(endpoints, prober_factory):
    async def scenario():
        cancel_event = asyncio.Event()
        result = await run(endpoints, prober_factory(), RetryPolicy(timeout=1.0), 4, cancel_event=cancel_event)
        cancel_event.set()
        return result

    result = asyncio.run(scenario())

    assert result.cancelled is False
    assert len(result.outcomes) == len(endpoints)


def test_empty_input_returns_zeroed_statistics(prober_factory):
    result = run_sync([], prober_factory(), RetryPolicy(timeout=1.0), 4)

    assert result.outcomes == ()
    assert result.statistics.total == 0
    assert result.statistics.reachable == 0
    assert result.statistics.mean_latency_ms is None


def test_progress_is_monotonic_and_ends_at_total(endpoints, prober_factory):
    snapshots = []
    prober = prober_factory({endpoints[0].target: [TransportError()]})

    run_sync(
        endpoints,
        prober,
        RetryPolicy(timeout=1.0),
        2,
        progress=snapshots.append,
    )

    completed = [snap.completed for snap in snapshots]
    assert completed == sorted(completed)
    assert completed[-1] == len(endpoints)
    assert all(snap.completed <= snap.total for snap in snapshots)
    assert snapshots[-1] == ProgressSnapshot(total=4, completed=4, succeeded=3, failed=1)


def test_failing_progress_callback_does_not_abort_run(endpoints, prober_factory):
    def explode(snapshot):
        raise RuntimeError("display broke")

    result = run_sync(endpoints, prober_factory(), RetryPolicy(timeout=1.0), 2, progress=explode)

    assert len(result.outcomes) == len(endpoints)


def test_thresholds_drive_bucket_counts(endpoints, prober_factory):
    latencies = [5.0, 60.0, 120.0, 30.0]
    prober = prober_factory({ep.target: [lat] for ep, lat in zip(endpoints, latencies)})

    result = run_sync(
        endpoints,
        prober,
        RetryPolicy(timeout=1.0),
        4,
        thresholds=LatencyThresholds(good=50, medium=100),
    )

    stats = result.statistics
    assert (stats.good, stats.medium, stats.bad) == (2, 1, 1)


def test_missing_prober_is_rejected_before_probing(endpoints):
    with pytest.raises(ValueError):
        run_sync(endpoints, None, RetryPolicy(timeout=1.0), 4)


@pytest.mark.parametrize("limit, max_threads", [(0, None), (4, -1)])
def test_bad_limits_are_rejected_before_probing(endpoints, prober_factory, limit, max_threads):
    prober = prober_factory()

    with pytest.raises(ValueError):
        run_sync(endpoints, prober, RetryPolicy(timeout=1.0), limit, max_threads=max_threads)

    assert not prober.calls
