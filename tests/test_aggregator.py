import pytest

from relayping.engine import (
    Endpoint,
    IncompleteRunError,
    LatencyThresholds,
    ProbeOutcome,
    ResultAggregator,
    compute_statistics,
    sort_outcomes,
)


def make_endpoint(name, **kwargs):
    kwargs.setdefault("address", f"{name}.example")
    return Endpoint(hostname=name, **kwargs)


def _ok(name, latency):
    return ProbeOutcome(endpoint=make_endpoint(name), reachable=True, latency_ms=latency)


def _down(name):
    return ProbeOutcome.unreachable(make_endpoint(name), attempts=2)


def test_sort_is_stable_for_equal_latencies():
    indexed = [(2, _ok("c", 20.0)), (0, _ok("a", 20.0)), (1, _down("b")), (3, _ok("d", 5.0))]

    ordered = sort_outcomes(indexed)

    assert [o.endpoint.hostname for o in ordered] == ["d", "a", "c", "b"]


def test_unreachable_keep_input_order_at_the_end():
    indexed = [(4, _down("late")), (1, _down("early")), (0, _ok("up", 99.0))]

    ordered = sort_outcomes(indexed)

    assert [o.endpoint.hostname for o in ordered] == ["up", "early", "late"]


def test_compute_statistics_buckets_and_extremes():
    outcomes = sort_outcomes(
        enumerate([_ok("a", 10.0), _ok("b", 80.0), _down("c"), _ok("d", 150.0)])
    )

    stats = compute_statistics(outcomes, LatencyThresholds(50, 100))

    assert stats.total == 4
    assert stats.reachable == 3
    assert stats.unreachable == 1
    assert stats.mean_latency_ms == pytest.approx(80.0)
    assert stats.median_latency_ms == 80.0
    assert (stats.good, stats.medium, stats.bad) == (1, 1, 1)
    assert stats.best.endpoint.hostname == "a"
    assert stats.worst.endpoint.hostname == "d"


def test_compute_statistics_with_nothing_reachable():
    stats = compute_statistics([_down("a"), _down("b")])

    assert stats.reachable == 0
    assert stats.unreachable == 2
    assert stats.mean_latency_ms is None
    assert stats.min_latency_ms is None
    assert stats.best is None


def test_finalize_requires_every_outcome():
    aggregator = ResultAggregator(3)
    aggregator.add(0, _ok("a", 1.0))
    aggregator.add(2, _ok("c", 2.0))

    with pytest.raises(IncompleteRunError) as excinfo:
        aggregator.finalize()

    assert excinfo.value.expected == 3
    assert excinfo.value.received == 2


def test_finalize_cancelled_returns_partial_result():
    aggregator = ResultAggregator(3)
    aggregator.add(1, _ok("b", 3.0))

    result = aggregator.finalize(cancelled=True, duration_seconds=1.5)

    assert result.partial is True
    assert result.expected_total == 3
    assert len(result.outcomes) == 1
    assert result.statistics.partial is True
    assert result.statistics.duration_seconds == 1.5


@pytest.mark.parametrize("index", [-1, 2])
def test_add_rejects_out_of_range_index(index):
    aggregator = ResultAggregator(2)

    with pytest.raises(ValueError):
        aggregator.add(index, _ok("x", 1.0))


def test_add_rejects_duplicate_index():
    aggregator = ResultAggregator(2)
    aggregator.add(0, _ok("a", 1.0))

    with pytest.raises(ValueError):
        aggregator.add(0, _ok("a", 2.0))


def test_empty_run_finalizes_with_zero_statistics():
    result = ResultAggregator(0).finalize()

    assert result.outcomes == ()
    assert result.statistics.total == 0
    assert result.partial is False


def test_top_skips_unreachable():
    aggregator = ResultAggregator(3)
    aggregator.add(0, _down("a"))
    aggregator.add(1, _ok("b", 30.0))
    aggregator.add(2, _ok("c", 20.0))

    result = aggregator.finalize()

    assert [o.endpoint.hostname for o in result.top(5)] == ["c", "b"]
    assert [o.endpoint.hostname for o in result.top(1)] == ["c"]
