import math

import pytest

from relayping.engine import (
    Endpoint,
    FailureReason,
    LatencyStatus,
    LatencyThresholds,
    ProbeOutcome,
    RetryPolicy,
)


def make_endpoint(name, **kwargs):
    kwargs.setdefault("address", f"{name}.example")
    return Endpoint(hostname=name, **kwargs)


def test_unreachable_factory_sets_full_loss():
    outcome = ProbeOutcome.unreachable(make_endpoint("a"), attempts=3, failure_reason=FailureReason.TIMEOUT)

    assert outcome.reachable is False
    assert outcome.latency_ms is None
    assert outcome.packet_loss == 100.0
    assert outcome.attempts == 3


@pytest.mark.parametrize(
    "kwargs",
    [
        {"reachable": True, "latency_ms": None},
        {"reachable": True, "latency_ms": -1.0},
        {"reachable": True, "latency_ms": math.inf},
        {"reachable": False, "latency_ms": 12.0, "packet_loss": 100.0},
        {"reachable": False, "packet_loss": 50.0},
        {"reachable": True, "latency_ms": 1.0, "attempts": 0},
        {"reachable": True, "latency_ms": 1.0, "packet_loss": 101.0},
    ],
)
def test_outcome_rejects_inconsistent_fields(kwargs):
    with pytest.raises(ValueError):
        ProbeOutcome(endpoint=make_endpoint("a"), **kwargs)


def test_endpoint_target_falls_back_to_hostname():
    assert make_endpoint("se-sto-001").target == "se-sto-001.example"
    assert make_endpoint("se-sto-001", address=None).target == "se-sto-001"


def test_retry_policy_from_milliseconds():
    policy = RetryPolicy.from_milliseconds(1500, retries=2)

    assert policy.timeout == 1.5
    assert policy.max_attempts == 3


@pytest.mark.parametrize("timeout, retries", [(0, 0), (-1.0, 1), (1.0, -1)])
def test_retry_policy_validation(timeout, retries):
    with pytest.raises(ValueError):
        RetryPolicy(timeout=timeout, max_retries=retries)


@pytest.mark.parametrize(
    "latency, status",
    [
        (None, LatencyStatus.UNREACHABLE),
        (0.0, LatencyStatus.GOOD),
        (49.9, LatencyStatus.GOOD),
        (50.0, LatencyStatus.MEDIUM),
        (99.9, LatencyStatus.MEDIUM),
        (100.0, LatencyStatus.BAD),
    ],
)
def test_threshold_classification(latency, status):
    assert LatencyThresholds(50, 100).classify(latency) is status


def test_thresholds_must_be_ordered():
    with pytest.raises(ValueError):
        LatencyThresholds(good=100, medium=50)
