"""Value objects shared by the probing engine and the layers around it."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    ADDRESS_RESOLUTION_FAILURE = "address_resolution_failure"
    TRANSPORT_ERROR = "transport_error"


class LatencyStatus(str, Enum):
    GOOD = "good"
    MEDIUM = "medium"
    BAD = "bad"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class Endpoint:
    """A relay to probe. Location fields are opaque to the engine."""

    hostname: str
    country_code: str = ""
    country_name: str = ""
    city_code: str = ""
    city_name: str = ""
    address: Optional[str] = None
    provider: str = ""
    active: bool = True
    owned: bool = False

    @property
    def target(self) -> str:
        """Address handed to the prober, falling back to the hostname."""
        return self.address or self.hostname


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProbeOutcome:
    """Terminal result of probing one endpoint.

    Unreachable outcomes never carry a latency and always report full packet
    loss; the constructor rejects anything else.
    """

    endpoint: Endpoint
    reachable: bool
    latency_ms: Optional[float] = None
    packet_loss: float = 0.0
    attempts: int = 1
    measured_at: datetime = field(default_factory=_utcnow)
    failure_reason: Optional[FailureReason] = None

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if not 0.0 <= self.packet_loss <= 100.0:
            raise ValueError("packet_loss must be within [0, 100]")
        if self.reachable:
            if self.latency_ms is None or not math.isfinite(self.latency_ms) or self.latency_ms < 0:
                raise ValueError("reachable outcomes need a finite, non-negative latency")
        else:
            if self.latency_ms is not None:
                raise ValueError("unreachable outcomes must not carry a latency")
            if self.packet_loss != 100.0:
                raise ValueError("unreachable outcomes must report 100% packet loss")

    @classmethod
    def unreachable(
        cls,
        endpoint: Endpoint,
        attempts: int,
        failure_reason: Optional[FailureReason] = None,
    ) -> "ProbeOutcome":
        return cls(
            endpoint=endpoint,
            reachable=False,
            latency_ms=None,
            packet_loss=100.0,
            attempts=attempts,
            failure_reason=failure_reason,
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Per-attempt timeout (seconds) and number of retries after the first attempt."""

    timeout: float
    max_retries: int = 0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

    @classmethod
    def from_milliseconds(cls, timeout_ms: float, retries: int = 0) -> "RetryPolicy":
        return cls(timeout=timeout_ms / 1000.0, max_retries=retries)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True)
class LatencyThresholds:
    """Bucket boundaries in milliseconds: below ``good`` is good, below ``medium`` is medium."""

    good: float = 50.0
    medium: float = 100.0

    def __post_init__(self) -> None:
        if self.good <= 0 or self.medium < self.good:
            raise ValueError("thresholds must satisfy 0 < good <= medium")

    def classify(self, latency_ms: Optional[float]) -> LatencyStatus:
        if latency_ms is None:
            return LatencyStatus.UNREACHABLE
        if latency_ms < self.good:
            return LatencyStatus.GOOD
        if latency_ms < self.medium:
            return LatencyStatus.MEDIUM
        return LatencyStatus.BAD


@dataclass
class ScheduleState:
    """Per-run counters. Only the outcome-collection path mutates them."""

    total: int
    completed: int = 0
    succeeded: int = 0
    failed: int = 0

    def snapshot(self) -> "ProgressSnapshot":
        return ProgressSnapshot(
            total=self.total,
            completed=self.completed,
            succeeded=self.succeeded,
            failed=self.failed,
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    completed: int
    succeeded: int
    failed: int

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return 100.0 * self.completed / self.total


@dataclass(frozen=True)
class Statistics:
    total: int = 0
    reachable: int = 0
    unreachable: int = 0
    mean_latency_ms: Optional[float] = None
    median_latency_ms: Optional[float] = None
    min_latency_ms: Optional[float] = None
    max_latency_ms: Optional[float] = None
    good: int = 0
    medium: int = 0
    bad: int = 0
    best: Optional[ProbeOutcome] = None
    worst: Optional[ProbeOutcome] = None
    duration_seconds: float = 0.0
    partial: bool = False


@dataclass(frozen=True)
class RunResult:
    outcomes: Tuple[ProbeOutcome, ...]
    statistics: Statistics
    expected_total: int
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.cancelled and len(self.outcomes) < self.expected_total

    def top(self, count: int) -> Tuple[ProbeOutcome, ...]:
        """Return the ``count`` fastest reachable outcomes."""
        return tuple(outcome for outcome in self.outcomes if outcome.reachable)[:count]


__all__ = [
    "Endpoint",
    "FailureReason",
    "LatencyStatus",
    "LatencyThresholds",
    "ProbeOutcome",
    "ProgressSnapshot",
    "RetryPolicy",
    "RunResult",
    "ScheduleState",
    "Statistics",
]
