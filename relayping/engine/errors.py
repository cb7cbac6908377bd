"""Exceptions raised by probers and by the engine itself."""

from typing import Optional

from relayping.engine.models import FailureReason


class ProbeError(Exception):
    """Base class for a failed probe attempt. Carries a ``FailureReason``."""

    reason = FailureReason.TRANSPORT_ERROR

    def __init__(self, message: str = "", *, address: Optional[str] = None) -> None:
        super().__init__(message or self.reason.value)
        self.address = address


class ProbeTimeout(ProbeError):
    reason = FailureReason.TIMEOUT


class NetworkUnreachable(ProbeError):
    reason = FailureReason.NETWORK_UNREACHABLE


class AddressResolutionFailure(ProbeError):
    reason = FailureReason.ADDRESS_RESOLUTION_FAILURE


class TransportError(ProbeError):
    reason = FailureReason.TRANSPORT_ERROR


class IncompleteRunError(RuntimeError):
    """Raised when a run that was not cancelled produced fewer outcomes than endpoints."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"expected {expected} outcomes, received {received}")
        self.expected = expected
        self.received = received


__all__ = [
    "AddressResolutionFailure",
    "IncompleteRunError",
    "NetworkUnreachable",
    "ProbeError",
    "ProbeTimeout",
    "TransportError",
]
