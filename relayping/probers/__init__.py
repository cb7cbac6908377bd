"""Prober implementations and a factory keyed by configuration name."""

from relayping.engine.prober import Prober
from relayping.probers.system_ping import SystemPingProber
from relayping.probers.tcp import DEFAULT_PORT, TcpConnectProber


def build_prober(kind: str = "tcp", *, port: int = DEFAULT_PORT) -> Prober:
    """Return the prober named by ``kind`` (``tcp`` or ``ping``)."""
    normalized = (kind or "").strip().lower()
    if normalized == "tcp":
        return TcpConnectProber(port=port)
    if normalized == "ping":
        return SystemPingProber()
    raise ValueError(f"Unknown prober {kind!r}; expected 'tcp' or 'ping'")


__all__ = ["SystemPingProber", "TcpConnectProber", "build_prober"]
