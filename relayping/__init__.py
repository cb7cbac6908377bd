"""Concurrent latency prober for VPN relay fleets."""

__version__ = "1.0.0"
