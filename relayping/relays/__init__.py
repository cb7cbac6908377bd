"""Relay directory access: HTTP fetch, on-disk cache and filtering."""

from relayping.relays.directory import (
    RelayCacheError,
    RelayDirectoryClient,
    filter_relays,
    load_relay_cache,
    load_relays,
    parse_relays,
    save_relay_cache,
)

__all__ = [
    "RelayCacheError",
    "RelayDirectoryClient",
    "filter_relays",
    "load_relay_cache",
    "load_relays",
    "parse_relays",
    "save_relay_cache",
]
