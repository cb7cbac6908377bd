"""Latency measured as the time to complete a TCP handshake."""

import asyncio
import errno
import logging
import socket
import time

from relayping.engine.errors import (
    AddressResolutionFailure,
    NetworkUnreachable,
    ProbeTimeout,
    TransportError,
)
from relayping.engine.prober import Prober

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 443

_UNREACHABLE_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ENETDOWN, errno.EHOSTDOWN}


class TcpConnectProber(Prober):
    """Time ``asyncio.open_connection`` to ``address:port``.

    Works without raw-socket privileges. A refused connection still counts as a
    measurement because the relay answered with a reset.
    """

    def __init__(self, port: int = DEFAULT_PORT) -> None:
        if not 0 < port < 65536:
            raise ValueError(f"invalid TCP port {port}")
        self.port = port

    async def probe(self, address: str, timeout: float) -> float:
        started = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(address, self.port),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"no handshake within {timeout:.3f}s", address=address) from exc
        except ConnectionRefusedError:
            return _elapsed_ms(started)
        except socket.gaierror as exc:
            raise AddressResolutionFailure(str(exc), address=address) from exc
        except OSError as exc:
            if exc.errno in _UNREACHABLE_ERRNOS:
                raise NetworkUnreachable(str(exc), address=address) from exc
            raise TransportError(str(exc), address=address) from exc

        latency = _elapsed_ms(started)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            LOGGER.debug("Ignoring error while closing probe socket to %s: %s", address, exc)
        return latency


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


__all__ = ["DEFAULT_PORT", "TcpConnectProber"]
