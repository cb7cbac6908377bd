"""ICMP echo through the operating system's ``ping`` binary."""

import asyncio
import logging
import math
import platform
import re
from typing import List, Optional

from relayping.engine.errors import (
    AddressResolutionFailure,
    NetworkUnreachable,
    ProbeTimeout,
    TransportError,
)
from relayping.engine.prober import Prober

LOGGER = logging.getLogger(__name__)

# Time allowed for process start-up and teardown on top of the echo timeout.
SUBPROCESS_OVERHEAD_SECONDS = 0.5

_TIME_PATTERN = re.compile(r"time\s*[=<]\s*([\d.]+)\s*ms", re.IGNORECASE)
_RESOLUTION_MARKERS = (
    "unknown host",
    "cannot resolve",
    "could not find host",
    "name or service not known",
    "temporary failure in name resolution",
    "no address associated",
)


def build_ping_command(
    address: str,
    timeout: float,
    system: Optional[str] = None,
    executable: str = "ping",
) -> List[str]:
    """Return a single-echo ``ping`` command line for the given platform.

    Windows and macOS take the wait in milliseconds; Linux ``-W`` takes whole
    seconds.
    """
    system = (system or platform.system()).lower()
    if system == "windows":
        return [executable, "-n", "1", "-w", str(max(1, math.ceil(timeout * 1000))), address]
    if system == "darwin":
        return [executable, "-c", "1", "-W", str(max(1, math.ceil(timeout * 1000))), address]
    return [executable, "-c", "1", "-W", str(max(1, math.ceil(timeout))), address]


def parse_ping_latency(output: str) -> Optional[float]:
    """Extract the round trip from ``time=12.3 ms`` style output."""
    match = _TIME_PATTERN.search(output)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


class SystemPingProber(Prober):
    """Run one ``ping`` per probe and parse the reported round trip."""

    def __init__(self, executable: str = "ping", system: Optional[str] = None) -> None:
        self.executable = executable
        self.system = system

    async def probe(self, address: str, timeout: float) -> float:
        command = build_ping_command(address, timeout, self.system, self.executable)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TransportError(f"cannot run {self.executable}: {exc}", address=address) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout + SUBPROCESS_OVERHEAD_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"ping to {address} overran its deadline", address=address) from exc
        finally:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    LOGGER.debug("ping for %s exited before it could be killed", address)
                await process.wait()

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode == 0:
            latency = parse_ping_latency(output)
            if latency is None:
                raise TransportError("unrecognised ping output", address=address)
            # Linux -W only takes whole seconds, so late replies can still exit 0.
            if latency > timeout * 1000.0:
                raise ProbeTimeout(
                    f"reply from {address} after {latency:.1f}ms exceeds {timeout * 1000.0:.0f}ms",
                    address=address,
                )
            return latency

        details = (output + stderr.decode("utf-8", errors="replace")).lower()
        LOGGER.debug("ping %s exited with %s: %s", address, process.returncode, details.strip())
        if any(marker in details for marker in _RESOLUTION_MARKERS):
            raise AddressResolutionFailure(details.strip(), address=address)
        if "unreachable" in details:
            raise NetworkUnreachable(details.strip(), address=address)
        raise ProbeTimeout(f"no echo reply from {address}", address=address)


__all__ = ["SystemPingProber", "build_ping_command", "parse_ping_latency"]
