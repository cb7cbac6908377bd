"""The prober capability consumed by probe tasks."""

import abc


class Prober(abc.ABC):
    """Performs exactly one latency measurement per call.

    Implementations return the round trip in milliseconds or raise a
    ``relayping.engine.errors.ProbeError`` subclass. They must not retry and
    must give up shortly after ``timeout`` seconds.
    """

    @abc.abstractmethod
    async def probe(self, address: str, timeout: float) -> float:
        raise NotImplementedError


__all__ = ["Prober"]
