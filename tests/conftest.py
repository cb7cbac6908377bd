"""Shared pytest fixtures for the relayping tests.

Provides scripted probers, endpoint builders and an in-memory stand-in for the
psycopg pool so tests never touch the network or a database.
"""

import asyncio
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List, Optional, Sequence, Union

import pytest

from relayping.config import AppConfig
from relayping.engine import Endpoint, Prober

Step = Union[float, BaseException]


def make_endpoint(name: str, country: str = "se", city: str = "Stockholm", **kwargs) -> Endpoint:
    return Endpoint(
        hostname=name,
        country_code=country,
        country_name=kwargs.pop("country_name", country.upper()),
        city_code=kwargs.pop("city_code", city[:3].lower()),
        city_name=city,
        address=kwargs.pop("address", f"{name}.example"),
        **kwargs,
    )


class ScriptedProber(Prober):
    """Replays a per-address script of latencies and exceptions.

    Each call consumes the next step for the address; the last step repeats.
    Addresses without a script return ``default``. ``delay`` simulates the
    network round trip and lets tests observe concurrency.
    """

    def __init__(
        self,
        script: Optional[Dict[str, Sequence[Step]]] = None,
        default: Step = 10.0,
        delay: float = 0.0,
    ) -> None:
        self._script = {address: list(steps) for address, steps in (script or {}).items()}
        self._default = default
        self._delay = delay
        self.calls: Dict[str, int] = defaultdict(int)
        self.timeouts: List[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def probe(self, address: str, timeout: float) -> float:
        self.calls[address] += 1
        self.timeouts.append(timeout)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            steps = self._script.get(address)
            if steps:
                step = steps.pop(0) if len(steps) > 1 else steps[0]
            else:
                step = self._default
            if isinstance(step, BaseException):
                raise step
            return step
        finally:
            self.in_flight -= 1


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Application config fixture.

    Logs and reports go to the temporary directory and no database is
    configured, so history stays off unless a test supplies a client.
    """
    return AppConfig(
        log_directory=tmp_path / "logs",
        log_level="INFO",
        save_path=tmp_path,
        ping_timeout_ms=200,
        ping_retries=1,
        concurrent_pings=4,
        save_formats=("json",),
    )


@pytest.fixture
def endpoints() -> List[Endpoint]:
    return [
        make_endpoint("se-sto-001", "se", "Stockholm"),
        make_endpoint("de-fra-001", "de", "Frankfurt"),
        make_endpoint("us-nyc-001", "us", "New York"),
        make_endpoint("jp-tyo-001", "jp", "Tokyo"),
    ]


class FakeCursor:
    def __init__(self, rows: Optional[List[dict]] = None) -> None:
        self.executed = []
        self._rows = rows if rows is not None else [{"value": 1}]

    def execute(self, query, params=None):
        self.executed.append(("execute", query, params))

    def executemany(self, query, params_seq):
        self.executed.append(("executemany", query, list(params_seq)))

    def fetchall(self):
        return list(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn
        self.entered = False
        self.exited = False
        self.failed = False

    def __enter__(self):
        self.entered = True
        return self.conn

    def __exit__(self, exc_type, exc, tb):
        self.exited = True
        self.failed = exc_type is not None
        return False


class FakeConnection:
    def __init__(self):
        self.cursors: List[FakeCursor] = []
        self.transaction_calls: List[FakeTransaction] = []
        self.last_transaction: Optional[FakeTransaction] = None
        self.rows: Optional[List[dict]] = None

    def cursor(self, *_, **__):
        cursor = FakeCursor(self.rows)
        self.cursors.append(cursor)
        return cursor

    def transaction(self):
        txn = FakeTransaction(self)
        self.last_transaction = txn
        self.transaction_calls.append(txn)
        return txn

    def executed(self) -> List[tuple]:
        return [entry for cursor in self.cursors for entry in cursor.executed]


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.request_count = 0
        self.closed = False

    @contextmanager
    def connection(self):
        self.request_count += 1
        yield self.conn

    def close(self):
        self.closed = True


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_pool(fake_conn: FakeConnection) -> Generator[FakePool, None, None]:
    """In-memory fake connection pool wrapping ``fake_conn``."""
    yield FakePool(fake_conn)


@pytest.fixture
def fake_db(fake_pool, monkeypatch):
    """``DatabaseClient`` whose pool is the in-memory fake."""
    import relayping.db.client as db_client

    monkeypatch.setattr(db_client, "ConnectionPool", lambda **_: fake_pool)
    return db_client.DatabaseClient("postgresql://example")


@pytest.fixture
def endpoint_factory():
    """Builder for ``Endpoint`` values with sensible defaults."""
    return make_endpoint


@pytest.fixture
def prober_factory():
    """Builder for ``ScriptedProber`` instances."""
    return ScriptedProber
