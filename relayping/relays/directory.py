"""Relay directory: fetch the public relay list, cache it and filter it.

The API returns a JSON array of relay objects. Only the fields the prober and
reports need are kept; the raw payload is what gets cached so a later run can
fall back to it when the API is unreachable.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests

from relayping.config import AppConfig
from relayping.engine.models import Endpoint
from relayping.logging_utils import perf

LOGGER = logging.getLogger(__name__)

HEADERS = {"User-Agent": "relayping/1.0"}
CACHE_FILE_NAME = "servers.json"
ADDRESS_KEYS = ("ipv4_addr_in", "ipv4_address", "ip_address", "ip", "address")


class RelayCacheError(RuntimeError):
    """Raised when no usable relay cache exists."""


class RelayDirectoryClient:
    """Fetch the relay list over HTTP with a fixed retry budget."""

    def __init__(
        self,
        api_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        retries: int = 3,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        """Initialize the directory client.

        Args:
            api_url: URL returning the relay JSON array.
            session: Optional pre-configured Requests session.
            timeout: Per-request timeout in seconds.
            retries: Extra attempts after the first failure.
            retry_delay_seconds: Pause between attempts.
        """
        if retries < 0:
            raise ValueError("retries must be non-negative")
        self._api_url = api_url
        self._session = session or requests.Session()
        self._timeout = timeout
        self._retries = retries
        self._retry_delay_seconds = retry_delay_seconds

    @perf("relays.fetch", tags={"component": "relays"})
    def fetch(self) -> List[Dict[str, Any]]:
        """Return the raw relay payload, raising after the last failed attempt."""
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                LOGGER.info("Fetching relays from %s (attempt %s/%s)", self._api_url, attempt, attempts)
                response = self._session.get(self._api_url, headers=HEADERS, timeout=self._timeout)
                response.raise_for_status()
                payload = response.json()
                if not isinstance(payload, list):
                    raise ValueError("relay API did not return a JSON array")
                LOGGER.info("Fetched %s relays", len(payload))
                return payload
            except (requests.RequestException, ValueError) as exc:
                if attempt == attempts:
                    LOGGER.error("Failed to fetch relays after %s attempts: %s", attempts, exc)
                    raise
                LOGGER.warning(
                    "Relay fetch failed: %s; retrying in %.1fs (%s attempts left)",
                    exc,
                    self._retry_delay_seconds,
                    attempts - attempt,
                )
                time.sleep(self._retry_delay_seconds)
        raise AssertionError("unreachable")  # pragma: no cover

    def close(self) -> None:
        self._session.close()


def _relay_address(entry: Dict[str, Any]) -> Optional[str]:
    for key in ADDRESS_KEYS:
        value = entry.get(key)
        if value:
            return str(value)
    return None


def parse_relays(payload: Iterable[Any]) -> List[Endpoint]:
    """Convert raw relay dictionaries into ``Endpoint`` values.

    Entries that are not objects or lack a hostname are skipped.
    """
    endpoints: List[Endpoint] = []
    skipped = 0
    for entry in payload:
        if not isinstance(entry, dict) or not entry.get("hostname"):
            skipped += 1
            continue
        endpoints.append(
            Endpoint(
                hostname=str(entry["hostname"]),
                country_code=str(entry.get("country_code") or ""),
                country_name=str(entry.get("country_name") or ""),
                city_code=str(entry.get("city_code") or ""),
                city_name=str(entry.get("city_name") or ""),
                address=_relay_address(entry),
                provider=str(entry.get("provider") or ""),
                active=bool(entry.get("active", True)),
                owned=bool(entry.get("owned", False)),
            )
        )
    if skipped:
        LOGGER.warning("Skipped %s malformed relay entries", skipped)
    return endpoints


def filter_relays(
    endpoints: Sequence[Endpoint],
    countries: Sequence[str] = (),
    cities: Sequence[str] = (),
) -> List[Endpoint]:
    """Keep relays whose country code is listed and whose city name contains a listed city."""
    selected = list(endpoints)
    wanted_countries = {code.strip().upper() for code in countries if code.strip()}
    if wanted_countries:
        selected = [ep for ep in selected if ep.country_code.upper() in wanted_countries]
        LOGGER.info("Filtered to %s relays in countries: %s", len(selected), ",".join(sorted(wanted_countries)))

    wanted_cities = [city.strip().lower() for city in cities if city.strip()]
    if wanted_cities:
        selected = [
            ep for ep in selected if any(city in ep.city_name.lower() for city in wanted_cities)
        ]
        LOGGER.info("Filtered to %s relays in cities: %s", len(selected), ",".join(wanted_cities))
    return selected


def save_relay_cache(payload: List[Dict[str, Any]], cache_dir: Path) -> Path:
    cache_dir.mkdir(parents=True, exist_ok=True)
    path = cache_dir / CACHE_FILE_NAME
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    LOGGER.debug("Saved %s relays to %s", len(payload), path)
    return path


def load_relay_cache(cache_dir: Path) -> List[Dict[str, Any]]:
    path = cache_dir / CACHE_FILE_NAME
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise RelayCacheError(f"No cached relays available: {exc}") from exc
    if not isinstance(payload, list):
        raise RelayCacheError(f"Relay cache {path} does not hold a JSON array")
    LOGGER.info("Loaded %s relays from cache %s", len(payload), path)
    return payload


def load_relays(
    config: AppConfig,
    client: Optional[RelayDirectoryClient] = None,
    countries: Optional[Sequence[str]] = None,
    cities: Optional[Sequence[str]] = None,
) -> List[Endpoint]:
    """Fetch, cache and filter relays; fall back to the cache when the API fails.

    Returns an empty list when neither the API nor the cache is usable.
    """
    owns_client = client is None
    client = client or RelayDirectoryClient(config.api_url)
    try:
        payload = client.fetch()
    except (requests.RequestException, ValueError):
        try:
            payload = load_relay_cache(config.cache_directory)
        except RelayCacheError as cache_exc:
            LOGGER.error("Could not load relays from cache: %s", cache_exc)
            return []
    else:
        try:
            save_relay_cache(payload, config.cache_directory)
        except OSError as exc:
            LOGGER.error("Error saving relays to cache: %s", exc)
    finally:
        if owns_client:
            client.close()

    endpoints = parse_relays(payload)
    return filter_relays(
        endpoints,
        countries=config.country_filter if countries is None else countries,
        cities=config.city_filter if cities is None else cities,
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
