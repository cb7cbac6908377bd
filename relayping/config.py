"""Configuration utilities for relay probing runs.

This module reads environment variables (optionally from an `.env` file) and
produces an application configuration object consumed across the project.

See `.env.example` for supported keys. The probing knobs (`PING_TIMEOUT`,
`PING_RETRIES`, `CONCURRENT_PINGS`, `MAX_THREADS`, ...) all have defaults;
`DATABASE_URL` (or `HOST`/`USER`/`PASSWORD`/`DB`/`PORT`) is optional and only
enables run history when present.

Usage example:

    from relayping.config import load_config

    config = load_config()
    policy = config.retry_policy()
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, MutableMapping, Optional, Tuple
from urllib.parse import quote_plus

from relayping.engine.models import LatencyThresholds, RetryPolicy

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

DEFAULT_API_URL = "https://api.mullvad.net/www/relays/wireguard/"
SUPPORTED_FORMATS = ("json", "csv", "html")
SUPPORTED_PROBERS = ("tcp", "ping")


def _load_env_file(path: Path) -> Dict[str, str]:
    """Parse a dotenv-style file into a dictionary."""
    if not path.exists():
        return {}

    data: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip("\"'")
    return data


def _build_database_url_from_components(
    values: Mapping[str, str], dotenv_values: Mapping[str, str]
) -> Optional[str]:
    """Construct a PostgreSQL DSN from discrete HOST/USER/PASSWORD/DB keys."""

    host = values.get("DATABASE_HOST") or dotenv_values.get("HOST")
    user = values.get("DATABASE_USER") or dotenv_values.get("USER")
    password = values.get("DATABASE_PASSWORD") or dotenv_values.get("PASSWORD")
    database = values.get("DATABASE_NAME") or dotenv_values.get("DB")
    port = (
        values.get("DATABASE_PORT")
        or dotenv_values.get("DB_PORT")
        or dotenv_values.get("PORT")
        or "5432"
    )

    if not all([host, user, password, database]):
        return None

    safe_user = quote_plus(user)
    safe_password = quote_plus(password)

    return f"postgresql://{safe_user}:{safe_password}@{host.strip()}:{port}/{database.strip()}"


def _int_setting(
    values: Mapping[str, str],
    key: str,
    default: int,
    minimum: int = 0,
    maximum: Optional[int] = None,
) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {parsed}")
    if maximum is not None and parsed > maximum:
        raise ValueError(f"{key} must be <= {maximum}, got {parsed}")
    return parsed


def _list_setting(values: Mapping[str, str], key: str, default: str = "") -> Tuple[str, ...]:
    raw = values.get(key, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _resolve_path(raw: Optional[str], default: Path) -> Path:
    if not raw:
        return default
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = REPO_ROOT / path
    return path


@dataclass(frozen=True)
class AppConfig:
    """Application-level configuration values."""

    log_directory: Path
    log_level: str
    app_name: str = "relayping"
    database_url: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    ping_timeout_ms: int = 1500
    ping_retries: int = 1
    concurrent_pings: int = 30
    max_threads: int = 0
    prober: str = "tcp"
    probe_port: int = 443
    top_servers_count: int = 20
    save_path: Path = REPO_ROOT
    save_formats: Tuple[str, ...] = ("json", "html")
    country_filter: Tuple[str, ...] = ()
    city_filter: Tuple[str, ...] = ()
    ping_threshold_good: int = 50
    ping_threshold_medium: int = 100
    max_history: int = 100

    @property
    def cache_directory(self) -> Path:
        return self.save_path / ".cache"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_milliseconds(self.ping_timeout_ms, self.ping_retries)

    def thresholds(self) -> LatencyThresholds:
        return LatencyThresholds(
            good=float(self.ping_threshold_good),
            medium=float(self.ping_threshold_medium),
        )


def _merge_envs(dotenv_values: Mapping[str, str], env: MutableMapping[str, str]) -> Dict[str, str]:
    """Merge dotenv values with the current environment, preferring os.environ."""
    merged = dict(dotenv_values)
    merged.update(env)  # os.environ wins
    return merged


def load_config(env_file: Optional[Path] = None) -> AppConfig:
    """Load configuration values using environment defaults."""
    target_file = env_file or DEFAULT_ENV_FILE
    dotenv_values = _load_env_file(target_file)
    merged = _merge_envs(dotenv_values, os.environ)

    database_url = merged.get("DATABASE_URL") or _build_database_url_from_components(
        merged, dotenv_values
    )

    save_formats = tuple(fmt.lower() for fmt in _list_setting(merged, "SAVE_FORMATS", "json,html"))
    unknown = [fmt for fmt in save_formats if fmt not in SUPPORTED_FORMATS]
    if unknown:
        raise ValueError(f"Unsupported SAVE_FORMATS entries: {', '.join(unknown)}")

    prober = merged.get("PROBER", "tcp").strip().lower()
    if prober not in SUPPORTED_PROBERS:
        raise ValueError(f"PROBER must be one of {SUPPORTED_PROBERS}, got {prober!r}")

    good = _int_setting(merged, "PING_THRESHOLD_GOOD", 50, minimum=1)
    medium = _int_setting(merged, "PING_THRESHOLD_MEDIUM", 100, minimum=1)
    if medium < good:
        raise ValueError("PING_THRESHOLD_MEDIUM must not be lower than PING_THRESHOLD_GOOD")

    return AppConfig(
        log_directory=_resolve_path(merged.get("LOG_DIR"), REPO_ROOT / "logs"),
        log_level=merged.get("LOG_LEVEL", "INFO").upper(),
        app_name=merged.get("APP_NAME", "relayping"),
        database_url=database_url or None,
        api_url=merged.get("API_URL") or DEFAULT_API_URL,
        ping_timeout_ms=_int_setting(merged, "PING_TIMEOUT", 1500, minimum=1),
        ping_retries=_int_setting(merged, "PING_RETRIES", 1),
        concurrent_pings=_int_setting(merged, "CONCURRENT_PINGS", 30, minimum=1),
        max_threads=_int_setting(merged, "MAX_THREADS", 0),
        prober=prober,
        probe_port=_int_setting(merged, "PROBE_PORT", 443, minimum=1, maximum=65535),
        top_servers_count=_int_setting(merged, "TOP_SERVERS_COUNT", 20, minimum=1),
        save_path=_resolve_path(merged.get("SAVE_PATH"), REPO_ROOT),
        save_formats=save_formats,
        country_filter=_list_setting(merged, "COUNTRY_FILTER"),
        city_filter=_list_setting(merged, "CITY_FILTER"),
        ping_threshold_good=good,
        ping_threshold_medium=medium,
        max_history=_int_setting(merged, "MAX_HISTORY_FILES", 100, minimum=1),
    )


__all__ = ["AppConfig", "load_config", "REPO_ROOT", "SUPPORTED_FORMATS"]
