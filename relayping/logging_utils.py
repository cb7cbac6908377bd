"""Centralized logging utilities for relay probing runs.

Every run writes to its own file under ``LOG_DIR`` (plus stdout unless the
caller is in quiet mode) and stamps each record with the run identifier.

Timing helpers share one structured line format so probe runs, relay fetches
and database work can be compared across log files:

- ``perf``: decorator for sync or async callables.
- ``perf_span``: context manager for arbitrary blocks.
"""

import functools
import inspect
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from relayping.config import AppConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [run=%(run_id)s] %(message)s"
PERF_LOG_FORMAT = "event=perf name=%s duration_ms=%.3f success=%s tags=%s"


class _RunContextFilter(logging.Filter):
    """Inject the current run identifier into every log record."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self._run_id
        return True


def _sanitize_run_id(run_id: str) -> str:
    return "".join(ch if ch.isalnum() or ch in ("-", "_") else "-" for ch in run_id)


def generate_run_id() -> str:
    """Return a default run identifier based on the current UTC timestamp."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def configure_logging(
    config: AppConfig,
    run_id: Optional[str] = None,
    include_console: bool = True,
    fmt: str = DEFAULT_LOG_FORMAT,
) -> Path:
    """Replace root handlers with a run-scoped file handler (and stdout).

    Returns the path of the log file for this run.
    """
    resolved_run_id = run_id or generate_run_id()

    config.log_directory.mkdir(parents=True, exist_ok=True)
    log_path = config.log_directory / f"{config.app_name}-{_sanitize_run_id(resolved_run_id)}.log"

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if include_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    for handler in handlers:
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RunContextFilter(resolved_run_id))
        root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    # urllib3 logs every connection at DEBUG; keep verbose runs readable.
    logging.getLogger("urllib3").setLevel(max(root_logger.level, logging.INFO))

    return log_path


def flush_logging() -> None:
    """Flush all root handlers, e.g. before exiting after a fatal error."""
    for handler in logging.getLogger().handlers:
        handler.flush()


def _format_tags(tags: Optional[Mapping[str, Any]]) -> str:
    if not tags:
        return "{}"
    return "{" + ", ".join(f"{key}={tags[key]!r}" for key in sorted(tags)) + "}"


def _log_perf(
    logger: logging.Logger,
    level: int,
    name: str,
    start_ns: int,
    success: bool,
    tags: Optional[Mapping[str, Any]],
) -> None:
    duration_ms = (time.monotonic_ns() - start_ns) / 1_000_000.0
    logger.log(level, PERF_LOG_FORMAT, name, duration_ms, str(success).lower(), _format_tags(tags))


def perf(
    name: Optional[str] = None,
    *,
    tags: Optional[Mapping[str, Any]] = None,
    level: int = logging.INFO,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator that logs execution time of a function.

    Args:
        name: Optional span name; defaults to ``<module>.<func>``.
        tags: Optional mapping of additional metadata to include in the log.
        level: Logging level to use (defaults to ``logging.INFO``).

    Returns:
        A decorator producing a wrapper of the same kind (coroutine function
        or plain function) that logs one ``event=perf`` line per call and
        re-raises any exception.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        logger = logging.getLogger(func.__module__)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start_ns = time.monotonic_ns()
                try:
                    result = await func(*args, **kwargs)
                except BaseException:
                    _log_perf(logger, level, span_name, start_ns, False, tags)
                    raise
                _log_perf(logger, level, span_name, start_ns, True, tags)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_ns = time.monotonic_ns()
            try:
                result = func(*args, **kwargs)
            except Exception:
                _log_perf(logger, level, span_name, start_ns, False, tags)
                raise
            _log_perf(logger, level, span_name, start_ns, True, tags)
            return result

        return sync_wrapper

    return decorator


class perf_span:
    """Context manager to time an arbitrary code block and log its duration.

    Example:
        with perf_span("relays.load", tags={"countries": "se,de"}):
            endpoints = load_relays(config)
    """

    def __init__(
        self,
        name: str,
        *,
        tags: Optional[Mapping[str, Any]] = None,
        level: int = logging.INFO,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._name = name
        self._tags = tags or {}
        self._level = level
        self._logger = logger or logging.getLogger(__name__)
        self._start_ns = 0

    def __enter__(self) -> "perf_span":
        self._start_ns = time.monotonic_ns()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _log_perf(self._logger, self._level, self._name, self._start_ns, exc_type is None, self._tags)
        return False


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "configure_logging",
    "flush_logging",
    "generate_run_id",
    "perf",
    "perf_span",
]
