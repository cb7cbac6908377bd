#!/usr/bin/env python3
"""Command-line entrypoint for probing relay latency."""

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import List, Optional

from relayping.config import REPO_ROOT, SUPPORTED_FORMATS, AppConfig, load_config
from relayping.db import DatabaseClient
from relayping.jobs import JobOptions, run_probe_job
from relayping.jobs.runner import STATUS_EMPTY
from relayping.logging_utils import configure_logging, flush_logging, generate_run_id, perf_span
from relayping.probers import build_prober
from relayping.reports import ConsoleProgressBar, format_comparison, format_summary

LOGGER = logging.getLogger(__name__)


def _csv_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe VPN relays and rank them by latency.")
    parser.add_argument("-c", "--country", type=_csv_list, help="Comma-separated country codes (e.g. se,de).")
    parser.add_argument("-C", "--city", type=_csv_list, help="Comma-separated city name fragments.")
    parser.add_argument("-t", "--timeout", type=int, help="Per-attempt timeout in milliseconds.")
    parser.add_argument("-r", "--retries", type=int, help="Retries after a failed attempt.")
    parser.add_argument("-p", "--parallel", type=int, help="Number of simultaneous probes.")
    parser.add_argument(
        "--max-threads",
        type=int,
        help="Upper bound on simultaneous probes (0 = twice the CPU count).",
    )
    parser.add_argument("--prober", choices=["tcp", "ping"], help="Measurement method.")
    parser.add_argument("--port", type=int, help="TCP port used by the tcp prober.")
    parser.add_argument(
        "-f",
        "--format",
        type=_csv_list,
        help=f"Report formats, comma-separated ({', '.join(SUPPORTED_FORMATS)}).",
    )
    parser.add_argument("-o", "--output", type=Path, help="Directory for report files.")
    parser.add_argument("-n", "--top", type=int, help="Number of relays listed in the summary.")
    parser.add_argument(
        "--deadline",
        type=float,
        help="Stop the run after this many seconds and keep the partial results.",
    )
    parser.add_argument("--no-save", action="store_true", help="Do not write report files.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging and per-relay details.")
    parser.add_argument("-q", "--quiet", action="store_true", help="No console logging or progress bar.")
    return parser.parse_args(argv)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Return ``config`` with command-line values taking precedence."""
    overrides = {
        "country_filter": tuple(args.country) if args.country else None,
        "city_filter": tuple(args.city) if args.city else None,
        "ping_timeout_ms": args.timeout,
        "ping_retries": args.retries,
        "concurrent_pings": args.parallel,
        "max_threads": args.max_threads,
        "prober": args.prober,
        "probe_port": args.port,
        "save_formats": tuple(fmt.lower() for fmt in args.format) if args.format else None,
        "top_servers_count": args.top,
    }
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    changes = {key: value for key, value in overrides.items() if value is not None}
    for key in ("ping_timeout_ms", "concurrent_pings", "top_servers_count"):
        if key in changes and changes[key] < 1:
            raise ValueError(f"{key} must be >= 1")
    if changes.get("ping_retries", 0) < 0 or changes.get("max_threads", 0) < 0:
        raise ValueError("retries and max-threads must be non-negative")
    if not 1 <= changes.get("probe_port", 443) <= 65535:
        raise ValueError(f"port must be between 1 and 65535, got {changes['probe_port']}")
    if args.deadline is not None and args.deadline <= 0:
        raise ValueError(f"deadline must be positive, got {args.deadline}")
    unknown = [fmt for fmt in changes.get("save_formats", ()) if fmt not in SUPPORTED_FORMATS]
    if unknown:
        raise ValueError(f"Unsupported formats: {', '.join(unknown)}")
    return dataclasses.replace(config, **changes)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = apply_overrides(load_config(), args)
        prober = build_prober(config.prober, port=config.probe_port)
    except ValueError as exc:
        fallback = AppConfig(log_directory=REPO_ROOT / "logs", log_level="INFO")
        configure_logging(fallback, include_console=not args.quiet)
        LOGGER.error("Failed to load configuration: %s", exc)
        flush_logging()
        return 1

    run_id = generate_run_id()
    log_path = configure_logging(config, run_id=run_id, include_console=not args.quiet)
    LOGGER.debug("Logging to %s", log_path)

    db_client = DatabaseClient(config.database_url) if config.database_url else None
    options = JobOptions(
        output_dir=args.output,
        write_reports=not args.no_save,
        deadline_seconds=args.deadline,
        handle_interrupts=True,
    )
    progress = None if args.quiet else ConsoleProgressBar()

    try:
        with perf_span("job.total", tags={"app": config.app_name, "prober": config.prober}):
            summary = run_probe_job(
                config,
                prober,
                options,
                run_id=run_id,
                db_client=db_client,
                progress=progress,
            )
    finally:
        if db_client is not None:
            db_client.close()

    if summary.status == STATUS_EMPTY:
        LOGGER.error("No relays available to probe")
        return 1

    if not args.quiet:
        print(
            format_summary(
                summary.result,
                config.thresholds(),
                top=config.top_servers_count,
                verbose=args.verbose,
            )
        )
        for path in summary.report_paths:
            print(f"Saved {path}")
        if summary.comparison is not None:
            print(format_comparison(summary.comparison, verbose=args.verbose))
        if summary.stable_relays:
            print("Most stable relays:")
            for relay in summary.stable_relays:
                print(
                    f"  {relay.hostname}: mean {relay.mean_latency_ms:.1f}ms, "
                    f"stddev {relay.stddev_ms:.1f}ms, reachable {relay.reachability_rate:.0f}%"
                )
    return 0


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    raise SystemExit(main())
