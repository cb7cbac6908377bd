"""JSON, CSV and HTML renderings of a probe run, and the file writer for them."""

import csv
import html
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from relayping.engine.models import LatencyThresholds, ProbeOutcome, RunResult, Statistics

LOGGER = logging.getLogger(__name__)

CSV_HEADER = [
    "Hostname",
    "Country",
    "City",
    "Ping (ms)",
    "Status",
    "Provider",
    "Active",
    "Owned",
    "Timestamp",
]


def outcome_to_dict(outcome: ProbeOutcome, thresholds: LatencyThresholds) -> Dict[str, Any]:
    endpoint = outcome.endpoint
    return {
        "hostname": endpoint.hostname,
        "country_code": endpoint.country_code,
        "country": endpoint.country_name,
        "city": endpoint.city_name,
        "ip": endpoint.address,
        "ping": outcome.latency_ms,
        "packet_loss": outcome.packet_loss,
        "attempts": outcome.attempts,
        "status": thresholds.classify(outcome.latency_ms).value,
        "failure_reason": outcome.failure_reason.value if outcome.failure_reason else None,
        "provider": endpoint.provider,
        "active": endpoint.active,
        "owned": endpoint.owned,
        "timestamp": outcome.measured_at.isoformat(),
    }


def statistics_to_dict(stats: Statistics) -> Dict[str, Any]:
    def _relay(outcome: Optional[ProbeOutcome]) -> Optional[Dict[str, Any]]:
        if outcome is None:
            return None
        return {"hostname": outcome.endpoint.hostname, "ping": outcome.latency_ms}

    return {
        "total": stats.total,
        "reachable": stats.reachable,
        "unreachable": stats.unreachable,
        "average_ping": stats.mean_latency_ms,
        "median_ping": stats.median_latency_ms,
        "min_ping": stats.min_latency_ms,
        "max_ping": stats.max_latency_ms,
        "good": stats.good,
        "medium": stats.medium,
        "bad": stats.bad,
        "best": _relay(stats.best),
        "worst": _relay(stats.worst),
        "duration_seconds": round(stats.duration_seconds, 3),
        "partial": stats.partial,
    }


def render_json(
    outcomes: Sequence[ProbeOutcome],
    stats: Statistics,
    thresholds: LatencyThresholds,
    generated_at: datetime,
) -> str:
    data = {
        "results": [outcome_to_dict(outcome, thresholds) for outcome in outcomes],
        "statistics": statistics_to_dict(stats),
        "timestamp": generated_at.isoformat(),
    }
    return json.dumps(data, indent=2)


def render_csv(outcomes: Sequence[ProbeOutcome], thresholds: LatencyThresholds) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for outcome in outcomes:
        endpoint = outcome.endpoint
        writer.writerow(
            [
                endpoint.hostname,
                endpoint.country_name,
                endpoint.city_name,
                outcome.latency_ms if outcome.reachable else "Unreachable",
                thresholds.classify(outcome.latency_ms).value,
                endpoint.provider,
                "Yes" if endpoint.active else "No",
                "Yes" if endpoint.owned else "No",
                outcome.measured_at.isoformat(),
            ]
        )
    return buffer.getvalue()


def _fmt_ms(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f} ms"


def render_html(
    outcomes: Sequence[ProbeOutcome],
    stats: Statistics,
    thresholds: LatencyThresholds,
    generated_at: datetime,
) -> str:
    best = stats.best
    best_line = (
        f"{html.escape(best.endpoint.hostname)} ({html.escape(best.endpoint.city_name)}, "
        f"{html.escape(best.endpoint.country_name)}) - {_fmt_ms(best.latency_ms)}"
        if best
        else "No reachable relays"
    )
    rows = []
    for outcome in outcomes:
        endpoint = outcome.endpoint
        status = thresholds.classify(outcome.latency_ms).value
        rows.append(
            "<tr class=\"{status}\"><td>{host}</td><td>{country}</td><td>{city}</td>"
            "<td>{ping}</td><td>{status}</td><td>{provider}</td><td>{active}</td>"
            "<td>{owned}</td></tr>".format(
                status=status,
                host=html.escape(endpoint.hostname),
                country=html.escape(endpoint.country_name),
                city=html.escape(endpoint.city_name),
                ping=_fmt_ms(outcome.latency_ms) if outcome.reachable else "Unreachable",
                provider=html.escape(endpoint.provider),
                active="Yes" if endpoint.active else "No",
                owned="Yes" if endpoint.owned else "No",
            )
        )

    stat_items = [
        ("Total relays", stats.total),
        ("Reachable", stats.reachable),
        ("Unreachable", stats.unreachable),
        ("Average ping", _fmt_ms(stats.mean_latency_ms)),
        ("Good", stats.good),
        ("Medium", stats.medium),
        ("Bad", stats.bad),
    ]
    stat_html = "\n".join(
        f"<div class=\"stat\"><div>{label}</div><div class=\"stat-value\">{value}</div></div>"
        for label, value in stat_items
    )
    partial_note = "<p class=\"partial\">Run was interrupted; results are partial.</p>" if stats.partial else ""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Relay latency report</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
.stats {{ display: flex; flex-wrap: wrap; gap: 1em; }}
.stat {{ border: 1px solid #ddd; padding: .5em 1em; }}
.stat-value {{ font-size: 1.4em; font-weight: bold; }}
table {{ border-collapse: collapse; margin-top: 2em; width: 100%; }}
th, td {{ border: 1px solid #ddd; padding: .3em .6em; text-align: left; }}
tr.good td {{ color: #2e7d32; }}
tr.medium td {{ color: #f9a825; }}
tr.bad td {{ color: #c62828; }}
tr.unreachable td {{ color: #9e9e9e; }}
</style>
</head>
<body>
<h1>Relay latency report</h1>
{partial_note}
<div class="stats">
{stat_html}
</div>
<p>Best relay: {best_line}</p>
<table>
<thead><tr><th>Hostname</th><th>Country</th><th>City</th><th>Ping</th><th>Status</th><th>Provider</th><th>Active</th><th>Owned</th></tr></thead>
<tbody>
{chr(10).join(rows)}
</tbody>
</table>
<p>Generated on {generated_at.isoformat()}</p>
</body>
</html>
"""


def save_results(
    result: RunResult,
    output_dir: Path,
    formats: Sequence[str],
    thresholds: Optional[LatencyThresholds] = None,
    top: Optional[int] = None,
    generated_at: Optional[datetime] = None,
) -> List[Path]:
    """Write one ``ping_results_<timestamp>.<ext>`` file per requested format.

    ``top`` keeps only the first N outcomes (the fastest, since outcomes are
    already sorted). Unknown formats are logged and skipped.
    """
    thresholds = thresholds or LatencyThresholds()
    generated_at = generated_at or datetime.now(timezone.utc)
    outcomes = result.outcomes[:top] if top and top > 0 else result.outcomes
    base_name = f"ping_results_{generated_at.strftime('%Y-%m-%dT%H-%M-%S')}"

    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for fmt in formats:
        fmt = fmt.strip().lower()
        if fmt == "json":
            content = render_json(outcomes, result.statistics, thresholds, generated_at)
        elif fmt == "csv":
            content = render_csv(outcomes, thresholds)
        elif fmt == "html":
            content = render_html(outcomes, result.statistics, thresholds, generated_at)
        else:
            LOGGER.warning("Unsupported output format %r; skipping", fmt)
            continue
        path = output_dir / f"{base_name}.{fmt}"
        path.write_text(content, encoding="utf-8")
        LOGGER.info("Results saved to %s", path)
        written.append(path)
    return written


__all__ = [
    "CSV_HEADER",
    "outcome_to_dict",
    "render_csv",
    "render_html",
    "render_json",
    "save_results",
    "statistics_to_dict",
]
