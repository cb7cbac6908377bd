"""Run reports for the terminal and for files on disk."""

from relayping.reports.console import ConsoleProgressBar, format_comparison, format_summary
from relayping.reports.files import render_csv, render_html, render_json, save_results

__all__ = [
    "ConsoleProgressBar",
    "format_comparison",
    "format_summary",
    "render_csv",
    "render_html",
    "render_json",
    "save_results",
]
