from relayping.history.trends import (
    RelayChange,
    RelayTrend,
    RunComparison,
    Trend,
    TrendReport,
    analyze_trends,
    classify_trend,
    compare_with_previous,
    most_stable,
)

__all__ = [
    "RelayChange",
    "RelayTrend",
    "RunComparison",
    "Trend",
    "TrendReport",
    "analyze_trends",
    "classify_trend",
    "compare_with_previous",
    "most_stable",
]
