"""
Aggregations over metric samples (dependency-free, deterministic).

Every function sorts its own copy of the input, so results never depend on
the order in which concurrent VUs appended samples.
"""

from __future__ import annotations

import math
import statistics
from typing import Dict, Iterable, List, Optional, Sequence

from .base import MetricKind

DEFAULT_TREND_STATS = ("avg", "min", "med", "max", "p(90)", "p(95)")


def percentile(data: Iterable[float], p: float) -> Optional[float]:
    """
    Linear-interpolation percentile over the closest ranks.

    Uses k = (n - 1) * p / 100 on the sorted values; returns None for empty data.
    """
    if p < 0 or p > 100:
        raise ValueError(f"percentile must be within [0, 100], got {p}")
    sorted_vals = sorted(float(x) for x in data)
    n = len(sorted_vals)
    if n == 0:
        return None
    if n == 1:
        return sorted_vals[0]
    k = (n - 1) * (p / 100.0)
    f = math.floor(k)
    c = min(f + 1, n - 1)
    if f == c:
        return sorted_vals[int(k)]
    d0 = sorted_vals[f] * (c - k)
    d1 = sorted_vals[c] * (k - f)
    return d0 + d1


def trend_stat(values: Sequence[float], stat: str) -> Optional[float]:
    """Evaluate one trend statistic ('avg', 'min', 'max', 'med', 'p(N)')."""
    if not values:
        return None
    if stat == "avg":
        return statistics.fmean(values)
    if stat == "min":
        return float(min(values))
    if stat == "max":
        return float(max(values))
    if stat == "med":
        return percentile(values, 50)
    if stat.startswith("p(") and stat.endswith(")"):
        return percentile(values, float(stat[2:-1]))
    raise ValueError(f"Unknown trend statistic '{stat}'")


def rate_of(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(1 for v in values if v != 0) / len(values)


def summarize(
    kind: MetricKind,
    values: List[float],
    elapsed_s: float,
    trend_stats: Sequence[str] = DEFAULT_TREND_STATS,
) -> Dict[str, Optional[float]]:
    """Return the summary block for a metric of the given kind."""
    if kind == MetricKind.TREND:
        return {stat: trend_stat(values, stat) for stat in trend_stats}
    if kind == MetricKind.COUNTER:
        total = float(sum(values))
        return {"count": total, "rate": (total / elapsed_s) if elapsed_s > 0 else 0.0}
    if kind == MetricKind.RATE:
        passes = float(sum(1 for v in values if v != 0))
        return {"rate": rate_of(values), "passes": passes, "fails": float(len(values)) - passes}
    if kind == MetricKind.GAUGE:
        if not values:
            return {"value": None, "min": None, "max": None}
        return {"value": values[-1], "min": float(min(values)), "max": float(max(values))}
    raise ValueError(f"Unsupported metric kind {kind!r}")
