"""Metrics: registry, aggregations and thresholds."""

from .base import KIND_AGGREGATIONS, Metric, MetricKind, Sample
from .registry import BUILTIN_METRICS, MetricRegistry
from .statistical import percentile, summarize
from .thresholds import (
    ThresholdResult,
    evaluate_thresholds,
    parse_expression,
    parse_selector,
    parse_thresholds,
)

__all__ = [
    "KIND_AGGREGATIONS",
    "Metric",
    "MetricKind",
    "Sample",
    "BUILTIN_METRICS",
    "MetricRegistry",
    "percentile",
    "summarize",
    "ThresholdResult",
    "evaluate_thresholds",
    "parse_expression",
    "parse_selector",
    "parse_thresholds",
]
