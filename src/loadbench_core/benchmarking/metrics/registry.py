"""
Thread-safe metric registry.

Concurrent VUs only ever append; the single lock guards registration and
appends so no sample is lost or interleaved. Aggregate queries are meant to run
after the writers stopped (summary and threshold evaluation), and take a
snapshot under the same lock so they are safe to call mid-run as well.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ...exceptions import MetricKindError
from .base import Metric, MetricKind, Sample, freeze_tags
from .statistical import DEFAULT_TREND_STATS, percentile, rate_of, summarize, trend_stat

logger = logging.getLogger(__name__)

SampleListener = Callable[[Sample], None]

# name -> (kind, contains_time)
BUILTIN_METRICS: Dict[str, tuple] = {
    "vus": (MetricKind.GAUGE, False),
    "vus_max": (MetricKind.GAUGE, False),
    "iterations_total": (MetricKind.COUNTER, False),
    "iteration_duration": (MetricKind.TREND, True),
    "iterations_failed": (MetricKind.COUNTER, False),
    "iterations_incomplete": (MetricKind.COUNTER, False),
    "checks_total": (MetricKind.COUNTER, False),
    "checks_rate": (MetricKind.RATE, False),
    "group_duration": (MetricKind.TREND, True),
    "http_reqs": (MetricKind.COUNTER, False),
    "http_req_duration": (MetricKind.TREND, True),
    "http_req_waiting": (MetricKind.TREND, True),
    "http_req_failed": (MetricKind.RATE, False),
    "data_received": (MetricKind.COUNTER, False),
    "data_sent": (MetricKind.COUNTER, False),
}


class MetricRegistry:
    """
    Named metrics with kinds fixed at first registration.

    API:
    - register(name, kind) -> Metric (idempotent for the same kind)
    - add(name, value, tags=None, kind=None, timestamp=None) -> Sample
    - get(name) / list_metrics() / snapshot()
    - count / average / percentile / rate / aggregate queries with tag filters
    - subscribe(listener) to stream samples
    """

    def __init__(self, include_builtins: bool = True) -> None:
        self._lock = threading.Lock()
        self._metrics: Dict[str, Metric] = {}
        self._listeners: List[SampleListener] = []
        if include_builtins:
            for name, (kind, contains_time) in BUILTIN_METRICS.items():
                self.register(name, kind, contains_time=contains_time)

    # Registration -------------------------------------------------------------
    def register(self, name: str, kind: MetricKind, contains_time: bool = False) -> Metric:
        if not isinstance(name, str) or not name:
            raise ValueError("Metric name must be a non-empty string")
        kind = MetricKind(kind)
        with self._lock:
            existing = self._metrics.get(name)
            if existing is not None:
                if existing.kind != kind:
                    raise MetricKindError(
                        f"Metric '{name}' is already registered as {existing.kind.value}, "
                        f"cannot re-register as {kind.value}"
                    )
                return existing
            metric = Metric(name, kind, contains_time=contains_time)
            self._metrics[name] = metric
            return metric

    def get(self, name: str) -> Optional[Metric]:
        return self._metrics.get(name)

    def kind_of(self, name: str) -> Optional[MetricKind]:
        metric = self._metrics.get(name)
        return metric.kind if metric is not None else None

    def list_metrics(self) -> List[str]:
        with self._lock:
            return list(self._metrics.keys())

    # Writes -------------------------------------------------------------------
    def add(
        self,
        name: str,
        value: float,
        tags: Optional[Mapping[str, Any]] = None,
        kind: Optional[MetricKind] = None,
        timestamp: Optional[float] = None,
    ) -> Sample:
        """Append one sample; registers the metric on first use when `kind` is given."""
        metric = self._metrics.get(name)
        if metric is None:
            if kind is None:
                raise KeyError(f"Unknown metric '{name}'. Register it or pass a kind.")
            metric = self.register(name, kind)
        elif kind is not None and MetricKind(kind) != metric.kind:
            raise MetricKindError(
                f"Metric '{name}' is a {metric.kind.value}, got a {MetricKind(kind).value} sample"
            )

        if metric.kind == MetricKind.RATE:
            numeric = 1.0 if value else 0.0
        else:
            numeric = float(value)
        if metric.kind == MetricKind.COUNTER and numeric < 0:
            raise ValueError(f"Counter '{name}' is monotonic; got negative increment {numeric}")

        sample = Sample(
            metric=name,
            kind=metric.kind,
            value=numeric,
            tags=freeze_tags(tags),
            timestamp=time.time() if timestamp is None else timestamp,
        )
        with self._lock:
            metric._append(sample)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(sample)
            except Exception as e:
                logger.error(f"Sample listener {listener!r} failed on '{name}': {e}")
        return sample

    def subscribe(self, listener: SampleListener) -> Callable[[], None]:
        """Register a sample listener; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # Reads --------------------------------------------------------------------
    def snapshot(self) -> Dict[str, List[Sample]]:
        with self._lock:
            return {name: list(m._samples) for name, m in self._metrics.items()}

    def values(self, name: str, tag_filter: Optional[Mapping[str, str]] = None) -> List[float]:
        metric = self._require(name)
        with self._lock:
            return metric.values(tag_filter)

    def count(self, name: str, tag_filter: Optional[Mapping[str, str]] = None) -> float:
        """Number of samples (Trend/Rate/Gauge) or the summed total (Counter)."""
        metric = self._require(name)
        vals = self.values(name, tag_filter)
        if metric.kind == MetricKind.COUNTER:
            return float(sum(vals))
        return float(len(vals))

    def average(self, name: str, tag_filter: Optional[Mapping[str, str]] = None) -> Optional[float]:
        return trend_stat(self.values(name, tag_filter), "avg")

    def percentile(
        self, name: str, p: float, tag_filter: Optional[Mapping[str, str]] = None
    ) -> Optional[float]:
        return percentile(self.values(name, tag_filter), p)

    def rate(self, name: str, tag_filter: Optional[Mapping[str, str]] = None) -> Optional[float]:
        return rate_of(self.values(name, tag_filter))

    def summary(
        self,
        name: str,
        elapsed_s: float,
        tag_filter: Optional[Mapping[str, str]] = None,
        trend_stats: Sequence[str] = DEFAULT_TREND_STATS,
    ) -> Dict[str, Optional[float]]:
        metric = self._require(name)
        return summarize(metric.kind, self.values(name, tag_filter), elapsed_s, trend_stats)

    def _require(self, name: str) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            available = ", ".join(sorted(self._metrics.keys()))
            raise KeyError(f"Unknown metric '{name}'. Available metrics: [{available}].")
        return metric

    def __contains__(self, name: object) -> bool:
        return name in self._metrics


__all__ = ["MetricRegistry", "BUILTIN_METRICS", "SampleListener"]
