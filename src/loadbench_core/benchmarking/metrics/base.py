"""
Metric primitives shared by the registry, the check evaluator and thresholds.

- MetricKind: Counter | Trend | Rate | Gauge
- Sample: one recorded observation (value, tags, timestamp)
- Metric: named, kind-fixed, append-only sample sequence
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class MetricKind(str, Enum):
    COUNTER = "counter"
    TREND = "trend"
    RATE = "rate"
    GAUGE = "gauge"


# Aggregations a threshold may use, per metric kind.
KIND_AGGREGATIONS: Dict[MetricKind, Tuple[str, ...]] = {
    MetricKind.COUNTER: ("count", "rate"),
    MetricKind.TREND: ("avg", "min", "max", "med", "p"),
    MetricKind.RATE: ("rate",),
    MetricKind.GAUGE: ("value",),
}


@dataclass(frozen=True)
class Sample:
    """A single metric observation.

    Tags are stored as a sorted tuple of pairs so samples stay hashable and
    cannot be mutated after they were appended.
    """

    metric: str
    kind: MetricKind
    value: float
    tags: Tuple[Tuple[str, str], ...] = ()
    timestamp: float = field(default_factory=time.time)

    @property
    def tag_dict(self) -> Dict[str, str]:
        return dict(self.tags)

    def matches(self, tag_filter: Mapping[str, str]) -> bool:
        if not tag_filter:
            return True
        own = self.tag_dict
        return all(own.get(k) == v for k, v in tag_filter.items())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "kind": self.kind.value,
            "value": self.value,
            "tags": self.tag_dict,
            "timestamp": self.timestamp,
        }


def freeze_tags(tags: Optional[Mapping[str, Any]]) -> Tuple[Tuple[str, str], ...]:
    if not tags:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in tags.items() if v is not None))


class Metric:
    """Named metric with an immutable kind and an append-only sample list.

    Writers must hold the owning registry's lock; readers are expected to run
    once every writer has stopped (threshold evaluation, summaries).
    """

    def __init__(self, name: str, kind: MetricKind, contains_time: bool = False):
        self.name = name
        self.kind = kind
        self.contains_time = contains_time
        self._samples: List[Sample] = []

    def _append(self, sample: Sample) -> None:
        self._samples.append(sample)

    @property
    def samples(self) -> List[Sample]:
        return list(self._samples)

    def values(self, tag_filter: Optional[Mapping[str, str]] = None) -> List[float]:
        return [s.value for s in self._samples if s.matches(tag_filter or {})]

    def __len__(self) -> int:
        return len(self._samples)

    def __repr__(self) -> str:
        return f"Metric(name={self.name!r}, kind={self.kind.value}, samples={len(self._samples)})"
