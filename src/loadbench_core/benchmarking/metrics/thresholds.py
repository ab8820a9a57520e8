"""
Threshold selectors, expressions and evaluation.

Selector:   http_req_duration            or  http_req_duration{name:Create,method:POST}
Expression: p(95)<500 | avg<400 | max>1000 | count < 100 | rate>=0.99 | value==3

Evaluation is a pure function of the registry contents, so re-running it on an
unchanged registry yields identical results.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ...exceptions import ThresholdParseError
from .base import KIND_AGGREGATIONS, MetricKind
from .statistical import percentile, rate_of, trend_stat

logger = logging.getLogger(__name__)

_SELECTOR_RE = re.compile(r"^\s*([A-Za-z_][\w.\-]*)\s*(?:\{(.*)\})?\s*$")
_EXPRESSION_RE = re.compile(
    r"^\s*(avg|min|max|med|count|rate|value|p\(\s*(\d+(?:\.\d+)?)\s*\))"
    r"\s*(===|==|!=|<=|>=|<|>)\s*"
    r"(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class MetricSelector:
    source: str
    metric: str
    tag_filter: Tuple[Tuple[str, str], ...] = ()

    @property
    def filter_dict(self) -> Dict[str, str]:
        return dict(self.tag_filter)


@dataclass(frozen=True)
class ThresholdExpression:
    source: str
    aggregation: str
    operator: str
    value: float
    percentile: Optional[float] = None

    @property
    def method(self) -> str:
        """Aggregation family ('p' for any percentile)."""
        return "p" if self.percentile is not None else self.aggregation

    def compare(self, observed: float) -> bool:
        return _OPERATORS[self.operator](observed, self.value)


def parse_selector(source: str) -> MetricSelector:
    match = _SELECTOR_RE.match(source or "")
    if not match:
        raise ThresholdParseError(f"Invalid threshold metric selector: {source!r}")
    name, body = match.group(1), match.group(2)
    pairs: List[Tuple[str, str]] = []
    if body is not None:
        if not body.strip():
            raise ThresholdParseError(f"Empty tag filter in selector: {source!r}")
        for part in body.split(","):
            if ":" not in part:
                raise ThresholdParseError(
                    f"Tag filter '{part.strip()}' in {source!r} must look like key:value"
                )
            key, value = part.split(":", 1)
            key = key.strip()
            if not key:
                raise ThresholdParseError(f"Empty tag key in selector: {source!r}")
            pairs.append((key, value.strip()))
    return MetricSelector(source=source.strip(), metric=name, tag_filter=tuple(pairs))


def parse_expression(source: str) -> ThresholdExpression:
    match = _EXPRESSION_RE.match(source or "")
    if not match:
        raise ThresholdParseError(f"Invalid threshold expression: {source!r}")
    agg, pct, op, value = match.groups()
    p: Optional[float] = None
    if pct is not None:
        p = float(pct)
        if p > 100:
            raise ThresholdParseError(f"Percentile out of range in {source!r}")
        agg = f"p({pct})"
    return ThresholdExpression(
        source=source.strip(), aggregation=agg, operator=op, value=float(value), percentile=p
    )


@dataclass
class ThresholdSet:
    """A parsed selector plus its ordered expressions."""

    selector: MetricSelector
    expressions: List[ThresholdExpression] = field(default_factory=list)


def parse_thresholds(thresholds: Mapping[str, Sequence[str]]) -> List[ThresholdSet]:
    parsed: List[ThresholdSet] = []
    for selector_src, expressions in (thresholds or {}).items():
        if isinstance(expressions, str):
            expressions = [expressions]
        selector = parse_selector(selector_src)
        parsed.append(
            ThresholdSet(selector=selector, expressions=[parse_expression(e) for e in expressions])
        )
    return parsed


class ThresholdResult(BaseModel):
    """Outcome of one threshold expression against the final metric state."""

    metric: str = Field(..., description="Selector as declared, tag filter included")
    metric_name: str
    tag_filter: Dict[str, str] = Field(default_factory=dict)
    expression: str
    observed: Optional[float] = None
    passed: bool
    error: Optional[str] = None


def observe(
    kind: MetricKind, values: Sequence[float], expression: ThresholdExpression, elapsed_s: float
) -> Optional[float]:
    """Compute the aggregate an expression compares against; None when there is no data."""
    if kind == MetricKind.COUNTER:
        total = float(sum(values))
        if expression.aggregation == "count":
            return total
        return total / elapsed_s if elapsed_s > 0 else 0.0
    if not values:
        return None
    if kind == MetricKind.TREND:
        if expression.percentile is not None:
            return percentile(values, expression.percentile)
        return trend_stat(values, expression.aggregation)
    if kind == MetricKind.RATE:
        return rate_of(values)
    if kind == MetricKind.GAUGE:
        return values[-1]
    raise ValueError(f"Unsupported metric kind {kind!r}")


def evaluate_thresholds(
    registry, thresholds: Mapping[str, Sequence[str]], elapsed_s: float
) -> List[ThresholdResult]:
    """Evaluate every declared threshold in declaration order."""
    results: List[ThresholdResult] = []
    for tset in parse_thresholds(thresholds):
        sel = tset.selector
        metric = registry.get(sel.metric)
        for expr in tset.expressions:
            base = {
                "metric": sel.source,
                "metric_name": sel.metric,
                "tag_filter": sel.filter_dict,
                "expression": expr.source,
            }
            if metric is None:
                logger.warning(
                    f"Threshold '{expr.source}' references metric '{sel.metric}' "
                    "which never received samples"
                )
                results.append(ThresholdResult(**base, observed=None, passed=True))
                continue
            if expr.method not in KIND_AGGREGATIONS[metric.kind]:
                results.append(
                    ThresholdResult(
                        **base,
                        observed=None,
                        passed=False,
                        error=(
                            f"aggregation '{expr.aggregation}' is not valid for "
                            f"{metric.kind.value} metric '{sel.metric}'"
                        ),
                    )
                )
                continue
            values = registry.values(sel.metric, sel.filter_dict)
            observed = observe(metric.kind, values, expr, elapsed_s)
            passed = True if observed is None else expr.compare(observed)
            results.append(ThresholdResult(**base, observed=observed, passed=passed))
    return results


__all__ = [
    "MetricSelector",
    "ThresholdExpression",
    "ThresholdSet",
    "ThresholdResult",
    "parse_selector",
    "parse_expression",
    "parse_thresholds",
    "evaluate_thresholds",
    "observe",
]
