"""
Workload-facing API.

Workload modules import from here the way k6 scripts import from `k6`,
`k6/http` and `k6/metrics`:

    from loadbench_core.script import check, fail, group, http, sleep, Trend

    options = {"vus": 10, "duration": "30s", "thresholds": {"http_req_duration": ["p(95)<500"]}}

    async def default():
        res = await http.get("https://example.test/")
        check(res, {"status is 200": lambda r: r.status == 200})

Every helper resolves the current VU from the task context; calling one
outside a running workload raises RuntimeError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, MutableMapping, Optional, Tuple

from .benchmarking.checks import Predicate
from .benchmarking.engine.context import current_scope, current_vu, current_vu_or_none
from .benchmarking.engine.groups import GroupScope
from .benchmarking.engine.http import HttpClient
from .benchmarking.metrics.base import MetricKind
from .exceptions import FatalAbort


def check(
    subject: Any, predicates: Mapping[str, Predicate], tags: Optional[Mapping[str, Any]] = None
) -> bool:
    """
    Evaluate named predicates against `subject`; returns True only if all pass.

    A failing check is recorded and never aborts the iteration; pair it with
    `fail()` for fail-fast flows.
    """
    vu = current_vu()
    effective = current_scope().effective(tags)
    return vu.checks.evaluate(subject, predicates, effective, iteration_id=vu.iteration_id)


def group(name: str, tags: Optional[Mapping[str, Any]] = None) -> GroupScope:
    """Named scope for `with` / `async with`; nested names compose with '::'."""
    return GroupScope(name, tags)


def fail(message: str = "iteration aborted") -> None:
    """Abort the rest of the current iteration."""
    raise FatalAbort(message)


async def sleep(seconds: float) -> None:
    await asyncio.sleep(max(0.0, float(seconds)))


class _HttpProxy:
    """Module-level `http` object bound to whichever VU is running."""

    def _client(self) -> HttpClient:
        return current_vu().http

    def __getattr__(self, item: str) -> Any:
        if item.startswith("_"):
            raise AttributeError(item)
        return getattr(self._client(), item)

    def __repr__(self) -> str:
        return "<loadbench http proxy>"


http = _HttpProxy()


class _VUProxy:
    """Read-only view of the running VU (k6's `__VU` / `__ITER`)."""

    @property
    def id(self) -> int:
        return current_vu().vu_id

    @property
    def iteration(self) -> int:
        return current_vu().iteration

    @property
    def phase(self) -> str:
        return current_vu().phase

    @property
    def tags(self) -> Mapping[str, str]:
        return current_scope().effective()


vu = _VUProxy()


class _CustomMetric:
    """
    Handle for a user-defined metric.

    Declared at import time (usually at module level); registered with the
    running engine's registry on first `add`. Adding to a name that already
    exists with another kind raises MetricKindError.
    """

    kind: MetricKind = MetricKind.COUNTER

    def __init__(self, name: str, is_time: bool = False):
        if not name or not isinstance(name, str):
            raise ValueError("metric name must be a non-empty string")
        self.name = name
        self.is_time = is_time

    def add(self, value: float, tags: Optional[Mapping[str, Any]] = None) -> None:
        ctx = current_vu()
        registry = ctx.registry
        if self.name not in registry:
            registry.register(self.name, self.kind, contains_time=self.is_time)
        registry.add(self.name, value, current_scope().effective(tags), kind=self.kind)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Counter(_CustomMetric):
    kind = MetricKind.COUNTER


class Gauge(_CustomMetric):
    kind = MetricKind.GAUGE


class Rate(_CustomMetric):
    kind = MetricKind.RATE


class Trend(_CustomMetric):
    kind = MetricKind.TREND


class _ConsoleAdapter(logging.LoggerAdapter):
    """Prefixes workload log lines with the VU id and iteration."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        ctx = current_vu_or_none()
        if ctx is None:
            return msg, kwargs
        if ctx.phase != "default":
            return f"[{ctx.phase}] {msg}", kwargs
        return f"[vu={ctx.vu_id} iter={ctx.iteration}] {msg}", kwargs


console = _ConsoleAdapter(logging.getLogger("loadbench_core.console"), {})


__all__ = [
    "check",
    "group",
    "fail",
    "sleep",
    "http",
    "vu",
    "Counter",
    "Gauge",
    "Rate",
    "Trend",
    "console",
]
