"""
Check evaluator.

A check is a named boolean assertion against a subject (usually a Response).
Each predicate is evaluated on its own; an exception while evaluating one is a
failed check, never an abort. Every check emits exactly one `checks_total`
increment and one `checks_rate` sample carrying the same tag-set.

Predicates may be:
- one-argument callables, called with the subject
- zero-argument callables (closures over the subject)
- plain values, taken for their truthiness
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from .metrics.registry import MetricRegistry

logger = logging.getLogger(__name__)

Predicate = Union[Callable[..., Any], Any]


@dataclass(frozen=True)
class Check:
    """One evaluated assertion."""

    name: str
    passed: bool
    tags: Dict[str, str] = field(default_factory=dict)
    iteration_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class CheckSummary(BaseModel):
    name: str
    group: str = ""
    passes: int = 0
    fails: int = 0

    @property
    def rate(self) -> float:
        total = self.passes + self.fails
        return self.passes / total if total else 0.0


def _takes_argument(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        # Builtins without introspectable signatures: assume they take the subject.
        return True
    for p in params:
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL):
            return True
    return False


def evaluate_predicate(predicate: Predicate, subject: Any) -> bool:
    """Evaluate one predicate; raises whatever the predicate raises."""
    if not callable(predicate):
        return bool(predicate)
    result = predicate(subject) if _takes_argument(predicate) else predicate()
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise TypeError("check predicates must be synchronous")
    return bool(result)


class CheckEvaluator:
    """Evaluates named predicates and records them into the metric registry."""

    def __init__(self, registry: MetricRegistry):
        self.registry = registry
        self._lock = threading.Lock()
        # (group path, check name) -> [passes, fails]; insertion order kept for reports
        self._ledger: Dict[Tuple[str, str], List[int]] = {}

    def evaluate_checks(
        self,
        subject: Any,
        predicates: Mapping[str, Predicate],
        tags: Optional[Mapping[str, str]] = None,
        iteration_id: Optional[str] = None,
    ) -> List[Check]:
        base_tags = dict(tags or {})
        checks: List[Check] = []
        for name, predicate in predicates.items():
            error: Optional[str] = None
            try:
                passed = evaluate_predicate(predicate, subject)
            except Exception as e:
                passed = False
                error = f"{type(e).__name__}: {e}"
                logger.debug(f"Check '{name}' raised while evaluating: {error}")
            check_tags = {**base_tags, "check": str(name)}
            checks.append(
                Check(
                    name=str(name),
                    passed=passed,
                    tags=check_tags,
                    iteration_id=iteration_id,
                    error=error,
                )
            )
            self._record(checks[-1])
        return checks

    def evaluate(
        self,
        subject: Any,
        predicates: Mapping[str, Predicate],
        tags: Optional[Mapping[str, str]] = None,
        iteration_id: Optional[str] = None,
    ) -> bool:
        """Logical AND of all predicates (True for an empty mapping)."""
        return all(c.passed for c in self.evaluate_checks(subject, predicates, tags, iteration_id))

    def _record(self, check: Check) -> None:
        self.registry.add("checks_total", 1, check.tags)
        self.registry.add("checks_rate", 1 if check.passed else 0, check.tags)
        key = (check.tags.get("group", ""), check.name)
        with self._lock:
            counts = self._ledger.setdefault(key, [0, 0])
            counts[0 if check.passed else 1] += 1

    def summaries(self) -> List[CheckSummary]:
        with self._lock:
            return [
                CheckSummary(name=name, group=group, passes=counts[0], fails=counts[1])
                for (group, name), counts in self._ledger.items()
            ]
