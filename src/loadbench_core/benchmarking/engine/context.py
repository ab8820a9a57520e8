"""
Per-VU execution context and scoped tag-sets.

Both live in context variables: every VU runs in its own asyncio Task, which
owns a copy of the context, so group pushes in one VU are never visible to
another. Tag scopes are immutable; entering a group sets a new scope and
leaving it resets the variable to the previous one.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from ..checks import CheckEvaluator
    from ..metrics.registry import MetricRegistry
    from .http import HttpClient

GROUP_SEPARATOR = "::"


@dataclass(frozen=True)
class TagScope:
    """Tags in effect at one point of the run -> group -> request descent."""

    group_path: Tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def group(self) -> str:
        return GROUP_SEPARATOR.join(self.group_path)

    def push(self, name: str, tags: Optional[Mapping[str, Any]] = None) -> "TagScope":
        merged = dict(self.tags)
        if tags:
            merged.update({str(k): str(v) for k, v in tags.items()})
        return TagScope(group_path=self.group_path + (name,), tags=MappingProxyType(merged))

    def effective(self, extra: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
        """Shallow merge; later layers win (scope tags < group < `extra`)."""
        out = dict(self.tags)
        if self.group_path:
            out["group"] = self.group
        if extra:
            out.update({str(k): str(v) for k, v in extra.items() if v is not None})
        return out


@dataclass
class VUContext:
    """
    Execution context of one virtual user (or of the setup/teardown phase).

    `shared` is the frozen setup result; it is handed to workload functions and
    must never be mutated.
    """

    vu_id: int
    registry: "MetricRegistry"
    http: "HttpClient"
    checks: "CheckEvaluator"
    base_tags: Mapping[str, str] = field(default_factory=dict)
    shared: Any = None
    phase: str = "default"
    iteration: int = 0

    @property
    def iteration_id(self) -> str:
        return f"{self.vu_id}:{self.iteration}"

    def base_scope(self) -> TagScope:
        return TagScope(tags=MappingProxyType(dict(self.base_tags)))


_current_vu: contextvars.ContextVar[Optional[VUContext]] = contextvars.ContextVar(
    "loadbench_current_vu", default=None
)
_tag_scope: contextvars.ContextVar[TagScope] = contextvars.ContextVar(
    "loadbench_tag_scope", default=TagScope()
)


def current_vu() -> VUContext:
    vu = _current_vu.get()
    if vu is None:
        raise RuntimeError("No active virtual user: script helpers only work inside a running workload")
    return vu


def current_vu_or_none() -> Optional[VUContext]:
    return _current_vu.get()


def current_scope() -> TagScope:
    return _tag_scope.get()


def activate(vu: VUContext) -> None:
    """Bind `vu` to the running task's context and start from its base scope."""
    _current_vu.set(vu)
    _tag_scope.set(vu.base_scope())


def reset_scope(vu: VUContext) -> None:
    """Drop any group scopes; used at every iteration boundary."""
    _tag_scope.set(vu.base_scope())


def enter_scope(scope: TagScope) -> contextvars.Token:
    return _tag_scope.set(scope)


def exit_scope(token: contextvars.Token) -> None:
    _tag_scope.reset(token)
