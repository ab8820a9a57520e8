"""
Grouped-flow execution.

A group pushes its name onto the active tag scope for the duration of a block
and pops it on exit, whether the block completed or a FatalAbort (or any other
exception) unwound through it. Nested names compose into a path joined by
'::', e.g. "Create and modify crocs::Create crocs".
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

from ...utils.asyncio_compat import maybe_await
from .context import GROUP_SEPARATOR, TagScope, current_scope, current_vu_or_none, enter_scope, exit_scope

logger = logging.getLogger(__name__)


class GroupScope:
    """Context manager usable with both `with` and `async with`."""

    def __init__(self, name: str, tags: Optional[Mapping[str, Any]] = None):
        if not isinstance(name, str) or not name.strip():
            raise ValueError("group name must be a non-empty string")
        if GROUP_SEPARATOR in name:
            raise ValueError(f"group name {name!r} must not contain '{GROUP_SEPARATOR}'")
        self.name = name
        self.tags = dict(tags or {})
        self.scope: Optional[TagScope] = None
        self._token = None
        self._started = 0.0

    def __enter__(self) -> TagScope:
        self.scope = current_scope().push(self.name, self.tags)
        self._token = enter_scope(self.scope)
        self._started = time.perf_counter()
        return self.scope

    def __exit__(self, exc_type, exc, tb) -> bool:
        elapsed_ms = (time.perf_counter() - self._started) * 1000.0
        try:
            if exc_type is None:
                vu = current_vu_or_none()
                if vu is not None:
                    vu.registry.add("group_duration", elapsed_ms, self.scope.effective())
        finally:
            exit_scope(self._token)
            self._token = None
        # Never swallow: FatalAbort must keep unwinding to the iteration boundary.
        return False

    async def __aenter__(self) -> TagScope:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)


async def run_group(
    name: str,
    fn: Callable[..., Any],
    *args: Any,
    tags: Optional[Mapping[str, Any]] = None,
    **kwargs: Any,
) -> Any:
    """Call `fn` (sync or async) inside group `name` and return its result."""
    with GroupScope(name, tags):
        return await maybe_await(fn(*args, **kwargs))
