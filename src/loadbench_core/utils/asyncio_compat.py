from __future__ import annotations

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, Dict, List, TypeVar

T = TypeVar("T")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    """
    Ensure and return an event loop for the current thread.

    Behavior:
    - If a running loop exists (async context), return it.
    - Otherwise create a new loop and set it as the current loop.
    """
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop


def ensure_task(coro: Coroutine[Any, Any, T], name: str | None = None) -> asyncio.Task[T]:
    """Schedule a coroutine as a Task on a valid event loop."""
    return ensure_event_loop().create_task(coro, name=name)


async def maybe_await(x: Any) -> Any:
    """Await `x` if it is awaitable, otherwise return it unchanged."""
    if asyncio.iscoroutine(x) or asyncio.isfuture(x) or hasattr(x, "__await__"):
        return await x
    return x


def run_coroutine_sync(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run `coro` to completion from synchronous code.

    - If no event loop is running in the current thread, use asyncio.run.
    - If one is already running (e.g. inside async tests), execute the coroutine
      in a dedicated background thread with its own loop and block until done.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    result_holder: Dict[str, Any] = {}
    error_holder: List[BaseException] = []

    def _target():
        try:
            result_holder["value"] = asyncio.run(coro)
        except BaseException as e:
            error_holder.append(e)

    t = threading.Thread(target=_target, daemon=True)
    t.start()
    t.join()
    if error_holder:
        raise error_holder[0]
    return result_holder["value"]
