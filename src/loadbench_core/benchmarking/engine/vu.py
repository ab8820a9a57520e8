"""
VU iteration lifecycle.

A VirtualUser runs the workload's default function in a loop. Each pass is one
iteration; its outcome is one of:

- completed: the default function returned
- failed: it raised FatalAbort (fail()) or any other exception
- incomplete: the VU was force-cancelled mid-iteration at the drain deadline

Only the current iteration is affected by a failure; the VU then continues
with its next iteration unless it was told to stop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

from ...exceptions import FatalAbort
from ...utils.asyncio_compat import maybe_await
from ...workload import Workload
from .context import VUContext, activate, reset_scope

logger = logging.getLogger(__name__)


class IterationOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    INCOMPLETE = "incomplete"


class IterationBudget:
    """Shared iteration budget across all VUs (None means unbounded)."""

    def __init__(self, total: Optional[int] = None):
        self.total = total
        self._claimed = 0
        self._lock = threading.Lock()

    def claim(self) -> bool:
        if self.total is None:
            return True
        with self._lock:
            if self._claimed >= self.total:
                return False
            self._claimed += 1
            return True

    @property
    def claimed(self) -> int:
        return self._claimed

    @property
    def exhausted(self) -> bool:
        return self.total is not None and self._claimed >= self.total


class VirtualUser:
    def __init__(
        self,
        context: VUContext,
        workload: Workload,
        budget: Optional[IterationBudget] = None,
        on_iteration_end: Optional[Callable[["VirtualUser", IterationOutcome], None]] = None,
    ):
        self.context = context
        self.workload = workload
        self.budget = budget or IterationBudget()
        self.on_iteration_end = on_iteration_end
        self.stop_requested = False
        self.in_iteration = False
        self.task: Optional[asyncio.Task] = None
        self.iterations = 0
        self.failed = 0

    @property
    def vu_id(self) -> int:
        return self.context.vu_id

    def request_stop(self) -> None:
        """Let the current iteration finish, then exit the loop."""
        self.stop_requested = True

    async def run_loop(self) -> None:
        activate(self.context)
        logger.debug(f"VU {self.vu_id} started")
        try:
            while not self.stop_requested:
                if not self.budget.claim():
                    break
                outcome = await self.run_iteration()
                if self.on_iteration_end is not None:
                    self.on_iteration_end(self, outcome)
                # Yield so a tight synchronous workload cannot starve the scheduler.
                await asyncio.sleep(0)
        finally:
            logger.debug(f"VU {self.vu_id} exited after {self.iterations} iterations")

    async def run_iteration(self) -> IterationOutcome:
        ctx = self.context
        ctx.iteration = self.iterations
        reset_scope(ctx)
        base_tags = ctx.base_scope().effective()
        registry = ctx.registry

        self.in_iteration = True
        started = time.perf_counter()
        outcome = IterationOutcome.COMPLETED
        try:
            await self._invoke()
        except FatalAbort as e:
            outcome = IterationOutcome.FAILED
            logger.debug(f"VU {self.vu_id} iteration {ctx.iteration} aborted: {e.message}")
        except asyncio.CancelledError:
            registry.add("iterations_incomplete", 1, base_tags)
            logger.warning(f"VU {self.vu_id} iteration {ctx.iteration} interrupted at drain deadline")
            raise
        except Exception as e:
            outcome = IterationOutcome.FAILED
            logger.warning(
                f"VU {self.vu_id} iteration {ctx.iteration} raised {type(e).__name__}: {e}"
            )
        finally:
            self.in_iteration = False
            reset_scope(ctx)

        duration_ms = (time.perf_counter() - started) * 1000.0
        tags = {**base_tags, "result": outcome.value}
        registry.add("iterations_total", 1, tags)
        registry.add("iteration_duration", duration_ms, tags)
        if outcome is IterationOutcome.FAILED:
            registry.add("iterations_failed", 1, tags)
            self.failed += 1
        self.iterations += 1
        return outcome

    async def _invoke(self) -> Any:
        fn = self.workload.default
        if self.workload.has_setup:
            return await maybe_await(fn(self.context.shared))
        return await maybe_await(fn())

    def __repr__(self) -> str:
        state = "draining" if self.stop_requested else "active"
        return f"VirtualUser(id={self.vu_id}, iterations={self.iterations}, {state})"
