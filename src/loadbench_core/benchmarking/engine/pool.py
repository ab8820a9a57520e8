"""
VU pool manager.

Reconciles the scheduler target against the running set. Scaling up starts
new VU tasks with fresh ids; scaling down marks the newest active VUs to stop
after their current iteration (never interrupting a request). Only
`stop_all` may cancel a VU, and only once the drain deadline has passed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, Dict, List, Optional

from ...utils.asyncio_compat import ensure_task
from ...workload import Workload
from ..metrics.registry import MetricRegistry
from .context import VUContext
from .vu import IterationBudget, IterationOutcome, VirtualUser

logger = logging.getLogger(__name__)

ContextFactory = Callable[[int], VUContext]


class VUPool:
    def __init__(
        self,
        workload: Workload,
        registry: MetricRegistry,
        context_factory: ContextFactory,
        budget: Optional[IterationBudget] = None,
    ):
        self.workload = workload
        self.registry = registry
        self.context_factory = context_factory
        self.budget = budget or IterationBudget()
        self._ids = itertools.count(1)
        self._vus: Dict[int, VirtualUser] = {}
        self.wakeup = asyncio.Event()
        self.vus_max = 0
        self.errors: List[str] = []

    # Introspection -----------------------------------------------------------
    @property
    def running(self) -> List[VirtualUser]:
        return list(self._vus.values())

    @property
    def active(self) -> List[VirtualUser]:
        """VUs that are not draining."""
        return [v for v in self._vus.values() if not v.stop_requested]

    @property
    def in_flight(self) -> int:
        """Iterations currently executing."""
        return sum(1 for v in self._vus.values() if v.in_iteration)

    def __len__(self) -> int:
        return len(self._vus)

    # Scaling -------------------------------------------------------------------
    def reconcile(self, target: int) -> int:
        """Bring the number of active VUs to `target`. Returns the signed change."""
        target = max(0, int(target))
        active = self.active
        delta = target - len(active)
        if delta > 0:
            for _ in range(delta):
                self._spawn()
            logger.debug(f"Scaled up by {delta} VUs (active={target})")
        elif delta < 0:
            # Newest VUs drain first.
            for vu in sorted(active, key=lambda v: v.vu_id, reverse=True)[:-delta]:
                vu.request_stop()
            logger.debug(f"Marked {-delta} VUs for graceful stop (active={target})")
        if delta:
            self._record_gauges()
        return delta

    def _spawn(self) -> VirtualUser:
        vu_id = next(self._ids)
        vu = VirtualUser(
            self.context_factory(vu_id),
            self.workload,
            budget=self.budget,
            on_iteration_end=self._on_iteration_end,
        )
        vu.task = ensure_task(self._run_vu(vu), name=f"vu-{vu_id}")
        self._vus[vu_id] = vu
        return vu

    async def _run_vu(self, vu: VirtualUser) -> None:
        try:
            await vu.run_loop()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # run_iteration converts workload errors; reaching here is an engine bug.
            msg = f"VU {vu.vu_id} loop crashed: {type(e).__name__}: {e}"
            logger.error(msg)
            self.errors.append(msg)
        finally:
            self._vus.pop(vu.vu_id, None)
            self._record_gauges()
            self.wakeup.set()

    def _on_iteration_end(self, vu: VirtualUser, outcome: IterationOutcome) -> None:
        self.wakeup.set()

    def _record_gauges(self) -> None:
        current = len(self._vus)
        self.vus_max = max(self.vus_max, current)
        self.registry.add("vus", current)
        self.registry.add("vus_max", self.vus_max)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every VU task has exited. Returns False on timeout."""
        tasks = [v.task for v in self._vus.values() if v.task is not None]
        if not tasks:
            return True
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def stop_all(self, graceful: float) -> int:
        """
        Mark every VU for stop and wait up to `graceful` seconds for them to
        drain. VUs still running after that are cancelled; their in-flight
        iteration is recorded as incomplete. Returns the number cancelled.
        """
        vus = self.running
        for vu in vus:
            vu.request_stop()
        tasks = [v.task for v in vus if v.task is not None]
        if not tasks:
            return 0

        done, pending = await asyncio.wait(tasks, timeout=graceful)
        if not pending:
            return 0

        logger.warning(f"{len(pending)} VUs still running after {graceful:.1f}s drain; cancelling")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)
