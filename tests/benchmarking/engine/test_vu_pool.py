"""VU iteration lifecycle and pool reconciliation."""

import asyncio

import pytest

from loadbench_core.benchmarking.checks import CheckEvaluator
from loadbench_core.benchmarking.engine.context import VUContext, current_scope
from loadbench_core.benchmarking.engine.groups import GroupScope
from loadbench_core.benchmarking.engine.pool import VUPool
from loadbench_core.benchmarking.engine.vu import IterationBudget, IterationOutcome, VirtualUser
from loadbench_core.exceptions import FatalAbort
from loadbench_core.workload import Workload


def _context(registry, vu_id=1, shared=None):
    return VUContext(
        vu_id=vu_id,
        registry=registry,
        http=None,
        checks=CheckEvaluator(registry),
        shared=shared,
    )


async def _noop():
    await asyncio.sleep(0)


def test_iteration_budget_is_shared():
    budget = IterationBudget(3)
    assert [budget.claim() for _ in range(5)] == [True, True, True, False, False]
    assert budget.exhausted
    assert IterationBudget().claim() and not IterationBudget().exhausted


@pytest.mark.asyncio
async def test_iteration_outcomes_are_recorded(registry):
    calls = []

    async def default():
        calls.append(len(calls))
        if calls[-1] == 1:
            raise FatalAbort("explicit")
        if calls[-1] == 2:
            raise KeyError("unexpected")

    vu = VirtualUser(_context(registry), Workload(name="w", default=default))
    outcomes = [await vu.run_iteration() for _ in range(3)]

    assert outcomes == [
        IterationOutcome.COMPLETED,
        IterationOutcome.FAILED,
        IterationOutcome.FAILED,
    ]
    assert registry.count("iterations_total") == 3
    assert registry.count("iterations_failed") == 2
    assert len(registry.values("iteration_duration")) == 3
    assert registry.count("iterations_total", {"result": "failed"}) == 2
    assert vu.iterations == 3 and vu.failed == 2


@pytest.mark.asyncio
async def test_fatal_abort_in_nested_group_leaves_clean_scope_for_next_iteration(registry):
    scopes_at_start = []
    steps = []

    async def default():
        scopes_at_start.append(current_scope().effective())
        async with GroupScope("Create and modify crocs"):
            async with GroupScope("Create crocs"):
                steps.append("create")
                if len(scopes_at_start) == 1:
                    raise FatalAbort("Unable to create a Croc")
            async with GroupScope("Update croc"):
                steps.append("update")
            async with GroupScope("Delete croc"):
                steps.append("delete")

    vu = VirtualUser(
        _context(registry), Workload(name="w", default=default), budget=IterationBudget(2)
    )
    await vu.run_loop()

    assert steps == ["create", "create", "update", "delete"]
    assert scopes_at_start == [{}, {}]
    assert registry.count("iterations_failed") == 1
    assert registry.count("iterations_total") == 2


@pytest.mark.asyncio
async def test_default_receives_shared_data_only_when_setup_exists(registry):
    received = []

    wl_with_setup = Workload(
        name="w", default=lambda data: received.append(data), setup=lambda: "token"
    )
    await VirtualUser(_context(registry, shared="token"), wl_with_setup).run_iteration()

    wl_plain = Workload(name="w", default=lambda: received.append("no-arg"))
    await VirtualUser(_context(registry), wl_plain).run_iteration()

    assert received == ["token", "no-arg"]


@pytest.mark.asyncio
async def test_cancelled_iteration_is_incomplete(registry):
    started = asyncio.Event()

    async def default():
        started.set()
        await asyncio.sleep(10)

    vu = VirtualUser(_context(registry), Workload(name="w", default=default))
    task = asyncio.create_task(vu.run_loop())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert registry.count("iterations_incomplete") == 1
    assert registry.count("iterations_total") == 0
    assert registry.count("iterations_failed") == 0


def _pool(registry, default=_noop, budget=None):
    return VUPool(
        Workload(name="w", default=default),
        registry,
        lambda vu_id: _context(registry, vu_id=vu_id),
        budget=budget,
    )


@pytest.mark.asyncio
async def test_reconcile_scales_up_with_fresh_ids_and_down_newest_first(registry):
    pool = _pool(registry)
    assert pool.reconcile(3) == 3
    assert sorted(v.vu_id for v in pool.active) == [1, 2, 3]

    assert pool.reconcile(1) == -2
    assert [v.vu_id for v in pool.active] == [1]
    draining = [v for v in pool.running if v.stop_requested]
    assert sorted(v.vu_id for v in draining) == [2, 3]

    # Draining VUs finish their iteration and leave the running set.
    for _ in range(100):
        if len(pool) == 1:
            break
        await asyncio.sleep(0.005)
    assert [v.vu_id for v in pool.running] == [1]

    assert pool.reconcile(2) == 1
    assert sorted(v.vu_id for v in pool.active) == [1, 4]
    assert pool.vus_max == 3

    assert await pool.stop_all(graceful=1.0) == 0
    assert len(pool) == 0
    assert registry.values("vus")[-1] == 0
    assert registry.values("vus_max")[-1] == 3


@pytest.mark.asyncio
async def test_ramp_down_never_interrupts_in_flight_iterations(registry):
    release = asyncio.Event()
    finished = []

    async def default():
        await release.wait()
        finished.append(1)

    pool = _pool(registry, default=default)
    pool.reconcile(4)
    await asyncio.sleep(0.01)
    assert pool.in_flight == 4

    pool.reconcile(0)
    await asyncio.sleep(0.01)
    # Marked, not killed: all four are still mid-iteration.
    assert len(pool) == 4 and pool.in_flight == 4

    release.set()
    assert await pool.wait_idle(timeout=1.0)
    assert len(finished) == 4
    assert registry.count("iterations_incomplete") == 0


@pytest.mark.asyncio
async def test_stop_all_force_cancels_after_drain_deadline(registry):
    async def default():
        await asyncio.sleep(10)

    pool = _pool(registry, default=default)
    pool.reconcile(2)
    await asyncio.sleep(0.01)

    forced = await pool.stop_all(graceful=0.05)
    assert forced == 2
    assert len(pool) == 0
    assert registry.count("iterations_incomplete") == 2


@pytest.mark.asyncio
async def test_pool_respects_shared_iteration_budget(registry):
    pool = _pool(registry, budget=IterationBudget(10))
    pool.reconcile(3)
    assert await pool.wait_idle(timeout=2.0)
    assert registry.count("iterations_total") == 10
