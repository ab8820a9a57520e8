"""Grouped-flow runner: path composition, tag scoping and fail-fast unwinding."""

import asyncio

import pytest

from loadbench_core.benchmarking.engine.context import TagScope, current_scope, reset_scope
from loadbench_core.benchmarking.engine.groups import GroupScope, run_group
from loadbench_core.exceptions import FatalAbort


def test_tag_scope_push_and_effective_merge():
    root = TagScope()
    assert root.effective() == {}

    outer = root.push("Create and modify crocs", {"team": "crocs", "env": "ci"})
    inner = outer.push("Create crocs", {"env": "staging"})
    assert inner.group == "Create and modify crocs::Create crocs"
    assert inner.effective() == {
        "team": "crocs",
        "env": "staging",
        "group": "Create and modify crocs::Create crocs",
    }
    # Request-level tags win over everything.
    assert inner.effective({"env": "prod", "name": "Create"})["env"] == "prod"
    # The parent is untouched.
    assert outer.effective()["env"] == "ci"


@pytest.mark.asyncio
async def test_nested_groups_compose_path_and_record_durations(vu_session, registry):
    async with vu_session():
        async with GroupScope("Create and modify crocs"):
            with GroupScope("Create crocs"):
                assert current_scope().group == "Create and modify crocs::Create crocs"
            assert current_scope().group == "Create and modify crocs"
        assert current_scope().group == ""

    groups = [s.tag_dict["group"] for s in registry.get("group_duration").samples]
    assert groups == ["Create and modify crocs::Create crocs", "Create and modify crocs"]


@pytest.mark.asyncio
async def test_fatal_abort_unwinds_every_enclosing_group(vu_session, registry):
    executed = []

    async with vu_session() as ctx:
        with pytest.raises(FatalAbort):
            async with GroupScope("Create and modify crocs"):
                async with GroupScope("Create crocs"):
                    executed.append("create")
                    raise FatalAbort("Unable to create a Croc")
                executed.append("update")  # pragma: no cover
        executed.append("after")
        assert current_scope().group == ""
        reset_scope(ctx)
        assert "group" not in current_scope().effective()

    assert executed == ["create", "after"]
    # Aborted groups do not report a duration.
    assert len(registry.get("group_duration")) == 0


@pytest.mark.asyncio
async def test_run_group_accepts_sync_and_async_callables(vu_session):
    async def async_step(x):
        await asyncio.sleep(0)
        return current_scope().group, x

    async with vu_session():
        assert await run_group("Public endpoints", async_step, 1) == ("Public endpoints", 1)
        assert await run_group("sync", lambda: current_scope().group) == "sync"


@pytest.mark.parametrize("name", ["", "   ", "a::b", None])
def test_invalid_group_names(name):
    with pytest.raises(ValueError):
        GroupScope(name)


@pytest.mark.asyncio
async def test_concurrent_tasks_do_not_see_each_others_groups(vu_session):
    seen = {}

    async def worker(label):
        async with GroupScope(label):
            await asyncio.sleep(0.01)
            seen[label] = current_scope().group

    async with vu_session():
        await asyncio.gather(worker("a"), worker("b"), worker("c"))
        assert current_scope().group == ""

    assert seen == {"a": "a", "b": "b", "c": "c"}
