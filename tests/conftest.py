"""Shared fixtures: fresh registries, fast engine settings and an active VU context."""

import contextlib

import httpx
import pytest

from loadbench_core.benchmarking.checks import CheckEvaluator
from loadbench_core.benchmarking.engine import context as vu_context
from loadbench_core.benchmarking.engine.context import TagScope, VUContext, activate
from loadbench_core.benchmarking.engine.http import HttpClient
from loadbench_core.benchmarking.metrics import MetricRegistry
from loadbench_core.config import EngineSettings


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="OK")


@pytest.fixture
def registry():
    return MetricRegistry()


@pytest.fixture
def fast_settings():
    """Engine settings with a 10ms scheduler tick."""
    return EngineSettings(tick_interval=0.01, http_timeout=5)


@pytest.fixture
def vu_session(registry):
    """
    Factory for an async context manager that binds a VU to the running test task.

    Usage:
        async with vu_session(handler) as ctx:
            await ctx.http.get("http://svc.test/x")
    """

    @contextlib.asynccontextmanager
    async def _session(handler=ok_handler, vu_id=1, tags=None):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ctx = VUContext(
                vu_id=vu_id,
                registry=registry,
                http=HttpClient(client, registry),
                checks=CheckEvaluator(registry),
                base_tags=dict(tags or {}),
            )
            activate(ctx)
            try:
                yield ctx
            finally:
                vu_context._current_vu.set(None)
                vu_context._tag_scope.set(TagScope())

    return _session
