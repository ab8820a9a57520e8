"""Bundled workloads run end to end against in-memory HTTP services."""

import itertools
import json

import httpx
import pytest

from loadbench_core.benchmarking.engine import Engine, RunStatus
from loadbench_core.scenarios import get_scenario, list_scenarios, register_scenario
from loadbench_core.scenarios.gateway_healthcheck import BODY_MARKER
from loadbench_core.workload import Workload

BASE = "http://crocs.test"


class FakeCrocodileApi:
    """Just enough of the crocodile API for the CRUD workload."""

    def __init__(self, register_status=201, create_status=201):
        self.register_status = register_status
        self.create_status = create_status
        self.ids = itertools.count(100)
        self.crocs = {}
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if path == "/user/register/":
            return httpx.Response(self.register_status, json={"id": 1})
        if path == "/auth/token/login/":
            return httpx.Response(200, json={"access": "token-123"})
        if path.startswith("/public/crocodiles/"):
            return httpx.Response(200, json={"age": 7})

        assert request.headers["authorization"] == "Bearer token-123"
        if path == "/my/crocodiles/" and request.method == "POST":
            if self.create_status != 201:
                return httpx.Response(self.create_status, text="nope")
            croc_id = next(self.ids)
            self.crocs[croc_id] = {"id": croc_id, "name": "x"}
            return httpx.Response(201, json=self.crocs[croc_id])

        croc_id = int(path.rstrip("/").split("/")[-1])
        if croc_id not in self.crocs:
            return httpx.Response(404)
        if request.method == "PATCH":
            self.crocs[croc_id]["name"] = "New name"
            return httpx.Response(200, json=self.crocs[croc_id])
        if request.method == "DELETE":
            del self.crocs[croc_id]
            return httpx.Response(204)
        return httpx.Response(200, text=json.dumps(self.crocs[croc_id]))


def _crud(**params):
    params.setdefault("stages", [])
    return get_scenario(
        "crocodile_crud", base_url=BASE, think_time=0, vus=1, iterations=2, **params
    )


def test_bundled_scenarios_are_registered():
    assert {"crocodile_crud", "gateway_healthcheck"} <= set(list_scenarios())
    with pytest.raises(KeyError):
        get_scenario("does_not_exist")


def test_register_scenario_validates_factories():
    with pytest.raises(ValueError):
        register_scenario("", lambda: None)
    with pytest.raises(TypeError):
        register_scenario("x", "not callable")
    register_scenario("returns_junk", lambda: 42)
    with pytest.raises(TypeError):
        get_scenario("returns_junk")


def test_crocodile_defaults():
    wl = get_scenario("crocodile_crud")
    assert isinstance(wl, Workload)
    assert [(s.target, s.duration) for s in wl.options.stages] == [(50, 25.0), (50, 5.0)]
    assert wl.options.total_duration == 30.0
    assert wl.options.thresholds["http_req_duration{name:Create}"] == ["avg<600", "max>1000"]
    assert wl.has_setup


@pytest.mark.asyncio
async def test_crocodile_crud_full_flow(fast_settings):
    api = FakeCrocodileApi()
    engine = Engine(_crud(), settings=fast_settings, transport=httpx.MockTransport(api))
    report = await engine.run()

    # The Create threshold demands max>1000ms, which a fast fake never meets.
    assert report.status == RunStatus.THRESHOLD_FAILURE
    assert [(t.metric, t.expression) for t in report.failed_thresholds()] == [
        ("http_req_duration{name:Create}", "max>1000")
    ]
    assert report.iterations == 2
    assert report.iterations_failed == 0
    # 2 setup checks + 6 per iteration.
    assert report.checks_total == 14
    assert report.checks_rate == 1.0
    assert api.crocs == {}

    reg = engine.registry
    assert reg.count("http_reqs", {"name": "PublicCrocs"}) == 8
    assert reg.count("http_reqs", {"name": "Create"}) == 2
    assert reg.count("http_reqs", {"name": "RetrieveDeleted", "status": "404"}) == 2
    assert reg.count(
        "http_reqs", {"name": "Create", "group": "Create and modify crocs::Create crocs"}
    ) == 2
    groups = {c.group for c in report.checks}
    assert "Create and modify crocs::Delete croc" in groups
    assert "Public endpoints" in groups


@pytest.mark.asyncio
async def test_crocodile_setup_failure_runs_no_iterations(fast_settings):
    api = FakeCrocodileApi(register_status=500)
    report = await Engine(
        _crud(thresholds={}), settings=fast_settings, transport=httpx.MockTransport(api)
    ).run()

    assert report.status == RunStatus.SETUP_ERROR
    assert report.iterations == 0
    assert api.calls == [("POST", "/user/register/")]


@pytest.mark.asyncio
async def test_crocodile_create_failure_skips_update_and_delete(fast_settings):
    api = FakeCrocodileApi(create_status=500)
    report = await Engine(
        _crud(thresholds={}), settings=fast_settings, transport=httpx.MockTransport(api)
    ).run()

    assert report.status == RunStatus.SUCCESS
    assert report.iterations == 2
    assert report.iterations_failed == 2
    methods = [m for m, p in api.calls if p.startswith("/my/crocodiles/")]
    assert methods == ["POST", "POST"]


@pytest.mark.asyncio
async def test_gateway_healthcheck_flat_load(fast_settings):
    def handler(request):
        return httpx.Response(200, text=f"<html>{BODY_MARKER} our API</html>")

    wl = get_scenario(
        "gateway_healthcheck",
        url="http://gateway.test/healthcheck",
        vus=2,
        duration="150ms",
        think_time=0.01,
        max_requests=10_000,
    )
    engine = Engine(wl, settings=fast_settings, transport=httpx.MockTransport(handler))
    report = await engine.run()

    assert report.status == RunStatus.SUCCESS
    assert report.vus_max == 2
    assert report.iterations > 0
    reg = engine.registry
    assert reg.count("healthcheck_requests") == reg.count("http_reqs")
    assert report.checks_rate == 1.0
    assert [t.expression for t in report.thresholds] == ["count<10000"]


@pytest.mark.asyncio
async def test_gateway_healthcheck_reports_body_mismatch(fast_settings):
    wl = get_scenario(
        "gateway_healthcheck",
        url="http://gateway.test/healthcheck",
        vus=1,
        iterations=3,
        duration=None,
        think_time=0,
        max_requests=2,
    )
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="maintenance"))
    report = await Engine(wl, settings=fast_settings, transport=transport).run()

    assert report.status == RunStatus.THRESHOLD_FAILURE
    assert report.checks_rate == pytest.approx(0.5)
    [summary] = [c for c in report.checks if c.name == "response body"]
    assert (summary.passes, summary.fails) == (0, 3)
