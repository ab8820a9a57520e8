"""Metric registry: kinds, concurrent appends, aggregate queries and streaming."""

import random
import threading

import pytest

from loadbench_core.benchmarking.metrics import BUILTIN_METRICS, MetricKind, MetricRegistry
from loadbench_core.benchmarking.metrics.statistical import percentile, summarize, trend_stat
from loadbench_core.exceptions import MetricKindError


def test_builtin_metrics_are_preregistered(registry):
    for name, (kind, _) in BUILTIN_METRICS.items():
        assert registry.kind_of(name) == kind
    assert registry.get("http_req_duration").contains_time
    assert not MetricRegistry(include_builtins=False).list_metrics()


def test_kind_is_fixed_at_first_registration(registry):
    registry.register("orders", MetricKind.COUNTER)
    # Same kind again is a no-op.
    assert registry.register("orders", MetricKind.COUNTER) is registry.get("orders")
    with pytest.raises(MetricKindError):
        registry.register("orders", MetricKind.TREND)
    with pytest.raises(MetricKindError):
        registry.add("orders", 1, kind=MetricKind.GAUGE)
    with pytest.raises(TypeError):
        registry.register("http_req_duration", "counter")


def test_add_requires_kind_for_unknown_metric(registry):
    with pytest.raises(KeyError):
        registry.add("nope", 1)
    registry.add("latency", 12.5, kind=MetricKind.TREND)
    assert registry.kind_of("latency") == MetricKind.TREND


def test_counter_is_monotonic(registry):
    registry.add("http_reqs", 2)
    registry.add("http_reqs", 3)
    assert registry.count("http_reqs") == 5
    with pytest.raises(ValueError):
        registry.add("http_reqs", -1)


def test_rate_samples_are_normalized(registry):
    for value in (True, False, 1, 0, 5):
        registry.add("checks_rate", value)
    assert registry.values("checks_rate") == [1.0, 0.0, 1.0, 0.0, 1.0]
    assert registry.rate("checks_rate") == pytest.approx(0.6)
    # Non-counter count is the number of samples.
    assert registry.count("checks_rate") == 5


def test_tag_filtered_queries(registry):
    registry.add("http_req_duration", 100, {"name": "Create", "method": "POST"})
    registry.add("http_req_duration", 300, {"name": "Create", "method": "POST"})
    registry.add("http_req_duration", 50, {"name": "PublicCrocs", "method": "GET"})

    assert registry.average("http_req_duration") == pytest.approx(150.0)
    assert registry.average("http_req_duration", {"name": "Create"}) == pytest.approx(200.0)
    assert registry.values("http_req_duration", {"name": "Create", "method": "GET"}) == []
    assert registry.percentile("http_req_duration", 50, {"method": "POST"}) == pytest.approx(200.0)


def test_unknown_metric_query_raises(registry):
    with pytest.raises(KeyError):
        registry.values("not_there")
    assert "not_there" not in registry
    assert "vus" in registry


def test_concurrent_appends_lose_no_samples(registry):
    threads_n, per_thread = 8, 500

    def writer(idx):
        for i in range(per_thread):
            registry.add("http_reqs", 1, {"vu": str(idx)})
            registry.add("http_req_duration", float(i), {"vu": str(idx)})

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(threads_n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert registry.count("http_reqs") == threads_n * per_thread
    assert len(registry.values("http_req_duration")) == threads_n * per_thread
    for idx in range(threads_n):
        assert registry.count("http_reqs", {"vu": str(idx)}) == per_thread


def test_subscribe_streams_samples_and_isolates_listener_errors(registry, caplog):
    seen = []

    def broken(sample):
        raise RuntimeError("listener exploded")

    unsubscribe = registry.subscribe(seen.append)
    registry.subscribe(broken)

    sample = registry.add("vus", 3, {"scenario": "default"})
    assert seen == [sample]
    assert sample.tag_dict == {"scenario": "default"}
    assert sample.to_dict()["kind"] == "gauge"
    assert "listener exploded" in caplog.text

    unsubscribe()
    registry.add("vus", 4)
    assert len(seen) == 1


def test_percentile_uses_linear_interpolation():
    data = [100, 120, 490, 510, 600]
    assert percentile(data, 95) == pytest.approx(582.0)
    assert percentile(data, 90) == pytest.approx(564.0)
    assert percentile(data, 50) == pytest.approx(490.0)
    assert percentile(data, 0) == 100
    assert percentile(data, 100) == 600
    assert percentile([], 95) is None
    assert percentile([7], 99) == 7
    with pytest.raises(ValueError):
        percentile(data, 101)


def test_percentile_is_independent_of_insertion_order():
    data = [100, 120, 490, 510, 600]
    expected = percentile(data, 95)
    rng = random.Random(7)
    for _ in range(10):
        shuffled = data[:]
        rng.shuffle(shuffled)
        assert percentile(shuffled, 95) == expected


def test_trend_stats_and_summaries():
    values = [100.0, 120.0, 490.0, 510.0, 600.0]
    assert trend_stat(values, "avg") == pytest.approx(364.0)
    assert trend_stat(values, "med") == pytest.approx(490.0)
    assert trend_stat(values, "p(99.9)") == pytest.approx(percentile(values, 99.9))
    with pytest.raises(ValueError):
        trend_stat(values, "mode")

    trend = summarize(MetricKind.TREND, values, elapsed_s=1.0, trend_stats=("min", "max"))
    assert trend == {"min": 100.0, "max": 600.0}

    counter = summarize(MetricKind.COUNTER, [1, 1, 2], elapsed_s=2.0)
    assert counter == {"count": 4.0, "rate": 2.0}

    rate = summarize(MetricKind.RATE, [1, 0, 1, 1], elapsed_s=1.0)
    assert rate == {"rate": 0.75, "passes": 3.0, "fails": 1.0}

    gauge = summarize(MetricKind.GAUGE, [3, 9, 5], elapsed_s=1.0)
    assert gauge == {"value": 5, "min": 3.0, "max": 9.0}


def test_registry_summary_uses_metric_kind(registry):
    registry.add("iteration_duration", 10)
    registry.add("iteration_duration", 30)
    summary = registry.summary("iteration_duration", elapsed_s=1.0)
    assert summary["avg"] == pytest.approx(20.0)
    assert set(summary) == {"avg", "min", "med", "max", "p(90)", "p(95)"}
