"""Check evaluator: predicate styles, error capture and metric bookkeeping."""

import pytest

from loadbench_core.benchmarking.checks import CheckEvaluator, evaluate_predicate


class FakeResponse:
    status = 200
    body = "hello OK"


def test_predicate_styles():
    res = FakeResponse()
    assert evaluate_predicate(lambda r: r.status == 200, res)
    assert evaluate_predicate(lambda: res.status == 200, res)
    assert evaluate_predicate(True, res)
    assert not evaluate_predicate(0, res)
    assert evaluate_predicate(lambda r=None: r is res, res)


def test_async_predicate_is_rejected():
    async def predicate(r):
        return True

    with pytest.raises(TypeError):
        evaluate_predicate(predicate, FakeResponse())


def test_evaluate_returns_logical_and(registry):
    evaluator = CheckEvaluator(registry)
    res = FakeResponse()
    assert evaluator.evaluate(
        res, {"status is 200": lambda r: r.status == 200, "body contains OK": lambda r: "OK" in r.body}
    )
    assert not evaluator.evaluate(
        res, {"status is 200": lambda r: r.status == 200, "status is 201": lambda r: r.status == 201}
    )
    assert evaluator.evaluate(res, {})


def test_predicate_error_is_a_failed_check_not_an_abort(registry):
    evaluator = CheckEvaluator(registry)
    checks = evaluator.evaluate_checks(
        {"age": None},
        {
            "raises": lambda d: d["missing"] > 1,
            "compares None": lambda d: min([d["age"], 3]) > 5,
            "still evaluated": lambda d: True,
        },
    )
    assert [c.passed for c in checks] == [False, False, True]
    assert checks[0].error.startswith("KeyError")
    assert checks[1].error.startswith("TypeError")
    assert checks[2].error is None


def test_every_check_records_one_counter_and_one_rate_sample_with_same_tags(registry):
    evaluator = CheckEvaluator(registry)
    tags = {"group": "Create and modify crocs::Create crocs", "env": "ci"}
    evaluator.evaluate_checks(
        FakeResponse(),
        {"ok": lambda r: True, "not ok": lambda r: False},
        tags=tags,
        iteration_id="1:0",
    )

    totals = registry.get("checks_total").samples
    rates = registry.get("checks_rate").samples
    assert len(totals) == 2 and len(rates) == 2
    assert [s.value for s in totals] == [1.0, 1.0]
    assert [s.value for s in rates] == [1.0, 0.0]
    for total, rate in zip(totals, rates):
        assert total.tags == rate.tags
        assert total.tag_dict["group"] == tags["group"]
    assert {s.tag_dict["check"] for s in totals} == {"ok", "not ok"}


def test_summaries_are_grouped_by_path_and_name(registry):
    evaluator = CheckEvaluator(registry)
    for status in (201, 201, 500):
        evaluator.evaluate(status, {"croc created": lambda s: s == 201}, tags={"group": "Create"})
    evaluator.evaluate(1, {"croc created": True})

    summaries = {(s.group, s.name): s for s in evaluator.summaries()}
    created = summaries[("Create", "croc created")]
    assert (created.passes, created.fails) == (2, 1)
    assert created.rate == pytest.approx(2 / 3)
    assert summaries[("", "croc created")].passes == 1
