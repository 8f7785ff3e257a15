"""Condition evaluator tests."""

import pytest

from stepgraph.conditions import ConditionEvaluator, evaluate
from stepgraph.conditions.evaluator import variables_context
from stepgraph.contracts import (
    CompositeCondition,
    SimpleCondition,
    Variable,
    VariableRef,
)
from stepgraph.errors import EvaluationError


def simple(operator, left, right=None, **kwargs):
    if right is None and operator in ("is_null", "is_not_null"):
        return SimpleCondition(operator=operator, left=left, **kwargs)
    return SimpleCondition(operator=operator, left=left, right=right, **kwargs)


@pytest.fixture
def ctx():
    return variables_context(
        {
            "count": 10,
            "name": "John Smith",
            "tags": ["a", "b"],
            "flag": True,
            "user": {"profile": {"tier": "gold"}},
            "missing": None,
        },
        metadata={"tenant": "acme"},
        user_id="u-1",
    )


def test_variable_reference_comparison(ctx):
    assert evaluate(simple("greater_than", "${count}", 5), ctx)
    assert not evaluate(simple("less_than", "${count}", 5), ctx)
    assert evaluate(simple("greater_than_or_equal", "${count}", 10), ctx)
    assert evaluate(simple("less_than_or_equal", VariableRef(name="count"), 10), ctx)


def test_equality_is_strict(ctx):
    assert not evaluate(simple("equals", "${flag}", 1), ctx)
    assert evaluate(simple("equals", "${flag}", True), ctx)
    assert not evaluate(simple("equals", "${count}", "10"), ctx)
    assert evaluate(simple("not_equals", "${count}", "10"), ctx)


def test_ordering_on_incomparable_values_is_false(ctx):
    assert not evaluate(simple("greater_than", "${name}", 5), ctx)
    assert not evaluate(simple("less_than", "${missing}", 5), ctx)


def test_string_operators(ctx):
    assert evaluate(simple("contains", "${name}", "Smith"), ctx)
    assert evaluate(simple("not_contains", "${name}", "Doe"), ctx)
    assert evaluate(simple("starts_with", "${name}", "John"), ctx)
    assert evaluate(simple("ends_with", "${name}", "Smith"), ctx)
    assert evaluate(simple("matches_regex", "${name}", r"^J\w+\s"), ctx)
    assert not evaluate(simple("matches_regex", "${name}", r"^Smith"), ctx)


def test_list_and_membership_operators(ctx):
    assert evaluate(simple("contains", "${tags}", "a"), ctx)
    assert evaluate(simple("in", "a", "${tags}"), ctx)
    assert evaluate(simple("not_in", "z", "${tags}"), ctx)
    # right operand must be a list
    assert not evaluate(simple("in", "J", "${name}"), ctx)
    assert not evaluate(simple("not_in", "J", "${name}"), ctx)


def test_null_checks(ctx):
    assert evaluate(simple("is_null", "${missing}"), ctx)
    assert evaluate(simple("is_null", "${undefined}"), ctx)
    assert evaluate(simple("is_not_null", "${count}"), ctx)


def test_context_paths(ctx):
    assert evaluate(simple("equals", "metadata.tenant", "acme"), ctx)
    assert evaluate(simple("equals", "context.user_id", "u-1"), ctx)
    assert evaluate(simple("equals", "variables.user.profile.tier", "gold"), ctx)
    assert evaluate(simple("equals", "${user.profile.tier}", "gold"), ctx)
    assert evaluate(simple("is_null", "metadata.nothing.here"), ctx)


def test_dotted_literal_is_not_a_path(ctx):
    assert evaluate(simple("equals", "v1.2.3", "v1.2.3"), ctx)


def test_declared_variable_falls_back_to_default(ctx):
    declared = Variable(name="retries", type="number", default=3)
    assert evaluate(simple("equals", declared, 3), ctx)


def test_composite_and_or(ctx):
    big = simple("greater_than", "${count}", 5)
    small = simple("less_than", "${count}", 5)
    assert evaluate(
        CompositeCondition(logical_operator="and", conditions=[big, big]), ctx
    )
    assert not evaluate(
        CompositeCondition(logical_operator="and", conditions=[big, small]), ctx
    )
    assert evaluate(
        CompositeCondition(logical_operator="or", conditions=[small, big]), ctx
    )


def test_not_only_negates_first_sub_condition(ctx):
    false = simple("equals", "${count}", 0)
    true = simple("equals", "${count}", 10)
    condition = CompositeCondition(logical_operator="not", conditions=[false, true])
    assert evaluate(condition, ctx) is True


def test_malformed_conditions_raise(ctx):
    with pytest.raises(EvaluationError) as exc_info:
        evaluate(SimpleCondition(id="c1", left=1, right=1), ctx)
    assert exc_info.value.condition_id == "c1"

    with pytest.raises(EvaluationError):
        evaluate(simple("approximately", 1, 1), ctx)

    with pytest.raises(EvaluationError):
        evaluate(CompositeCondition(logical_operator="and", conditions=[]), ctx)

    with pytest.raises(EvaluationError):
        evaluate(simple("matches_regex", "${name}", "(unclosed"), ctx)


def test_evaluate_with_details_never_raises(ctx):
    evaluator = ConditionEvaluator()
    result = evaluator.evaluate_with_details(simple("bogus", 1, 1, id="c2"), ctx)
    assert result.result is False
    assert result.condition_id == "c2"
    assert "Unknown operator" in result.error
    assert result.context["variables"]["count"] == 10

    ok = evaluator.evaluate_with_details(simple("equals", "${count}", 10), ctx)
    assert ok.result is True
    assert ok.error is None


def test_evaluation_does_not_mutate_context(ctx):
    before = ctx.model_dump()
    evaluate(simple("contains", "${tags}", "a"), ctx)
    assert ctx.model_dump() == before
