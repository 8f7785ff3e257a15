"""Transition resolution and graph validation tests."""

from stepgraph.conditions import build_condition
from stepgraph.conditions.evaluator import variables_context
from stepgraph.contracts import StepExecution, StepStatus, Workflow
from stepgraph.transitions import TransitionResolver, validate_workflow


def _action(step_id, to=(), **action_fields):
    return {
        "id": step_id,
        "kind": "action",
        "action": {"type": "noop", **action_fields},
        "transitions": [{"to": target} for target in to],
    }


def _workflow(steps, start="a", end=("c",)):
    return Workflow.model_validate(
        {"id": "wf", "steps": steps, "start_step_id": start, "end_step_ids": list(end)}
    )


def _done(step_id, status=StepStatus.SUCCESS, output=None):
    return StepExecution(step_id=step_id, status=status, output=output)


def test_guarded_transition_beats_unguarded():
    workflow = _workflow(
        [
            {
                "id": "a",
                "kind": "action",
                "action": {"type": "noop"},
                "transitions": [
                    {"to": "fallback"},
                    {"to": "big", "condition": build_condition("count > 5").model_dump()},
                ],
            },
            _action("big"),
            _action("fallback"),
        ]
    )
    resolver = TransitionResolver()
    step = workflow.get_step("a")

    ctx = variables_context({"count": 10})
    assert resolver.determine_next_step(step, ctx, _done("a")) == "big"

    ctx = variables_context({"count": 1})
    resolution = resolver.resolve(step, ctx, _done("a"))
    assert resolution.target == "fallback"
    assert resolution.reason == "default"


def test_action_on_success_and_on_failure_take_priority():
    workflow = _workflow(
        [
            _action(
                "a",
                to=["b"],
                on_success=[{"to": "ok"}],
                on_failure=[{"to": "bad"}],
            ),
            _action("b"),
            _action("ok"),
            _action("bad"),
        ]
    )
    resolver = TransitionResolver()
    step = workflow.get_step("a")
    ctx = variables_context({})

    assert resolver.determine_next_step(step, ctx, _done("a")) == "ok"
    assert (
        resolver.determine_next_step(step, ctx, _done("a", StepStatus.FAILED)) == "bad"
    )


def test_condition_step_uses_branch_labels():
    workflow = _workflow(
        [
            {
                "id": "check",
                "kind": "condition",
                "condition": build_condition("count > 5").model_dump(),
                "transitions": [
                    {"to": "no_path", "label": "No"},
                    {"to": "yes_path", "label": "YES"},
                ],
            },
            _action("yes_path"),
            _action("no_path"),
        ],
        start="check",
        end=("yes_path", "no_path"),
    )
    resolver = TransitionResolver()
    step = workflow.get_step("check")
    ctx = variables_context({})

    assert resolver.determine_next_step(step, ctx, _done("check", output=True)) == "yes_path"
    assert resolver.determine_next_step(step, ctx, _done("check", output=False)) == "no_path"


def test_no_transition_returns_none():
    workflow = _workflow([_action("a")], end=("a",))
    resolver = TransitionResolver()
    assert (
        resolver.determine_next_step(workflow.get_step("a"), variables_context({}), _done("a"))
        is None
    )


def test_valid_linear_workflow_has_no_errors():
    workflow = _workflow([_action("a", ["b"]), _action("b", ["c"]), _action("c")])
    assert validate_workflow(workflow) == []


def test_dangling_transition_is_reported():
    workflow = _workflow(
        [_action("a", ["b"]), _action("b", ["ghost"]), _action("c")]
    )
    resolver = TransitionResolver()
    dangling = resolver.find_dangling_transitions(workflow)
    assert dangling == ["Step b has transition to non-existent step ghost"]
    assert dangling[0] in resolver.validate(workflow)


def test_dangling_action_failure_target_is_reported():
    workflow = _workflow(
        [_action("a", ["c"], on_failure=[{"to": "nowhere"}]), _action("c")]
    )
    assert TransitionResolver().find_dangling_transitions(workflow)


def test_condition_step_missing_branch():
    workflow = _workflow(
        [
            {
                "id": "a",
                "kind": "condition",
                "condition": build_condition("x == 1").model_dump(),
                "transitions": [{"to": "c", "label": "true"}],
            },
            _action("c"),
        ]
    )
    errors = validate_workflow(workflow)
    assert "Condition step a is missing a false branch" in errors
    assert not any("true branch" in e for e in errors)


def test_cycle_and_unreachable_detection():
    workflow = _workflow(
        [
            _action("a", ["b"]),
            _action("b", ["a", "c"]),
            _action("c"),
            _action("island", ["c"]),
        ]
    )
    errors = validate_workflow(workflow)
    assert "Cycle detected: a -> b" in errors
    assert "Cycle detected: b -> a" in errors
    assert "Step island is unreachable from start step a" in errors


def test_missing_start_end_and_duplicates():
    workflow = _workflow(
        [_action("a"), _action("a")], start="zzz", end=("yyy",)
    )
    errors = validate_workflow(workflow)
    assert "Duplicate step id: a" in errors
    assert "Start step zzz not found in workflow" in errors
    assert "End step yyy not found in workflow" in errors


def test_malformed_guard_is_reported():
    workflow = _workflow(
        [
            {
                "id": "a",
                "kind": "action",
                "action": {"type": "noop"},
                "transitions": [
                    {"id": "t1", "to": "c", "condition": {"type": "simple", "left": 1}}
                ],
            },
            _action("c"),
        ]
    )
    errors = validate_workflow(workflow)
    assert "Step a: Transition t1: Simple condition must have an operator" in errors
