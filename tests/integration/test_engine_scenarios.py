"""End-to-end engine scenarios."""

import asyncio
from pathlib import Path

import pytest

from stepgraph import (
    ActionRegistry,
    ExecutionEngine,
    load_workflow,
    register_builtin_actions,
)
from stepgraph.contracts import ExecutionStatus, StepStatus, Workflow, WorkflowEventType
from stepgraph.errors import WorkflowValidationError
from stepgraph.events import InMemoryEventSink
from stepgraph.persistence import InMemoryStateRepository

FIXTURES = Path(__file__).parent.parent / "fixtures"


def _registry():
    registry = register_builtin_actions(ActionRegistry())

    async def tick(action, ctx):
        await asyncio.sleep(0.001)
        return action.config.get("label")

    def fail(action, ctx):
        raise RuntimeError(action.config.get("message", "branch failed"))

    registry.register("tick", tick)
    registry.register("fail", fail)
    return registry


def _linear_workflow():
    return Workflow.model_validate(
        {
            "id": "linear",
            "start_step_id": "A",
            "end_step_ids": ["C"],
            "steps": [
                {
                    "id": "A",
                    "kind": "action",
                    "action": {"type": "tick", "config": {"label": "a"}},
                    "transitions": [{"to": "B"}],
                },
                {
                    "id": "B",
                    "kind": "action",
                    "action": {"type": "tick", "config": {"label": "b"}},
                    "transitions": [{"to": "C"}],
                },
                {
                    "id": "C",
                    "kind": "action",
                    "action": {"type": "tick", "config": {"label": "c"}},
                },
            ],
        }
    )


@pytest.mark.asyncio
async def test_linear_workflow_runs_in_order():
    sink = InMemoryEventSink()
    engine = ExecutionEngine(action_executor=_registry(), event_sink=sink)

    execution = await engine.execute(_linear_workflow(), triggered_by="test")

    assert execution.status == ExecutionStatus.SUCCESS
    assert [se.step_id for se in execution.step_executions] == ["A", "B", "C"]
    starts = [se.started_at for se in execution.step_executions]
    assert starts == sorted(starts) and len(set(starts)) == 3
    assert execution.metrics.total_steps == 3
    assert execution.metrics.completed_steps == 3
    assert execution.metrics.avg_step_duration is not None
    assert execution.completed_at is not None
    assert execution.duration_ms == execution.metrics.total_duration
    assert execution.triggered_by == "test"

    lifecycle = [
        e.type
        for e in sink.events
        if e.type not in (WorkflowEventType.LOG,)
    ]
    assert lifecycle[0] == WorkflowEventType.EXECUTION_STARTED
    assert lifecycle[-1] == WorkflowEventType.EXECUTION_COMPLETED
    assert lifecycle.count(WorkflowEventType.STEP_COMPLETED) == 3

    state = engine.state_tracker.get_state(execution.id)
    assert [(h.from_step, h.to_step) for h in state.history] == [("A", "B"), ("B", "C")]
    assert state.status == ExecutionStatus.SUCCESS


@pytest.mark.asyncio
async def test_condition_selects_true_branch():
    workflow = Workflow.model_validate(
        {
            "id": "branching",
            "start_step_id": "check",
            "end_step_ids": ["big", "small"],
            "variables": [{"name": "count", "type": "number", "default": 0}],
            "steps": [
                {
                    "id": "check",
                    "kind": "condition",
                    "condition": {
                        "type": "simple",
                        "operator": "greater_than",
                        "left": "${count}",
                        "right": 5,
                    },
                    "transitions": [
                        {"to": "small", "label": "false"},
                        {"to": "big", "label": "true"},
                    ],
                },
                {"id": "big", "kind": "action", "action": {"type": "noop"}},
                {"id": "small", "kind": "action", "action": {"type": "noop"}},
            ],
        }
    )
    engine = ExecutionEngine(action_executor=_registry())

    high = await engine.execute(workflow, {"variables": {"count": 10}})
    low = await engine.execute(workflow, {"variables": {"count": 1}})

    assert [se.step_id for se in high.step_executions] == ["check", "big"]
    assert high.step_executions[0].output is True
    assert [se.step_id for se in low.step_executions] == ["check", "small"]


@pytest.mark.asyncio
async def test_dangling_workflow_is_rejected_before_running():
    workflow = Workflow.model_validate(
        {
            "id": "broken",
            "start_step_id": "a",
            "end_step_ids": ["a"],
            "steps": [
                {
                    "id": "a",
                    "kind": "action",
                    "action": {"type": "noop"},
                    "transitions": [{"to": "nowhere"}],
                }
            ],
        }
    )
    sink = InMemoryEventSink()
    engine = ExecutionEngine(action_executor=_registry(), event_sink=sink)

    with pytest.raises(WorkflowValidationError) as exc_info:
        await engine.execute(workflow)

    assert exc_info.value.errors
    assert engine.list_executions() == []
    assert sink.events == []


@pytest.mark.asyncio
async def test_all_or_nothing_parallel_step_fails_execution():
    workflow = Workflow.model_validate(
        {
            "id": "fanout",
            "start_step_id": "fan",
            "end_step_ids": ["done"],
            "steps": [
                {
                    "id": "fan",
                    "kind": "parallel",
                    "parallel": {
                        "policy": "all_or_nothing",
                        "branches": [
                            [{"id": "ok", "kind": "action", "action": {"type": "tick"}}],
                            [{"id": "bad", "kind": "action", "action": {"type": "fail"}}],
                        ],
                    },
                    "transitions": [{"to": "done"}],
                },
                {"id": "done", "kind": "action", "action": {"type": "noop"}},
            ],
        }
    )
    engine = ExecutionEngine(action_executor=_registry())

    execution = await engine.execute(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.code == "STEP_FAILED"
    by_step = {se.step_id: se for se in execution.step_executions}
    assert by_step["ok"].status == StepStatus.SUCCESS
    assert by_step["bad"].status == StepStatus.FAILED
    assert by_step["fan"].error.code == "PARALLEL_FAILED"
    assert by_step["fan"].error.context["branches"][1]["success"] is False
    assert "done" not in by_step


@pytest.mark.asyncio
async def test_parallel_all_policy_collects_results_and_continues():
    workflow = Workflow.model_validate(
        {
            "id": "fanout",
            "start_step_id": "fan",
            "end_step_ids": ["done"],
            "steps": [
                {
                    "id": "fan",
                    "kind": "parallel",
                    "parallel": {
                        "branches": [
                            [
                                {"id": "a1", "kind": "action", "action": {"type": "tick", "config": {"label": "a1"}}},
                                {"id": "a2", "kind": "action", "action": {"type": "tick", "config": {"label": "a2"}}},
                            ],
                            [{"id": "b1", "kind": "action", "action": {"type": "fail"}}],
                        ],
                    },
                    "transitions": [{"to": "done"}],
                },
                {"id": "done", "kind": "action", "action": {"type": "noop"}},
            ],
        }
    )
    engine = ExecutionEngine(action_executor=_registry())

    execution = await engine.execute(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    fan = next(se for se in execution.step_executions if se.step_id == "fan")
    assert [branch["success"] for branch in fan.output] == [True, False]
    assert [r["output"] for r in fan.output[0]["results"]] == ["a1", "a2"]


@pytest.mark.asyncio
async def test_yaml_workflow_with_persisted_state():
    repository = InMemoryStateRepository()
    engine = ExecutionEngine(
        action_executor=_registry(), state_repository=repository
    )
    workflow = load_workflow(FIXTURES / "linear.yaml")

    execution = await engine.execute(workflow, {"variables": {"count": 10}})

    assert execution.status == ExecutionStatus.SUCCESS
    record = await repository.load_state(execution.id)
    assert record.status == "success"
    assert record.data["variables"]["greeting"] == "hello"
    assert [h["reason"] for h in record.data["history"]] == ["default", "condition:true"]
