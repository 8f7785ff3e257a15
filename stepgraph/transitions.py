"""Next-step resolution and static validation of workflow graphs."""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Dict, Iterable, List, NamedTuple, Optional, Set

from .conditions import ConditionEvaluator, validate_condition
from .constants import FALSE_BRANCH_LABELS, TRUE_BRANCH_LABELS
from .contracts import (
    ActionStep,
    ConditionStep,
    Context,
    LoopStep,
    Step,
    StepExecution,
    StepStatus,
    Transition,
    Workflow,
)

logger = logging.getLogger(__name__)


class Resolution(NamedTuple):
    target: str
    reason: str


def _outgoing(step: Step) -> List[Transition]:
    transitions = list(step.transitions)
    if isinstance(step, ActionStep):
        transitions.extend(step.action.on_success)
        transitions.extend(step.action.on_failure)
    return transitions


def _has_label(transitions: Iterable[Transition], labels: frozenset) -> bool:
    return any(t.label and t.label.lower() in labels for t in transitions)


class TransitionResolver:
    """Pick the next step of an execution and validate workflow graphs."""

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None) -> None:
        self._evaluator = evaluator or ConditionEvaluator()

    # ------------------------------------------------------------------
    # Runtime resolution
    def determine_next_step(
        self, step: Step, context: Context, step_execution: StepExecution
    ) -> Optional[str]:
        """Return the id of the step to run after ``step``, or ``None``."""
        resolution = self.resolve(step, context, step_execution)
        return resolution.target if resolution else None

    def resolve(
        self, step: Step, context: Context, step_execution: StepExecution
    ) -> Optional[Resolution]:
        """Like ``determine_next_step`` but also reports why a target was chosen.

        Priority: explicit action ``on_success``/``on_failure`` lists, then
        labeled branches of condition steps, then guarded transitions before
        unguarded ones.

        Raises:
            EvaluationError: if a guard condition is malformed.
        """
        if isinstance(step, ActionStep):
            failed = step_execution.status == StepStatus.FAILED
            candidates = step.action.on_failure if failed else step.action.on_success
            chosen = self._select(candidates, context)
            if chosen is not None:
                return Resolution(chosen.target, "on_failure" if failed else "on_success")

        if isinstance(step, ConditionStep) and isinstance(step_execution.output, bool):
            labels = TRUE_BRANCH_LABELS if step_execution.output else FALSE_BRANCH_LABELS
            for transition in step.transitions:
                if transition.label and transition.label.lower() in labels:
                    return Resolution(
                        transition.target, f"condition:{str(step_execution.output).lower()}"
                    )

        chosen = self._select(step.transitions, context)
        if chosen is None:
            return None
        if chosen.condition is not None:
            return Resolution(chosen.target, f"guard:{chosen.condition.id}")
        return Resolution(chosen.target, "default")

    def _select(
        self, transitions: List[Transition], context: Context
    ) -> Optional[Transition]:
        for transition in transitions:
            if transition.condition is not None and self._evaluator.evaluate(
                transition.condition, context
            ):
                return transition
        return next((t for t in transitions if t.condition is None), None)

    # ------------------------------------------------------------------
    # Static validation
    def find_dangling_transitions(self, workflow: Workflow) -> List[str]:
        """Return errors for transitions whose target is not a workflow step."""
        known = set(workflow.step_ids())
        return [
            f"Step {step.id} has transition to non-existent step {transition.target}"
            for step in workflow.steps
            for transition in _outgoing(step)
            if transition.target not in known
        ]

    def validate(self, workflow: Workflow) -> List[str]:
        """Return advisory diagnostics for ``workflow``; empty when clean."""
        errors: List[str] = []
        step_ids = workflow.step_ids()
        known = set(step_ids)

        for step_id, count in Counter(step_ids).items():
            if count > 1:
                errors.append(f"Duplicate step id: {step_id}")

        if workflow.start_step_id not in known:
            errors.append(f"Start step {workflow.start_step_id} not found in workflow")
        for end_id in workflow.end_step_ids:
            if end_id not in known:
                errors.append(f"End step {end_id} not found in workflow")

        errors.extend(self.find_dangling_transitions(workflow))

        for step in workflow.steps:
            if isinstance(step, ConditionStep):
                if not _has_label(step.transitions, TRUE_BRANCH_LABELS):
                    errors.append(f"Condition step {step.id} is missing a true branch")
                if not _has_label(step.transitions, FALSE_BRANCH_LABELS):
                    errors.append(f"Condition step {step.id} is missing a false branch")
            errors.extend(
                f"Step {step.id}: {error}" for error in self._condition_errors(step)
            )

        graph = self._adjacency(workflow)
        for source, targets in graph.items():
            for target in targets:
                if self._reaches(graph, target, source):
                    errors.append(f"Cycle detected: {source} -> {target}")

        if workflow.start_step_id in known:
            reachable = self.reachable_steps(workflow)
            for step_id in step_ids:
                if step_id not in reachable:
                    errors.append(
                        f"Step {step_id} is unreachable from start step "
                        f"{workflow.start_step_id}"
                    )

        if errors:
            logger.debug(f"Workflow {workflow.id} has {len(errors)} validation issue(s)")
        return errors

    def reachable_steps(self, workflow: Workflow) -> Set[str]:
        """Return every step id reachable from ``workflow.start_step_id``."""
        graph = self._adjacency(workflow)
        seen: Set[str] = set()
        queue = deque([workflow.start_step_id])
        while queue:
            step_id = queue.popleft()
            if step_id in seen:
                continue
            seen.add(step_id)
            queue.extend(graph.get(step_id, []))
        return seen

    @staticmethod
    def _adjacency(workflow: Workflow) -> Dict[str, List[str]]:
        known = set(workflow.step_ids())
        graph: Dict[str, List[str]] = {}
        for step in workflow.steps:
            targets = graph.setdefault(step.id, [])
            for transition in _outgoing(step):
                if transition.target in known and transition.target not in targets:
                    targets.append(transition.target)
        return graph

    @staticmethod
    def _reaches(graph: Dict[str, List[str]], start: str, goal: str) -> bool:
        seen: Set[str] = set()
        queue = deque([start])
        while queue:
            node = queue.popleft()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            queue.extend(graph.get(node, []))
        return False

    @staticmethod
    def _condition_errors(step: Step) -> List[str]:
        errors: List[str] = []
        if isinstance(step, ConditionStep):
            errors.extend(validate_condition(step.condition))
        if isinstance(step, LoopStep):
            for condition in (step.loop.condition, step.loop.break_on):
                if condition is not None:
                    errors.extend(validate_condition(condition))
        for transition in _outgoing(step):
            if transition.condition is not None:
                errors.extend(
                    f"Transition {transition.id}: {error}"
                    for error in validate_condition(transition.condition)
                )
        return errors


def validate_workflow(workflow: Workflow) -> List[str]:
    """Shortcut for ``TransitionResolver().validate(workflow)``."""
    return TransitionResolver().validate(workflow)
