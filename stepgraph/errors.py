"""Exception hierarchy raised by the stepgraph execution core."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .contracts import BranchResult


class StepgraphError(Exception):
    """Base class for stepgraph errors.

    ``code`` is copied into the ``ExecutionError`` record attached to failed
    steps and executions.
    """

    code = "EXECUTION_ERROR"
    recoverable = False

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class WorkflowValidationError(StepgraphError):
    """A workflow definition is malformed and cannot be run."""

    code = "INVALID_WORKFLOW"

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("Workflow validation failed: " + "; ".join(self.errors))


class EvaluationError(StepgraphError):
    """A condition is malformed and cannot be evaluated."""

    code = "EVALUATION_ERROR"

    def __init__(self, message: str, condition_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.condition_id = condition_id

    def __str__(self) -> str:
        if self.condition_id:
            return f"{self.message} (condition {self.condition_id})"
        return self.message


class StepError(StepgraphError):
    """A step handler failed; eligible for retry."""

    code = "STEP_ERROR"
    recoverable = True


class ActionNotFoundError(StepError):
    code = "ACTION_NOT_FOUND"
    recoverable = False


class NotImplementedStepError(StepError):
    """Raised by extension points the core does not implement."""

    code = "NOT_IMPLEMENTED"
    recoverable = False


class ParallelExecutionError(StepError):
    """Aggregate failure of a parallel step after all branches settled."""

    code = "PARALLEL_FAILED"

    def __init__(self, message: str, results: List["BranchResult"]) -> None:
        super().__init__(message)
        self.results = results


class ExecutionFailure(StepgraphError):
    """Engine-level failure that is always fatal to the run."""

    def __init__(
        self, message: str, *, code: str, step_id: Optional[str] = None
    ) -> None:
        super().__init__(message, code=code)
        self.step_id = step_id


class EngineCapacityError(StepgraphError):
    code = "CAPACITY_EXCEEDED"


class StateNotFoundError(StepgraphError, KeyError):
    code = "STATE_NOT_FOUND"

    def __str__(self) -> str:
        return self.message


class CheckpointNotFoundError(StepgraphError, KeyError):
    code = "CHECKPOINT_NOT_FOUND"

    def __str__(self) -> str:
        return self.message
