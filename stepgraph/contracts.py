"""Core data contracts for stepgraph workflows and executions.

Durations carried by workflow definitions (retry delays, wait durations,
action and workflow timeouts) are expressed in milliseconds.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_MAX_DELAY_MS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.SUCCESS,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
        ExecutionStatus.TIMEOUT,
    }
)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    RETRY = "retry"


class StepKind(str, Enum):
    ACTION = "action"
    CONDITION = "condition"
    PARALLEL = "parallel"
    LOOP = "loop"
    WAIT = "wait"
    SUBWORKFLOW = "subworkflow"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES_REGEX = "matches_regex"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"
    NOT = "not"


class ParallelPolicy(str, Enum):
    """Completion policy applied to the branches of a parallel step."""

    ALL = "all"
    ALL_OR_NOTHING = "all_or_nothing"
    RACE = "race"
    THRESHOLD = "threshold"
    BOUNDED = "bounded"


class WorkflowEventType(str, Enum):
    EXECUTION_STARTED = "execution.started"
    EXECUTION_COMPLETED = "execution.completed"
    EXECUTION_FAILED = "execution.failed"
    EXECUTION_CANCELLED = "execution.cancelled"
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_RETRYING = "step.retrying"
    LOG = "log"


# ---------------------------------------------------------------------------
# Variables and conditions


class VariableRef(BaseModel):
    """Explicit reference to a context variable, usable as a condition operand."""

    name: str


class Variable(BaseModel):
    """Variable declared by a workflow definition."""

    name: str
    type: Literal["string", "number", "boolean", "object", "array", "date", "null"] = (
        "string"
    )
    default: Any = None
    required: bool = False
    description: Optional[str] = None


class SimpleCondition(BaseModel):
    """Binary comparison between two operands.

    ``operator`` is kept as a plain string so that malformed definitions can
    still be loaded and reported by the validators instead of failing early.
    """

    id: str = Field(default_factory=lambda: _short_id("cond"))
    type: Literal["simple"] = "simple"
    operator: Optional[str] = None
    left: Any = None
    right: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def has_operand(self, name: str) -> bool:
        """Return ``True`` when ``name`` (left/right) was explicitly provided."""
        return name in self.model_fields_set


class CompositeCondition(BaseModel):
    """Logical combination of sub-conditions."""

    id: str = Field(default_factory=lambda: _short_id("cond"))
    type: Literal["composite"] = "composite"
    logical_operator: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


Condition = Annotated[
    Union[SimpleCondition, CompositeCondition], Field(discriminator="type")
]

CompositeCondition.model_rebuild()


class ConditionResult(BaseModel):
    """Detailed outcome of a condition evaluation."""

    condition_id: str
    result: bool
    evaluated_at: datetime = Field(default_factory=utcnow)
    context: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Steps and transitions


class Transition(BaseModel):
    """Directed, optionally guarded edge between two steps."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: _short_id("tr"))
    source: Optional[str] = Field(default=None, alias="from")
    target: str = Field(alias="to")
    condition: Optional[Condition] = None
    label: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_type: Literal["fixed", "linear", "exponential"] = "fixed"
    initial_delay: float = Field(default=1000, ge=0)
    max_delay: float = Field(default=DEFAULT_MAX_DELAY_MS, ge=0)
    multiplier: float = 2


class Action(BaseModel):
    """Type-tagged unit of work handed to the action executor."""

    id: str = Field(default_factory=lambda: _short_id("act"))
    name: str = ""
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    retry_policy: Optional[RetryPolicy] = None
    timeout: Optional[float] = None
    on_success: List[Transition] = Field(default_factory=list)
    on_failure: List[Transition] = Field(default_factory=list)
    output_variable: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LoopConfig(BaseModel):
    type: Literal["for", "while", "forEach"] = "while"
    body: Action
    condition: Optional[Condition] = None
    break_on: Optional[Condition] = None
    max_iterations: Optional[int] = Field(default=None, ge=0)
    iterator: Optional[str] = None


class WaitConfig(BaseModel):
    type: Literal["duration", "until", "event"] = "duration"
    duration: Optional[float] = None
    until: Optional[datetime] = None
    event_name: Optional[str] = None
    timeout: Optional[float] = None


class ParallelConfig(BaseModel):
    branches: List[List[Step]] = Field(default_factory=list)
    policy: ParallelPolicy = ParallelPolicy.ALL
    threshold: float = Field(default=1.0, ge=0, le=1)
    limit: int = Field(default=4, ge=1)


class StepBase(BaseModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    transitions: List[Transition] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class ActionStep(StepBase):
    kind: Literal["action"] = "action"
    action: Action


class ConditionStep(StepBase):
    kind: Literal["condition"] = "condition"
    condition: Condition


class ParallelStep(StepBase):
    kind: Literal["parallel"] = "parallel"
    parallel: ParallelConfig


class LoopStep(StepBase):
    kind: Literal["loop"] = "loop"
    loop: LoopConfig


class WaitStep(StepBase):
    kind: Literal["wait"] = "wait"
    wait: WaitConfig


class SubworkflowStep(StepBase):
    kind: Literal["subworkflow"] = "subworkflow"
    subworkflow_id: str
    subworkflow_version: Optional[str] = None


Step = Annotated[
    Union[ActionStep, ConditionStep, ParallelStep, LoopStep, WaitStep, SubworkflowStep],
    Field(discriminator="kind"),
]

ParallelConfig.model_rebuild()
ParallelStep.model_rebuild()


# ---------------------------------------------------------------------------
# Workflow definition


class WorkflowSettings(BaseModel):
    timeout: Optional[float] = None
    error_handling: Literal["fail", "continue"] = "fail"
    retry_policy: Optional[RetryPolicy] = None


class Workflow(BaseModel):
    """Immutable definition of a step graph plus variables and settings."""

    id: str
    name: str = ""
    description: Optional[str] = None
    version: str = "1.0.0"
    steps: List[Step] = Field(default_factory=list)
    variables: List[Variable] = Field(default_factory=list)
    start_step_id: str
    end_step_ids: List[str] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_step(self, step_id: Optional[str]) -> Optional[Step]:
        """Return the top-level step with ``step_id`` if present."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def is_end_step(self, step_id: Optional[str]) -> bool:
        return step_id in self.end_step_ids


# ---------------------------------------------------------------------------
# Runtime records


class Context(BaseModel):
    """Runtime context of one execution, handed to actions and conditions."""

    workflow_id: str
    execution_id: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    environment: Literal["development", "staging", "production"] = "production"
    timestamp: datetime = Field(default_factory=utcnow)


class ContextOverrides(BaseModel):
    """Caller-supplied values layered over a workflow's declared defaults."""

    variables: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    environment: Literal["development", "staging", "production"] = "production"


class ExecutionLog(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: str
    step_id: Optional[str] = None
    level: Literal["debug", "info", "warn", "error"] = "info"
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)


class ExecutionError(BaseModel):
    code: str
    message: str
    step_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    stack_trace: Optional[str] = None
    recoverable: bool = False
    context: Dict[str, Any] = Field(default_factory=dict)


class StepExecution(BaseModel):
    step_id: str
    status: StepStatus = StepStatus.PENDING
    attempt: int = 1
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    output: Any = None
    error: Optional[ExecutionError] = None
    logs: List[ExecutionLog] = Field(default_factory=list)

    def finish(self, status: StepStatus) -> None:
        """Stamp completion time, duration and final ``status``."""
        self.status = status
        self.completed_at = utcnow()
        self.duration_ms = (
            self.completed_at - self.started_at
        ).total_seconds() * 1000


class ExecutionMetrics(BaseModel):
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    retry_count: int = 0
    avg_step_duration: Optional[float] = None
    total_duration: Optional[float] = None


class Execution(BaseModel):
    """One runtime instance of a workflow."""

    id: str
    workflow_id: str
    workflow_version: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    triggered_by: str = "system"
    context: Context
    current_step_id: Optional[str] = None
    step_executions: List[StepExecution] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    metrics: ExecutionMetrics = Field(default_factory=ExecutionMetrics)
    error: Optional[ExecutionError] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def finish(self, status: ExecutionStatus) -> None:
        self.status = status
        self.completed_at = utcnow()
        self.duration_ms = (
            self.completed_at - self.started_at
        ).total_seconds() * 1000
        self.metrics.total_duration = self.duration_ms


class BranchResult(BaseModel):
    """Outcome of one branch of a parallel step."""

    index: int
    results: List[StepExecution] = Field(default_factory=list)
    success: bool = True
    error: Optional[str] = None


class WorkflowEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: WorkflowEventType
    workflow_id: str
    execution_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowEvent":
        """Deserialize event from JSON."""
        return cls.model_validate_json(data)
