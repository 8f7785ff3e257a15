"""stepgraph: execution core for declarative step-graph workflows."""

from .actions import ActionExecutor, ActionRegistry, register_builtin_actions
from .conditions import ConditionEvaluator, build_condition
from .config import EngineConfig, StepgraphConfig, load_config
from .contracts import (
    Context,
    ContextOverrides,
    Execution,
    ExecutionStatus,
    StepStatus,
    Workflow,
    WorkflowEvent,
    WorkflowEventType,
)
from .engine import ExecutionEngine
from .events import get_event_sink
from .loader import load_workflow
from .parallel import ParallelBranchRunner
from .persistence import get_repository
from .state import StateTracker
from .transitions import TransitionResolver, validate_workflow
from .workflows import InMemoryWorkflowRepository, WorkflowRepository

__version__ = "0.1.0"
__all__ = [
    "ActionExecutor",
    "ActionRegistry",
    "register_builtin_actions",
    "ConditionEvaluator",
    "build_condition",
    "EngineConfig",
    "StepgraphConfig",
    "load_config",
    "Context",
    "ContextOverrides",
    "Execution",
    "ExecutionStatus",
    "StepStatus",
    "Workflow",
    "WorkflowEvent",
    "WorkflowEventType",
    "ExecutionEngine",
    "get_event_sink",
    "load_workflow",
    "ParallelBranchRunner",
    "get_repository",
    "StateTracker",
    "TransitionResolver",
    "validate_workflow",
    "InMemoryWorkflowRepository",
    "WorkflowRepository",
]
