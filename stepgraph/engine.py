"""Execution engine that drives workflow runs to completion."""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
import traceback
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .actions import ActionExecutor
from .conditions import ConditionEvaluator
from .config import EngineConfig
from .contracts import (
    Action,
    ActionStep,
    ConditionStep,
    Context,
    ContextOverrides,
    Execution,
    ExecutionError,
    ExecutionLog,
    ExecutionStatus,
    LoopStep,
    ParallelStep,
    RetryPolicy,
    Step,
    StepExecution,
    StepStatus,
    SubworkflowStep,
    WaitStep,
    Workflow,
    WorkflowEvent,
    WorkflowEventType,
    utcnow,
)
from .errors import (
    EngineCapacityError,
    EvaluationError,
    ExecutionFailure,
    NotImplementedStepError,
    ParallelExecutionError,
    StepError,
    StepgraphError,
    WorkflowValidationError,
)
from .events import BaseEventSink, InMemoryEventSink
from .parallel import ParallelBranchRunner
from .persistence import StateRepository, save_tracked_state
from .state import State, StateTracker
from .transitions import TransitionResolver
from .utils.retry import compute_backoff, schedule_retry
from .workflows import InMemoryWorkflowRepository, WorkflowRepository

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_TERMINAL_EVENTS = {
    ExecutionStatus.FAILED: WorkflowEventType.EXECUTION_FAILED,
    ExecutionStatus.TIMEOUT: WorkflowEventType.EXECUTION_FAILED,
    ExecutionStatus.CANCELLED: WorkflowEventType.EXECUTION_CANCELLED,
    ExecutionStatus.SUCCESS: WorkflowEventType.EXECUTION_COMPLETED,
}


def _stack_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


class ExecutionEngine:
    """Run workflows step by step.

    All collaborators are passed in; nothing is shared between engine
    instances. A single engine may drive many executions concurrently, each
    on its own sequential loop.
    """

    def __init__(
        self,
        action_executor: ActionExecutor,
        workflow_repository: Optional[WorkflowRepository] = None,
        event_sink: Optional[BaseEventSink] = None,
        state_tracker: Optional[StateTracker] = None,
        config: Optional[EngineConfig] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        resolver: Optional[TransitionResolver] = None,
        parallel_runner: Optional[ParallelBranchRunner] = None,
        state_repository: Optional[StateRepository] = None,
    ) -> None:
        self.action_executor = action_executor
        self.workflow_repository = workflow_repository or InMemoryWorkflowRepository()
        self.event_sink = event_sink or InMemoryEventSink()
        self.state_tracker = state_tracker or StateTracker()
        self.config = config or EngineConfig()
        self.evaluator = evaluator or ConditionEvaluator()
        self.resolver = resolver or TransitionResolver(self.evaluator)
        self.parallel_runner = parallel_runner or ParallelBranchRunner(
            self._run_branch_step
        )
        self.state_repository = state_repository

        self._executions: Dict[str, Execution] = {}
        self._workflows: Dict[str, Workflow] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    async def execute(
        self,
        workflow: Workflow,
        overrides: Optional[Union[ContextOverrides, Mapping]] = None,
        triggered_by: str = "system",
    ) -> Execution:
        """Run ``workflow`` to a terminal status and return the execution.

        Step and execution failures are reported on the returned
        ``Execution``; only definition and capacity problems raise.

        Raises:
            WorkflowValidationError: if a transition targets a missing step.
            EngineCapacityError: if too many executions are already active.
        """
        dangling = self.resolver.find_dangling_transitions(workflow)
        if dangling:
            raise WorkflowValidationError(dangling)

        if overrides is None:
            overrides = ContextOverrides()
        elif not isinstance(overrides, ContextOverrides):
            overrides = ContextOverrides.model_validate(dict(overrides))

        execution_id = str(uuid.uuid4())
        context = Context(
            workflow_id=workflow.id,
            execution_id=execution_id,
            variables=self._initial_variables(workflow, overrides),
            metadata=copy.deepcopy(overrides.metadata),
            user_id=overrides.user_id,
            tenant_id=overrides.tenant_id,
            environment=overrides.environment,
        )
        execution = Execution(
            id=execution_id,
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            triggered_by=triggered_by,
            context=context,
            current_step_id=workflow.start_step_id,
        )

        with self._registry_lock:
            active = sum(1 for e in self._executions.values() if not e.is_terminal)
            if active >= self.config.max_concurrent_executions:
                raise EngineCapacityError(
                    f"Maximum of {self.config.max_concurrent_executions} concurrent "
                    "executions reached"
                )
            self._executions[execution_id] = execution
            self._workflows[execution_id] = workflow

        state = self.state_tracker.create_state(
            execution_id, workflow.start_step_id, context
        )
        execution.status = ExecutionStatus.RUNNING
        logger.info(
            f"Starting execution {execution_id} of workflow {workflow.id} "
            f"v{workflow.version}"
        )
        await self._emit(
            WorkflowEventType.EXECUTION_STARTED,
            execution,
            workflow_version=workflow.version,
            triggered_by=triggered_by,
        )

        timeout = workflow.settings.timeout or self.config.default_timeout
        try:
            self._check_required_variables(workflow, context)
            if timeout:
                await asyncio.wait_for(
                    self._run(workflow, execution, state), timeout / 1000
                )
            else:
                await self._run(workflow, execution, state)
        except asyncio.TimeoutError as exc:
            await self._timeout(execution, timeout, exc)
        except Exception as exc:
            await self._fail(execution, exc)
        else:
            await self._finish(execution, ExecutionStatus.SUCCESS)
        finally:
            with self._registry_lock:
                self._workflows.pop(execution_id, None)

        return execution

    async def cancel_execution(self, execution_id: str) -> bool:
        """Request cooperative cancellation; returns ``False`` if not cancellable.

        The in-flight step is not interrupted; the run stops at its next step
        boundary.
        """
        execution = self._executions.get(execution_id)
        if execution is None or execution.is_terminal:
            return False
        logger.info(f"Cancelling execution {execution_id}")
        return await self._finish(execution, ExecutionStatus.CANCELLED)

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        return self._executions.get(execution_id)

    def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[Execution]:
        with self._registry_lock:
            executions = list(self._executions.values())
        return [
            e
            for e in executions
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == status)
        ]

    def active_count(self) -> int:
        return sum(1 for e in self.list_executions() if not e.is_terminal)

    # ------------------------------------------------------------------
    # Main loop
    async def _run(self, workflow: Workflow, execution: Execution, state: State) -> None:
        step_id: Optional[str] = workflow.start_step_id
        while True:
            if execution.is_terminal:
                logger.info(
                    f"Execution {execution.id} stopped at step {step_id} "
                    f"({execution.status.value})"
                )
                return

            step = workflow.get_step(step_id)
            if step is None:
                raise ExecutionFailure(
                    f"Step {step_id} not found in workflow {workflow.id}",
                    code="STEP_NOT_FOUND",
                    step_id=step_id,
                )
            execution.current_step_id = step.id

            step_execution = await self._execute_step(step, execution, state)

            if step_execution.status == StepStatus.FAILED:
                if workflow.settings.error_handling == "fail":
                    message = step_execution.error.message if step_execution.error else ""
                    failure = ExecutionFailure(
                        f"Step {step.id} failed: {message}",
                        code="STEP_FAILED",
                        step_id=step.id,
                    )
                    stack_trace = (
                        step_execution.error.stack_trace if step_execution.error else None
                    )
                    await self._fail(execution, failure, stack_trace=stack_trace)
                    return
                await self._log(
                    execution,
                    step_execution,
                    "warn",
                    f"Step {step.id} failed; continuing per error handling policy",
                )

            if workflow.is_end_step(step.id) or execution.is_terminal:
                return

            resolution = self.resolver.resolve(step, execution.context, step_execution)
            if resolution is None:
                raise ExecutionFailure(
                    f"Step {step.id} has no next step and is not an end step",
                    code="NO_NEXT_STEP",
                    step_id=step.id,
                )
            self.state_tracker.transition_to(
                execution.id, resolution.target, reason=resolution.reason
            )
            if self.config.enable_checkpoints:
                self.state_tracker.create_checkpoint(
                    state, resolution.target, {"from_step": step.id}
                )
            step_id = resolution.target

    async def _execute_step(
        self, step: Step, execution: Execution, state: State
    ) -> StepExecution:
        """Run one step, retrying per its policy; return the final attempt."""
        if execution.is_terminal:
            return await self._execute_detached(step, execution, state)

        policy = self._retry_policy(step, execution)
        max_attempts = policy.max_attempts if policy else 1
        execution.metrics.total_steps += 1
        attempt = 1

        while True:
            step_execution = StepExecution(
                step_id=step.id, attempt=attempt, status=StepStatus.RUNNING
            )
            execution.step_executions.append(step_execution)
            await self._emit(
                WorkflowEventType.STEP_STARTED,
                execution,
                step_id=step.id,
                kind=step.kind,
                attempt=attempt,
            )

            try:
                output = await self._dispatch(step, execution, state, step_execution)
            except ExecutionFailure as exc:
                step_execution.error = self._error_from_exception(exc, step.id)
                step_execution.finish(StepStatus.FAILED)
                execution.metrics.failed_steps += 1
                raise
            except Exception as exc:
                step_execution.error = self._error_from_exception(exc, step.id)
                recoverable = exc.recoverable if isinstance(exc, StepgraphError) else True
                if (
                    policy
                    and recoverable
                    and attempt < max_attempts
                    and not execution.is_terminal
                ):
                    delay = compute_backoff(policy, attempt)
                    step_execution.finish(StepStatus.RETRY)
                    execution.metrics.retry_count += 1
                    await self._log(
                        execution,
                        step_execution,
                        "warn",
                        f"Step {step.id} attempt {attempt} failed: {exc}; "
                        f"retrying in {delay:g}ms",
                    )
                    await self._emit(
                        WorkflowEventType.STEP_RETRYING,
                        execution,
                        step_id=step.id,
                        attempt=attempt,
                        delay_ms=delay,
                        error=str(exc),
                    )
                    self._sync_variables(execution)
                    await schedule_retry(policy, attempt)
                    attempt += 1
                    continue

                step_execution.finish(StepStatus.FAILED)
                execution.metrics.failed_steps += 1
                await self._log(
                    execution,
                    step_execution,
                    "error",
                    f"Step {step.id} failed after {attempt} attempt(s): {exc}",
                    code=step_execution.error.code,
                )
                await self._emit(
                    WorkflowEventType.STEP_FAILED,
                    execution,
                    step_id=step.id,
                    attempt=attempt,
                    code=step_execution.error.code,
                    error=step_execution.error.message,
                )
            else:
                step_execution.output = output
                step_execution.finish(StepStatus.SUCCESS)
                execution.metrics.completed_steps += 1
                await self._emit(
                    WorkflowEventType.STEP_COMPLETED,
                    execution,
                    step_id=step.id,
                    attempt=attempt,
                    duration_ms=step_execution.duration_ms,
                )

            self._update_average(execution)
            self._sync_variables(execution)
            return step_execution

    async def _execute_detached(
        self, step: Step, execution: Execution, state: State
    ) -> StepExecution:
        """Run ``step`` for an execution that already reached a terminal status.

        Branches left running by a race, or still in flight when a run was
        cancelled, keep going but work on a copy of the execution so the
        finished run's records, metrics and variables stay as they were.
        """
        detached = execution.model_copy(deep=True)
        step_execution = StepExecution(step_id=step.id, status=StepStatus.RUNNING)
        try:
            step_execution.output = await self._dispatch(
                step, detached, state, step_execution
            )
        except Exception as exc:
            step_execution.error = self._error_from_exception(exc, step.id)
            step_execution.finish(StepStatus.FAILED)
        else:
            step_execution.finish(StepStatus.SUCCESS)
        logger.debug(
            f"Step {step.id} ran detached from {execution.status.value} "
            f"execution {execution.id}: {step_execution.status.value}"
        )
        return step_execution

    async def _run_branch_step(
        self, step: Step, execution: Execution, state: State
    ) -> StepExecution:
        return await self._execute_step(step, execution, state)

    # ------------------------------------------------------------------
    # Step kinds
    async def _dispatch(
        self,
        step: Step,
        execution: Execution,
        state: State,
        step_execution: StepExecution,
    ) -> Any:
        if isinstance(step, ActionStep):
            return await self._execute_action(step.action, execution)
        if isinstance(step, ConditionStep):
            result = self.evaluator.evaluate(step.condition, execution.context)
            await self._log(
                execution,
                step_execution,
                "debug",
                f"Condition {step.condition.id} evaluated to {result}",
            )
            return result
        if isinstance(step, ParallelStep):
            return await self._execute_parallel(step, execution, state)
        if isinstance(step, LoopStep):
            return await self._execute_loop(step, execution, step_execution)
        if isinstance(step, WaitStep):
            return await self._execute_wait(step, execution, step_execution)
        if isinstance(step, SubworkflowStep):
            return await self._execute_subworkflow(step)
        raise ExecutionFailure(
            f"Unknown step kind for step {step.id}",
            code="UNKNOWN_STEP_KIND",
            step_id=step.id,
        )

    async def _execute_action(self, action: Action, execution: Execution) -> Any:
        call = self.action_executor.execute(action, execution.context)
        if action.timeout:
            try:
                output = await asyncio.wait_for(call, action.timeout / 1000)
            except asyncio.TimeoutError:
                raise StepError(
                    f"Action {action.id} timed out after {action.timeout:g}ms",
                    code="ACTION_TIMEOUT",
                ) from None
        else:
            output = await call
        if action.output_variable:
            execution.context.variables[action.output_variable] = output
        return output

    async def _execute_parallel(
        self, step: ParallelStep, execution: Execution, state: State
    ) -> List[Dict[str, Any]]:
        config = step.parallel
        results = await self.parallel_runner.run(
            config.branches,
            execution,
            state,
            policy=config.policy,
            threshold=config.threshold,
            limit=config.limit,
        )
        return [result.model_dump() for result in results]

    async def _execute_loop(
        self, step: LoopStep, execution: Execution, step_execution: StepExecution
    ) -> List[Any]:
        config = step.loop
        context = execution.context
        max_iterations = (
            config.max_iterations
            if config.max_iterations is not None
            else self.config.max_loop_iterations
        )

        items: Optional[List[Any]] = None
        if config.type == "forEach":
            items = self._loop_items(step, context)

        results: List[Any] = []
        iteration = 0
        while iteration < max_iterations:
            if items is not None and iteration >= len(items):
                break
            context.variables["loop_index"] = iteration
            if items is not None:
                context.variables["loop_item"] = items[iteration]
            if config.condition is not None and not self.evaluator.evaluate(
                config.condition, context
            ):
                break
            if config.break_on is not None and self.evaluator.evaluate(
                config.break_on, context
            ):
                break
            results.append(await self._execute_action(config.body, execution))
            iteration += 1
        else:
            await self._log(
                execution,
                step_execution,
                "warn",
                f"Loop {step.id} stopped at the iteration cap of {max_iterations}",
            )
        return results

    def _loop_items(self, step: LoopStep, context: Context) -> List[Any]:
        iterator = step.loop.iterator
        if not iterator:
            raise StepError(f"forEach loop {step.id} has no iterator")
        if iterator.startswith("${") or "." in iterator:
            items = self.evaluator.resolve_value(iterator, context)
        else:
            items = context.variables.get(iterator)
        if not isinstance(items, (list, tuple)):
            raise StepError(
                f"forEach loop {step.id} iterator {iterator} is not a list"
            )
        return list(items)

    async def _execute_wait(
        self, step: WaitStep, execution: Execution, step_execution: StepExecution
    ) -> None:
        config = step.wait
        if config.type == "event":
            raise NotImplementedStepError(
                f"Waiting for event '{config.event_name}' is not supported"
            )

        delay_ms = 0.0
        if config.type == "duration":
            delay_ms = config.duration or 0.0
        elif config.until is not None:
            until = config.until
            if until.tzinfo is None:
                until = until.replace(tzinfo=timezone.utc)
            delay_ms = max(0.0, (until - datetime.now(timezone.utc)).total_seconds() * 1000)

        if delay_ms <= 0:
            return None

        await self._log(
            execution, step_execution, "info", f"Waiting {delay_ms:g}ms at step {step.id}"
        )
        self._set_status(execution, ExecutionStatus.WAITING)
        try:
            await asyncio.sleep(delay_ms / 1000)
        finally:
            if execution.status == ExecutionStatus.WAITING:
                self._set_status(execution, ExecutionStatus.RUNNING)
        return None

    async def _execute_subworkflow(self, step: SubworkflowStep) -> None:
        workflow = await self.workflow_repository.get_workflow(
            step.subworkflow_id, step.subworkflow_version
        )
        if workflow is None:
            raise StepError(
                f"Sub-workflow {step.subworkflow_id} not found",
                code="SUBWORKFLOW_NOT_FOUND",
            )
        raise NotImplementedStepError(
            f"Sub-workflow execution is not supported (workflow {workflow.id} "
            f"v{workflow.version})"
        )

    # ------------------------------------------------------------------
    # Terminal transitions
    async def _finish(self, execution: Execution, status: ExecutionStatus) -> bool:
        if execution.is_terminal:
            return False
        execution.finish(status)
        self._update_average(execution)
        self.state_tracker.update_status(execution.id, status)
        logger.info(
            f"Execution {execution.id} finished with status {status.value} "
            f"in {execution.duration_ms:.1f}ms"
        )

        payload: Dict[str, Any] = {
            "status": status.value,
            "duration_ms": execution.duration_ms,
        }
        if execution.error is not None:
            payload["code"] = execution.error.code
            payload["error"] = execution.error.message
        await self._emit(_TERMINAL_EVENTS[status], execution, **payload)

        if self.state_repository is not None:
            await save_tracked_state(self.state_tracker, self.state_repository, execution.id)
        return True

    async def _fail(
        self,
        execution: Execution,
        exc: BaseException,
        stack_trace: Optional[str] = None,
    ) -> None:
        if execution.is_terminal:
            return
        step_id = getattr(exc, "step_id", None) or execution.current_step_id
        error = self._error_from_exception(exc, step_id)
        if stack_trace:
            error.stack_trace = stack_trace
        execution.error = error
        logger.error(f"Execution {execution.id} failed [{error.code}]: {error.message}")
        await self._finish(execution, ExecutionStatus.FAILED)

    async def _timeout(
        self, execution: Execution, timeout_ms: float, exc: BaseException
    ) -> None:
        if execution.is_terminal:
            return
        error = ExecutionError(
            code="EXECUTION_TIMEOUT",
            message=f"Execution exceeded timeout of {timeout_ms:g}ms",
            step_id=execution.current_step_id,
            stack_trace=_stack_trace(exc),
        )
        for step_execution in execution.step_executions:
            if step_execution.status == StepStatus.RUNNING:
                step_execution.error = error
                step_execution.finish(StepStatus.FAILED)
                execution.metrics.failed_steps += 1
        execution.error = error
        logger.error(f"Execution {execution.id} timed out after {timeout_ms:g}ms")
        await self._finish(execution, ExecutionStatus.TIMEOUT)

    # ------------------------------------------------------------------
    # Helpers
    @staticmethod
    def _initial_variables(
        workflow: Workflow, overrides: ContextOverrides
    ) -> Dict[str, Any]:
        variables = {v.name: copy.deepcopy(v.default) for v in workflow.variables}
        variables.update(copy.deepcopy(overrides.variables))
        return variables

    @staticmethod
    def _check_required_variables(workflow: Workflow, context: Context) -> None:
        missing = [
            v.name
            for v in workflow.variables
            if v.required and context.variables.get(v.name) is None
        ]
        if missing:
            raise ExecutionFailure(
                f"Missing required variable(s): {', '.join(missing)}",
                code="MISSING_VARIABLE",
            )

    def _retry_policy(self, step: Step, execution: Execution) -> Optional[RetryPolicy]:
        workflow = self._workflows.get(execution.id)
        default = workflow.settings.retry_policy if workflow else None
        if isinstance(step, ActionStep):
            return step.action.retry_policy or default
        return default

    def _set_status(self, execution: Execution, status: ExecutionStatus) -> None:
        if execution.is_terminal:
            return
        execution.status = status
        self.state_tracker.update_status(execution.id, status)

    def _sync_variables(self, execution: Execution) -> None:
        if execution.is_terminal:
            return
        self.state_tracker.bulk_set_variables(execution.id, execution.context.variables)

    @staticmethod
    def _update_average(execution: Execution) -> None:
        durations = [
            se.duration_ms for se in execution.step_executions if se.duration_ms is not None
        ]
        if durations:
            execution.metrics.avg_step_duration = sum(durations) / len(durations)

    @staticmethod
    def _error_from_exception(
        exc: BaseException, step_id: Optional[str]
    ) -> ExecutionError:
        context: Dict[str, Any] = {"exception": type(exc).__name__}
        if isinstance(exc, StepgraphError):
            code, recoverable, message = exc.code, exc.recoverable, exc.message
        else:
            code, recoverable, message = "STEP_ERROR", True, str(exc) or type(exc).__name__
        if isinstance(exc, EvaluationError) and exc.condition_id:
            context["condition_id"] = exc.condition_id
        if isinstance(exc, ParallelExecutionError):
            context["branches"] = [
                {"index": r.index, "success": r.success, "error": r.error}
                for r in exc.results
            ]
        return ExecutionError(
            code=code,
            message=message,
            step_id=step_id,
            stack_trace=_stack_trace(exc),
            recoverable=recoverable,
            context=context,
        )

    async def _log(
        self,
        execution: Execution,
        step_execution: Optional[StepExecution],
        level: str,
        message: str,
        **data: Any,
    ) -> ExecutionLog:
        record = ExecutionLog(
            execution_id=execution.id,
            step_id=step_execution.step_id if step_execution else None,
            level=level,
            message=message,
            data=data,
        )
        if step_execution is not None:
            step_execution.logs.append(record)
        logger.log(_LOG_LEVELS[level], f"[{execution.id}] {message}")
        await self._emit(
            WorkflowEventType.LOG,
            execution,
            level=level,
            message=message,
            step_id=record.step_id,
        )
        return record

    async def _emit(
        self, event_type: WorkflowEventType, execution: Execution, **payload: Any
    ) -> None:
        if execution.is_terminal and event_type not in _TERMINAL_EVENTS.values():
            return
        event = WorkflowEvent(
            type=event_type,
            workflow_id=execution.workflow_id,
            execution_id=execution.id,
            timestamp=utcnow(),
            payload=payload,
        )
        try:
            await asyncio.wait_for(
                self.event_sink.publish(event), self.config.event_publish_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Publishing {event_type.value} for execution {execution.id} timed out"
            )
        except Exception as exc:
            logger.error(
                f"Failed to publish {event_type.value} for execution {execution.id}: {exc}"
            )
