"""Concurrent execution of parallel step branches under completion policies."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Sequence, Set, Tuple

from .contracts import (
    BranchResult,
    Execution,
    ParallelPolicy,
    Step,
    StepExecution,
    StepStatus,
)
from .errors import ParallelExecutionError
from .state import State

logger = logging.getLogger(__name__)

StepRunner = Callable[[Step, Execution, State], Awaitable[StepExecution]]
Branch = Sequence[Step]


class ParallelBranchRunner:
    """Run lists of step sequences concurrently.

    Steps inside one branch run strictly in order and a branch stops at its
    first failed step. Results are always ordered by branch index. Branches
    are never cancelled: losers of a race and branches still running when a
    policy has decided keep running to completion in the background.
    """

    def __init__(self, step_runner: StepRunner) -> None:
        self._step_runner = step_runner
        self._background: Set[asyncio.Task] = set()

    async def run(
        self,
        branches: Sequence[Branch],
        execution: Execution,
        state: State,
        policy: ParallelPolicy = ParallelPolicy.ALL,
        threshold: float = 1.0,
        limit: int = 4,
    ) -> List[BranchResult]:
        """Dispatch to the method implementing ``policy``."""
        policy = ParallelPolicy(policy)
        logger.debug(
            f"Running {len(branches)} branch(es) for execution {execution.id} "
            f"with policy {policy.value}"
        )
        if policy is ParallelPolicy.ALL_OR_NOTHING:
            return await self.execute_all_or_nothing(branches, execution, state)
        if policy is ParallelPolicy.RACE:
            return await self.execute_race(branches, execution, state)
        if policy is ParallelPolicy.THRESHOLD:
            return await self.execute_with_threshold(
                branches, execution, state, threshold
            )
        if policy is ParallelPolicy.BOUNDED:
            return await self.execute_bounded(branches, execution, state, limit)
        return await self.execute(branches, execution, state)

    # ------------------------------------------------------------------
    async def execute(
        self, branches: Sequence[Branch], execution: Execution, state: State
    ) -> List[BranchResult]:
        """Run every branch to completion and collect all results."""
        return list(
            await asyncio.gather(
                *(
                    self._run_branch(index, branch, execution, state)
                    for index, branch in enumerate(branches)
                )
            )
        )

    async def execute_all_or_nothing(
        self, branches: Sequence[Branch], execution: Execution, state: State
    ) -> List[BranchResult]:
        """Run every branch; fail the aggregate if any branch failed.

        Raises:
            ParallelExecutionError: after all branches finished, when at least
                one of them failed.
        """
        results = await self.execute(branches, execution, state)
        failed = [result.index for result in results if not result.success]
        if failed:
            raise ParallelExecutionError(
                f"Parallel branches failed: {', '.join(map(str, failed))}", results
            )
        return results

    async def execute_race(
        self, branches: Sequence[Branch], execution: Execution, state: State
    ) -> List[BranchResult]:
        """Return the result of the first branch to settle."""
        if not branches:
            return []
        tasks = [
            asyncio.create_task(self._run_branch(index, branch, execution, state))
            for index, branch in enumerate(branches)
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            self._retain(task)
        winner = min(done, key=lambda task: task.result().index)
        logger.debug(
            f"Branch {winner.result().index} won the race for execution {execution.id}; "
            f"{len(pending)} branch(es) left running"
        )
        return [winner.result()]

    async def execute_with_threshold(
        self,
        branches: Sequence[Branch],
        execution: Execution,
        state: State,
        threshold: float,
    ) -> List[BranchResult]:
        """Run every branch; succeed when the success ratio reaches ``threshold``.

        Raises:
            ParallelExecutionError: when ``successes / total < threshold``.
        """
        results = await self.execute(branches, execution, state)
        if not results:
            return results
        successes = sum(1 for result in results if result.success)
        ratio = successes / len(results)
        if ratio < threshold:
            raise ParallelExecutionError(
                f"Only {successes} of {len(results)} branches succeeded "
                f"(threshold {threshold})",
                results,
            )
        return results

    async def execute_bounded(
        self,
        branches: Sequence[Branch],
        execution: Execution,
        state: State,
        limit: int,
    ) -> List[BranchResult]:
        """Run at most ``limit`` branches at once, admitting the rest FIFO."""
        queue: Deque[Tuple[int, Branch]] = deque(enumerate(branches))
        results: List[Optional[BranchResult]] = [None] * len(branches)

        async def worker() -> None:
            while queue:
                index, branch = queue.popleft()
                results[index] = await self._run_branch(index, branch, execution, state)

        workers = max(1, min(limit, len(branches)))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return [result for result in results if result is not None]

    # ------------------------------------------------------------------
    async def _run_branch(
        self, index: int, branch: Branch, execution: Execution, state: State
    ) -> BranchResult:
        result = BranchResult(index=index)
        for step in branch:
            try:
                step_execution = await self._step_runner(step, execution, state)
            except Exception as exc:
                logger.warning(
                    f"Branch {index} of execution {execution.id} raised at step "
                    f"{step.id}: {exc}"
                )
                result.success = False
                result.error = str(exc)
                return result
            result.results.append(step_execution)
            if step_execution.status == StepStatus.FAILED:
                result.success = False
                result.error = (
                    step_execution.error.message
                    if step_execution.error
                    else f"Step {step.id} failed"
                )
                return result
        return result

    def _retain(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for branches left running by race policies."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
