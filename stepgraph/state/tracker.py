"""Per-execution run state tracking with checkpoints."""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from ..contracts import Context, ExecutionStatus, utcnow
from ..errors import CheckpointNotFoundError, StateNotFoundError
from .models import Checkpoint, State, StateTransition

logger = logging.getLogger(__name__)

_LIVE_STATUSES = frozenset({ExecutionStatus.RUNNING, ExecutionStatus.WAITING})


class StateTracker:
    """Own the mutable ``State`` of every execution.

    Each execution id has its own lock so that unrelated runs never serialize
    on each other; the registry lock only guards creation and removal of
    entries.
    """

    def __init__(self) -> None:
        self._states: Dict[str, State] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Locking helpers
    def _lock_for(self, execution_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(execution_id)
            if lock is None:
                lock = self._locks[execution_id] = threading.RLock()
            return lock

    @contextmanager
    def _locked(self, execution_id: str, touch: bool = True) -> Iterator[State]:
        with self._lock_for(execution_id):
            state = self._states.get(execution_id)
            if state is None:
                raise StateNotFoundError(f"No state for execution {execution_id}")
            yield state
            if touch:
                state.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Lifecycle
    def create_state(
        self, execution_id: str, start_step_id: Optional[str], context: Context
    ) -> State:
        """Register a fresh RUNNING state seeded from ``context.variables``."""
        state = State(
            execution_id=execution_id,
            current_step_id=start_step_id,
            variables=copy.deepcopy(context.variables),
            status=ExecutionStatus.RUNNING,
        )
        with self._lock_for(execution_id):
            self._states[execution_id] = state
        logger.debug(f"Created state for execution {execution_id} at {start_step_id}")
        return state

    def get_state(self, execution_id: str) -> Optional[State]:
        return self._states.get(execution_id)

    def list_states(self) -> List[State]:
        with self._registry_lock:
            return list(self._states.values())

    def delete_state(self, execution_id: str) -> bool:
        with self._lock_for(execution_id):
            removed = self._states.pop(execution_id, None) is not None
        with self._registry_lock:
            self._locks.pop(execution_id, None)
        return removed

    def update_status(self, execution_id: str, status: ExecutionStatus) -> None:
        with self._locked(execution_id) as state:
            state.status = status

    def transition_to(
        self,
        execution_id: str,
        next_step_id: str,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """Move ``execution_id`` to ``next_step_id`` and record the transition."""
        with self._locked(execution_id) as state:
            previous = state.current_step_id
            entry = StateTransition(
                from_step=previous,
                to_step=next_step_id,
                reason=reason,
                metadata=metadata or {},
            )
            state.history.append(entry)
            if previous is not None:
                state.visited_steps.add(previous)
            state.current_step_id = next_step_id
        logger.debug(
            f"Execution {execution_id} transitioned {previous} -> {next_step_id}"
            + (f" ({reason})" if reason else "")
        )
        return entry

    # ------------------------------------------------------------------
    # Variables
    def get_variable(self, execution_id: str, name: str, default: Any = None) -> Any:
        with self._locked(execution_id, touch=False) as state:
            return state.variables.get(name, default)

    def set_variable(self, execution_id: str, name: str, value: Any) -> None:
        with self._locked(execution_id) as state:
            state.variables[name] = value

    def get_all_variables(self, execution_id: str) -> Dict[str, Any]:
        """Return a deep copy of the working variable bindings."""
        with self._locked(execution_id, touch=False) as state:
            return copy.deepcopy(state.variables)

    def bulk_set_variables(self, execution_id: str, values: Mapping[str, Any]) -> None:
        with self._locked(execution_id) as state:
            state.variables.update(values)

    # ------------------------------------------------------------------
    # Checkpoints
    def create_checkpoint(
        self,
        state: State,
        step_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Checkpoint:
        """Append a checkpoint holding an independent copy of the variables."""
        with self._lock_for(state.execution_id):
            checkpoint = Checkpoint(
                step_id=step_id,
                variables=copy.deepcopy(state.variables),
                metadata=dict(metadata or {}),
            )
            state.checkpoints.append(checkpoint)
        return checkpoint

    def get_checkpoints(self, execution_id: str) -> List[Checkpoint]:
        with self._locked(execution_id, touch=False) as state:
            return list(state.checkpoints)

    def latest_checkpoint(self, execution_id: str) -> Optional[Checkpoint]:
        with self._locked(execution_id, touch=False) as state:
            return state.checkpoints[-1] if state.checkpoints else None

    def restore_checkpoint(self, execution_id: str, checkpoint_id: str) -> State:
        """Reset current step and variables to a checkpoint.

        Transition history is left untouched.
        """
        with self._locked(execution_id) as state:
            checkpoint = next(
                (cp for cp in state.checkpoints if cp.id == checkpoint_id), None
            )
            if checkpoint is None:
                raise CheckpointNotFoundError(
                    f"Checkpoint {checkpoint_id} not found for execution {execution_id}"
                )
            state.current_step_id = checkpoint.step_id
            state.variables = copy.deepcopy(checkpoint.variables)
        logger.info(
            f"Restored execution {execution_id} to checkpoint {checkpoint_id} "
            f"at step {checkpoint.step_id}"
        )
        return state

    # ------------------------------------------------------------------
    # Durability hooks
    def export_state(self, execution_id: str) -> Dict[str, Any]:
        """Return a detached, lossless snapshot of the execution's state."""
        with self._locked(execution_id, touch=False) as state:
            return state.model_copy(deep=True).model_dump()

    def import_state(self, data: Union[Mapping[str, Any], State]) -> State:
        """Register a state previously produced by ``export_state``."""
        if isinstance(data, State):
            state = data.model_copy(deep=True)
        else:
            state = State.model_validate(copy.deepcopy(dict(data)))
        with self._lock_for(state.execution_id):
            self._states[state.execution_id] = state
        return state

    def cleanup(self, max_age: Union[timedelta, float]) -> List[str]:
        """Purge stale, non-live states; return the purged execution ids.

        ``max_age`` is a ``timedelta`` or a number of seconds.
        """
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        cutoff = utcnow() - max_age

        purged = [
            state.execution_id
            for state in self.list_states()
            if state.status not in _LIVE_STATUSES and state.last_activity() < cutoff
        ]
        for execution_id in purged:
            self.delete_state(execution_id)
        if purged:
            logger.info(f"Cleaned up {len(purged)} stale execution state(s)")
        return purged
