"""Persistence layer for tracked execution state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepgraphConfig, load_config
from ..state import State, StateTracker
from .inmemory import InMemoryStateRepository
from .models import StateRecord
from .repository import StateRepository
from .sqlite import SQLiteStateRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepgraphConfig] = None
) -> StateRepository:
    """Factory function to obtain a state repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``STEPGRAPH_DATABASE_URL``, or from
    loaded configuration. When no database is configured, an in-memory
    repository is returned. Every call builds a new repository.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("STEPGRAPH_DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        return InMemoryStateRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteStateRepository(path)
    raise ValueError(f"Unsupported database backend: {database_url}")


async def save_tracked_state(
    tracker: StateTracker, repository: StateRepository, execution_id: str
) -> StateRecord:
    """Export ``execution_id`` from the tracker and persist it."""
    data = tracker.export_state(execution_id)
    state = State.model_validate(data)
    record = StateRecord(
        execution_id=execution_id,
        status=state.status.value,
        current_step_id=state.current_step_id,
        updated_at=state.updated_at,
        data=state.model_dump(mode="json"),
    )
    await repository.save_state(record)
    return record


async def load_tracked_state(
    tracker: StateTracker, repository: StateRepository, execution_id: str
) -> Optional[State]:
    """Load a persisted state back into the tracker; ``None`` when unknown."""
    record = await repository.load_state(execution_id)
    if record is None:
        return None
    return tracker.import_state(record.data)


__all__ = [
    "StateRecord",
    "StateRepository",
    "InMemoryStateRepository",
    "SQLiteStateRepository",
    "get_repository",
    "save_tracked_state",
    "load_tracked_state",
]
