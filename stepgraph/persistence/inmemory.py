"""In-memory implementation of the state repository."""

from __future__ import annotations

from typing import Dict

from .models import StateRecord
from .repository import StateRepository


class InMemoryStateRepository(StateRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._records: Dict[str, StateRecord] = {}

    async def save_state(self, record: StateRecord) -> None:
        self._records[record.execution_id] = record.model_copy(deep=True)

    async def load_state(self, execution_id: str) -> StateRecord | None:
        record = self._records.get(execution_id)
        return record.model_copy(deep=True) if record else None

    async def delete_state(self, execution_id: str) -> bool:
        return self._records.pop(execution_id, None) is not None

    async def list_states(self) -> list[StateRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]
