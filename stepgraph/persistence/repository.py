"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from typing import Protocol

from .models import StateRecord


class StateRepository(Protocol):
    """Protocol for execution state persistence backends."""

    async def save_state(self, record: StateRecord) -> None:
        """Insert or replace the record for ``record.execution_id``."""

    async def load_state(self, execution_id: str) -> StateRecord | None:
        """Retrieve the record for an execution id."""

    async def delete_state(self, execution_id: str) -> bool:
        """Remove a record; return whether one existed."""

    async def list_states(self) -> list[StateRecord]:
        """Return all persisted records."""
