"""Base event sink interface for execution lifecycle events."""

from __future__ import annotations

import abc

from ..contracts import WorkflowEvent


class BaseEventSink(metaclass=abc.ABCMeta):
    """Abstract destination for ``WorkflowEvent`` records."""

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, event: WorkflowEvent) -> None:
        """Deliver a single event."""
        raise NotImplementedError
