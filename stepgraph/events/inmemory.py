"""In-memory event sink for testing and local runs."""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Union

from ..contracts import WorkflowEvent, WorkflowEventType
from .base import BaseEventSink

EventCallback = Callable[[WorkflowEvent], Union[None, Awaitable[None]]]


class InMemoryEventSink(BaseEventSink):
    """Keep published events in a list and notify subscribers."""

    def __init__(self) -> None:
        self.events: List[WorkflowEvent] = []
        self._subscribers: List[EventCallback] = []
        self._lock = asyncio.Lock()

    def subscribe(self, callback: EventCallback) -> None:
        self._subscribers.append(callback)

    async def publish(self, event: WorkflowEvent) -> None:
        """Record ``event`` and forward it to every subscriber."""
        async with self._lock:
            self.events.append(event)
        for callback in list(self._subscribers):
            result = callback(event)
            if inspect.isawaitable(result):
                await result

    def of_type(
        self, event_type: WorkflowEventType, execution_id: Optional[str] = None
    ) -> List[WorkflowEvent]:
        return [
            event
            for event in self.events
            if event.type == event_type
            and (execution_id is None or event.execution_id == execution_id)
        ]

    def clear(self) -> None:
        self.events.clear()
