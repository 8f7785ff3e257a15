"""Runtime state models owned by the state tracker."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from ..contracts import ExecutionStatus, utcnow


class StateTransition(BaseModel):
    """Audit entry recorded each time an execution moves to another step."""

    from_step: Optional[str] = None
    to_step: str
    timestamp: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Checkpoint(BaseModel):
    """Point-in-time snapshot of an execution's variable bindings."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=utcnow)
    step_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class State(BaseModel):
    """Mutable per-execution run state."""

    execution_id: str
    current_step_id: Optional[str] = None
    visited_steps: Set[str] = Field(default_factory=set)
    variables: Dict[str, Any] = Field(default_factory=dict)
    history: List[StateTransition] = Field(default_factory=list)
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def last_activity(self) -> datetime:
        """Timestamp of the most recent transition, or creation time."""
        if self.history:
            return self.history[-1].timestamp
        return self.created_at
