"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import utcnow


class StateRecord(BaseModel):
    """Serialized snapshot of one execution's tracked state."""

    execution_id: str
    status: str
    current_step_id: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)
