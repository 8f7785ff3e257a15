"""Execution state tracking."""

from __future__ import annotations

from .models import Checkpoint, State, StateTransition
from .tracker import StateTracker

__all__ = ["Checkpoint", "State", "StateTransition", "StateTracker"]
