"""Condition evaluation, parsing and validation."""

from __future__ import annotations

from .evaluator import ConditionEvaluator, evaluate
from .expressions import and_, build_condition, not_, or_, parse_value
from .validation import is_valid_condition, validate_condition

__all__ = [
    "ConditionEvaluator",
    "evaluate",
    "build_condition",
    "parse_value",
    "and_",
    "or_",
    "not_",
    "validate_condition",
    "is_valid_condition",
]
