"""Structural validation of condition trees at definition time."""

from __future__ import annotations

from typing import List

from ..contracts import (
    CompositeCondition,
    Condition,
    ConditionOperator,
    LogicalOperator,
    SimpleCondition,
)

_OPERATORS = {operator.value for operator in ConditionOperator}
_LOGICAL_OPERATORS = {operator.value for operator in LogicalOperator}
_UNARY_OPERATORS = {ConditionOperator.IS_NULL.value, ConditionOperator.IS_NOT_NULL.value}


def validate_condition(condition: Condition) -> List[str]:
    """Return a list of structural problems found in ``condition``.

    An empty list means the condition can be evaluated. Errors of nested
    conditions are prefixed with their position, e.g. ``Sub-condition 1: ...``.
    """
    errors: List[str] = []

    if isinstance(condition, SimpleCondition):
        if not condition.operator:
            errors.append("Simple condition must have an operator")
        elif condition.operator not in _OPERATORS:
            errors.append(f"Unknown operator: {condition.operator}")
        if not condition.has_operand("left"):
            errors.append("Simple condition must have a left operand")
        if not condition.has_operand("right") and condition.operator not in _UNARY_OPERATORS:
            errors.append("Simple condition must have a right operand")
    elif isinstance(condition, CompositeCondition):
        if not condition.logical_operator:
            errors.append("Composite condition must have a logical operator")
        elif condition.logical_operator not in _LOGICAL_OPERATORS:
            errors.append(f"Unknown logical operator: {condition.logical_operator}")
        if not condition.conditions:
            errors.append("Composite condition must have sub-conditions")
        for index, sub_condition in enumerate(condition.conditions):
            errors.extend(
                f"Sub-condition {index}: {error}"
                for error in validate_condition(sub_condition)
            )
    else:
        errors.append("Condition must have a type")

    return errors


def is_valid_condition(condition: Condition) -> bool:
    return not validate_condition(condition)
