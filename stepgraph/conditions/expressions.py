"""Small infix expression parser and condition builders.

Supports expressions such as ``x > 5``, ``name == 'John'``,
``${status} in ['open', 'pending']`` or ``metadata.tenant is not null``.
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Tuple

from ..contracts import (
    CompositeCondition,
    Condition,
    ConditionOperator,
    Context,
    LogicalOperator,
    SimpleCondition,
)

_SYMBOL_OPERATORS: List[Tuple[str, ConditionOperator]] = [
    ("==", ConditionOperator.EQUALS),
    ("!=", ConditionOperator.NOT_EQUALS),
    (">=", ConditionOperator.GREATER_THAN_OR_EQUAL),
    ("<=", ConditionOperator.LESS_THAN_OR_EQUAL),
    (">", ConditionOperator.GREATER_THAN),
    ("<", ConditionOperator.LESS_THAN),
]

# longest first so "not contains" wins over "contains"
_WORD_OPERATORS: List[Tuple[str, ConditionOperator]] = [
    ("not contains", ConditionOperator.NOT_CONTAINS),
    ("contains", ConditionOperator.CONTAINS),
    ("startsWith", ConditionOperator.STARTS_WITH),
    ("endsWith", ConditionOperator.ENDS_WITH),
    ("matches", ConditionOperator.MATCHES_REGEX),
    ("not in", ConditionOperator.NOT_IN),
    ("in", ConditionOperator.IN),
]

_NULL_CHECK = re.compile(r"^(?P<left>.+?)\s+is\s+(?P<negated>not\s+)?null$")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$")
_CONTEXT_ROOTS = frozenset(Context.model_fields) | {"context"}


def _find_operator(expression: str) -> Optional[Tuple[int, str, ConditionOperator]]:
    quote: Optional[str] = None
    for index, char in enumerate(expression):
        if quote:
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
            continue
        for token, operator in _SYMBOL_OPERATORS:
            if expression.startswith(token, index):
                return index, token, operator
        if index == 0 or not expression[index - 1].isspace():
            continue
        for token, operator in _WORD_OPERATORS:
            end = index + len(token)
            if expression.startswith(token, index) and (
                end < len(expression) and expression[end].isspace()
            ):
                return index, token, operator
    return None


def parse_value(raw: str) -> Any:
    """Turn an expression token into an operand."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    if value == "true":
        return True
    if value == "false":
        return False
    if value == "null":
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if value.startswith("[") and value.endswith("]"):
        try:
            return json.loads(value.replace("'", '"'))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid list literal: {value}") from exc
    if value.startswith("${") and value.endswith("}"):
        return value
    if _IDENTIFIER.match(value):
        if value.split(".")[0] in _CONTEXT_ROOTS and "." in value:
            return value
        return "${" + value + "}"
    return value


def build_condition(expression: str, condition_id: Optional[str] = None) -> SimpleCondition:
    """Parse ``expression`` into a ``SimpleCondition``.

    Raises:
        ValueError: if no operator or operand can be found.
    """
    text = expression.strip()
    extra = {"id": condition_id} if condition_id else {}

    null_check = _NULL_CHECK.match(text)
    if null_check:
        operator = (
            ConditionOperator.IS_NOT_NULL
            if null_check.group("negated")
            else ConditionOperator.IS_NULL
        )
        return SimpleCondition(
            operator=operator.value,
            left=parse_value(null_check.group("left")),
            **extra,
        )

    found = _find_operator(text)
    if found is None:
        raise ValueError(f"Invalid expression: {expression}")
    index, token, operator = found
    left, right = text[:index].strip(), text[index + len(token):].strip()
    if not left or not right:
        raise ValueError(f"Invalid expression: {expression}")

    return SimpleCondition(
        operator=operator.value,
        left=parse_value(left),
        right=parse_value(right),
        metadata={"expression": expression},
        **extra,
    )


def and_(*conditions: Condition) -> CompositeCondition:
    return CompositeCondition(
        logical_operator=LogicalOperator.AND.value, conditions=list(conditions)
    )


def or_(*conditions: Condition) -> CompositeCondition:
    return CompositeCondition(
        logical_operator=LogicalOperator.OR.value, conditions=list(conditions)
    )


def not_(condition: Condition) -> CompositeCondition:
    return CompositeCondition(
        logical_operator=LogicalOperator.NOT.value, conditions=[condition]
    )
