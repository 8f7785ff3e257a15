"""Boolean evaluation of workflow conditions against an execution context."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Callable, Dict

from ..contracts import (
    CompositeCondition,
    Condition,
    ConditionOperator,
    ConditionResult,
    Context,
    LogicalOperator,
    SimpleCondition,
    Variable,
    VariableRef,
)
from ..errors import EvaluationError

logger = logging.getLogger(__name__)

_VARIABLE_REFERENCE = re.compile(r"^\$\{([^{}]+)\}$")
_CONTEXT_ROOTS = frozenset(Context.model_fields)


def _strict_equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _compare(op: Callable[[Any, Any], bool], left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    try:
        return bool(op(left, right))
    except TypeError:
        return False


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _contains(haystack: Any, needle: Any) -> bool:
    if isinstance(haystack, str):
        return _as_text(needle) in haystack
    if isinstance(haystack, (list, tuple, set, frozenset)):
        return any(_strict_equals(item, needle) for item in haystack)
    if isinstance(haystack, Mapping):
        try:
            return needle in haystack
        except TypeError:
            return False
    return False


def _member(value: Any, collection: Any) -> bool:
    return any(_strict_equals(value, item) for item in collection)


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


class ConditionEvaluator:
    """Evaluate simple and composite conditions.

    Evaluation is pure: nothing in the context is modified.
    """

    def evaluate(self, condition: Condition, context: Context) -> bool:
        """Evaluate ``condition`` against ``context``.

        Raises:
            EvaluationError: if the condition is malformed (missing or unknown
                operator, empty composite, invalid regular expression).
        """
        if isinstance(condition, SimpleCondition):
            return self._evaluate_simple(condition, context)
        if isinstance(condition, CompositeCondition):
            return self._evaluate_composite(condition, context)
        raise EvaluationError(
            f"Unknown condition type: {type(condition).__name__}",
            getattr(condition, "id", None),
        )

    def evaluate_with_details(
        self, condition: Condition, context: Context
    ) -> ConditionResult:
        """Evaluate and return a ``ConditionResult``; never raises."""
        snapshot = {
            "variables": dict(context.variables),
            "metadata": dict(context.metadata),
        }
        try:
            result = self.evaluate(condition, context)
        except EvaluationError as exc:
            return ConditionResult(
                condition_id=condition.id,
                result=False,
                context=snapshot,
                error=str(exc),
            )
        return ConditionResult(condition_id=condition.id, result=result, context=snapshot)

    # ------------------------------------------------------------------
    def _evaluate_simple(self, condition: SimpleCondition, context: Context) -> bool:
        if not condition.operator:
            raise EvaluationError("Simple condition must have an operator", condition.id)
        try:
            operator = ConditionOperator(condition.operator)
        except ValueError:
            raise EvaluationError(
                f"Unknown operator: {condition.operator}", condition.id
            ) from None

        left = self.resolve_value(condition.left, context)
        right = self.resolve_value(condition.right, context)

        if operator is ConditionOperator.EQUALS:
            return _strict_equals(left, right)
        if operator is ConditionOperator.NOT_EQUALS:
            return not _strict_equals(left, right)
        if operator is ConditionOperator.GREATER_THAN:
            return _compare(lambda a, b: a > b, left, right)
        if operator is ConditionOperator.LESS_THAN:
            return _compare(lambda a, b: a < b, left, right)
        if operator is ConditionOperator.GREATER_THAN_OR_EQUAL:
            return _compare(lambda a, b: a >= b, left, right)
        if operator is ConditionOperator.LESS_THAN_OR_EQUAL:
            return _compare(lambda a, b: a <= b, left, right)
        if operator is ConditionOperator.CONTAINS:
            return _contains(left, right)
        if operator is ConditionOperator.NOT_CONTAINS:
            return not _contains(left, right)
        if operator is ConditionOperator.STARTS_WITH:
            return _as_text(left).startswith(_as_text(right))
        if operator is ConditionOperator.ENDS_WITH:
            return _as_text(left).endswith(_as_text(right))
        if operator is ConditionOperator.MATCHES_REGEX:
            try:
                pattern = re.compile(_as_text(right))
            except re.error as exc:
                raise EvaluationError(
                    f"Invalid regular expression {right!r}: {exc}", condition.id
                ) from exc
            return pattern.search(_as_text(left)) is not None
        if operator is ConditionOperator.IN:
            return _is_list(right) and _member(left, right)
        if operator is ConditionOperator.NOT_IN:
            return _is_list(right) and not _member(left, right)
        if operator is ConditionOperator.IS_NULL:
            return left is None
        if operator is ConditionOperator.IS_NOT_NULL:
            return left is not None
        raise EvaluationError(f"Unknown operator: {condition.operator}", condition.id)

    def _evaluate_composite(
        self, condition: CompositeCondition, context: Context
    ) -> bool:
        if not condition.logical_operator:
            raise EvaluationError(
                "Composite condition must have a logical operator", condition.id
            )
        if not condition.conditions:
            raise EvaluationError(
                "Composite condition must have sub-conditions", condition.id
            )
        try:
            operator = LogicalOperator(condition.logical_operator)
        except ValueError:
            raise EvaluationError(
                f"Unknown logical operator: {condition.logical_operator}", condition.id
            ) from None

        results = [self.evaluate(sub, context) for sub in condition.conditions]

        if operator is LogicalOperator.AND:
            return all(results)
        if operator is LogicalOperator.OR:
            return any(results)
        # NOT only looks at the first sub-condition; extra entries are ignored.
        return not results[0]

    # ------------------------------------------------------------------
    def resolve_value(self, value: Any, context: Context) -> Any:
        """Resolve an operand to a concrete value.

        Non-string literals pass through. ``VariableRef``/``Variable`` values
        and ``"${name}"`` strings are looked up in ``context.variables``. Dotted
        strings rooted at a context attribute (``metadata.tenant``,
        ``context.variables.count``) are walked segment by segment. Missing
        variables and path segments resolve to ``None``.
        """
        if value is None:
            return None
        if isinstance(value, VariableRef):
            return context.variables.get(value.name)
        if isinstance(value, Variable):
            return context.variables.get(value.name, value.default)
        if not isinstance(value, str):
            return value

        match = _VARIABLE_REFERENCE.match(value)
        if match:
            name = match.group(1).strip()
            if name in context.variables or "." not in name:
                return context.variables.get(name)
            return self.resolve_context_path(f"variables.{name}", context)

        if "." in value and self._is_context_path(value):
            return self.resolve_context_path(value, context)

        return value

    @staticmethod
    def _is_context_path(value: str) -> bool:
        segments = value.split(".")
        if segments[0] == "context":
            segments = segments[1:]
        return bool(segments) and segments[0] in _CONTEXT_ROOTS

    @staticmethod
    def resolve_context_path(path: str, context: Context) -> Any:
        segments = path.split(".")
        if segments and segments[0] == "context":
            segments = segments[1:]

        current: Any = context
        for segment in segments:
            if current is None:
                return None
            if isinstance(current, Mapping):
                current = current.get(segment)
            elif isinstance(current, (list, tuple)) and segment.isdigit():
                index = int(segment)
                current = current[index] if index < len(current) else None
            else:
                current = getattr(current, segment, None)
        return current


def evaluate(condition: Condition, context: Context) -> bool:
    """Module-level shortcut for ``ConditionEvaluator().evaluate``."""
    return ConditionEvaluator().evaluate(condition, context)


def variables_context(variables: Dict[str, Any], **fields: Any) -> Context:
    """Build a throwaway ``Context`` around ``variables``."""
    fields.setdefault("workflow_id", "adhoc")
    fields.setdefault("execution_id", "adhoc")
    return Context(variables=variables, **fields)
