"""Condition evaluation against game state.

Shared by the lorebook matcher (entry gating) and the rules engine.
A condition on a variable the state does not hold is always false.
Ordering operators only compare numbers, ``contains`` only strings, and
booleans never compare equal to numbers.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from world_engine.models import Condition, ConditionLogic


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    return actual == expected


def evaluate_condition(variables: Mapping[str, Any], condition: Condition) -> bool:
    if condition.variable_id not in variables:
        return False
    actual = variables[condition.variable_id]
    expected = condition.value
    op = condition.operator

    if op == "eq":
        return _equal(actual, expected)
    if op == "neq":
        return not _equal(actual, expected)
    if op == "contains":
        return isinstance(actual, str) and isinstance(expected, str) and expected in actual
    if not (_is_number(actual) and _is_number(expected)):
        return False
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    if op == "lt":
        return actual < expected
    if op == "lte":
        return actual <= expected
    return False


def check_conditions(
    variables: Mapping[str, Any],
    conditions: Iterable[Condition],
    logic: ConditionLogic = "all",
) -> bool:
    """True when the conditions pass under all/any logic. No conditions always pass."""
    conditions = list(conditions)
    if not conditions:
        return True
    if logic == "any":
        return any(evaluate_condition(variables, c) for c in conditions)
    return all(evaluate_condition(variables, c) for c in conditions)
