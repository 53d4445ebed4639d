"""
Edge routing conditions.

A condition is evaluated against the output of an edge's source node. An edge
whose condition is false is inactive for the run.
"""

import logging
import re
from typing import Any

from blockflow.core.models import Condition

logger = logging.getLogger(__name__)

_MISSING = object()


def get_path(value: Any, path: str | None) -> Any:
    """
    Walk a dotted path through dicts and lists.

    Missing segments yield ``None``; use ``has_path`` to tell an explicit
    ``None`` apart from an absent key.
    """
    result = _lookup(value, path)
    return None if result is _MISSING else result


def has_path(value: Any, path: str | None) -> bool:
    return _lookup(value, path) is not _MISSING


def _lookup(value: Any, path: str | None) -> Any:
    if not path:
        return value

    current = value
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def evaluate_condition(condition: Condition, data: Any) -> bool:
    """
    Evaluate a condition against a value.

    Unknown operators and type mismatches evaluate to False rather than
    raising, so a malformed condition deactivates its edge.
    """
    operator = condition.operator.lower()

    if operator == "and":
        return all(evaluate_condition(c, data) for c in condition.conditions)
    if operator == "or":
        return any(evaluate_condition(c, data) for c in condition.conditions)

    if operator == "exists":
        return has_path(data, condition.field) and get_path(data, condition.field) is not None
    if operator == "not_exists":
        return not has_path(data, condition.field) or get_path(data, condition.field) is None

    actual = get_path(data, condition.field)
    expected = condition.value

    try:
        if operator == "equals":
            return actual == expected
        if operator == "not_equals":
            return actual != expected
        if operator == "contains":
            return actual is not None and expected in actual
        if operator == "not_contains":
            return actual is None or expected not in actual
        if operator == "greater_than":
            return actual is not None and actual > expected
        if operator == "less_than":
            return actual is not None and actual < expected
        if operator == "regex":
            return isinstance(actual, str) and re.search(str(expected), actual) is not None
        if operator == "in":
            return expected is not None and actual in expected
        if operator == "not_in":
            return expected is None or actual not in expected
    except (TypeError, re.error) as e:
        logger.debug(f"Condition {operator} on '{condition.field}' not comparable: {e}")
        return False

    logger.warning(f"Unknown condition operator: {condition.operator}")
    return False
