"""
Condition Evaluator - recursive boolean expressions over form values

Responsibilities:
- Evaluate a Condition tree (field / and / or / not / always) against a
  flat value map
- Apply operator semantics for field conditions

Design principles:
- Pure function: no state, no side effects (logging excepted)
- Deterministic: same input always produces same output
- Fail closed: unknown condition types and operators evaluate to False
  and log a warning; never raise
- A comparison operator without a comparison value is malformed and
  evaluates to False, negated operators included
"""

import logging
import re
from typing import Any, Mapping

from flow_engine.contracts import (
    COMPARISON_OPERATORS,
    AlwaysCondition,
    AndCondition,
    Condition,
    FieldCondition,
    NotCondition,
    OrCondition,
)
from flow_engine.utils.value_helpers import (
    is_empty,
    is_valid_email,
    is_valid_phone,
    to_number,
    to_text,
)

logger = logging.getLogger(__name__)


def evaluate_condition(condition: Condition, values: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition tree against form values.

    Args:
        condition: Condition to evaluate
        values: Current form values (field_key -> value)

    Returns:
        bool: Evaluation result. Malformed conditions return False.

    Examples:
        >>> evaluate_condition(FieldCondition('age', 'less_than', 18), {'age': 10})
        True
        >>> evaluate_condition(AndCondition(()), {})
        True
        >>> evaluate_condition(OrCondition(()), {})
        False
    """
    if isinstance(condition, AlwaysCondition):
        return bool(condition.value)

    if isinstance(condition, FieldCondition):
        return evaluate_field_condition(condition, values)

    if isinstance(condition, AndCondition):
        if not condition.conditions:
            return True  # Empty and = vacuous truth
        return all(evaluate_condition(sub, values) for sub in condition.conditions)

    if isinstance(condition, OrCondition):
        if not condition.conditions:
            return False  # Empty or = nothing matched
        return any(evaluate_condition(sub, values) for sub in condition.conditions)

    if isinstance(condition, NotCondition):
        return not evaluate_condition(condition.condition, values)

    # Unknown condition type - fail closed
    logger.warning(f"Unknown condition type: {getattr(condition, 'type', type(condition).__name__)}")
    return False


def evaluate_field_condition(condition: FieldCondition, values: Mapping[str, Any]) -> bool:
    """
    Evaluate a single field condition.

    Missing fields read as None: they do not exist, are empty, and never
    satisfy a numeric comparison.
    """
    field_value = values.get(condition.field_key)
    compare_value = condition.value
    operator = condition.operator

    if operator in COMPARISON_OPERATORS and compare_value is None:
        logger.warning(
            f"Operator '{operator}' on field '{condition.field_key}' has no comparison value"
        )
        return False

    # Existence / emptiness
    if operator == 'exists':
        return field_value is not None

    if operator == 'not_exists':
        return field_value is None

    if operator == 'is_empty':
        return is_empty(field_value)

    if operator == 'is_not_empty':
        return not is_empty(field_value)

    # Equality (text-coerced)
    if operator == 'equals':
        return to_text(field_value) == to_text(compare_value)

    if operator == 'not_equals':
        return to_text(field_value) != to_text(compare_value)

    # Containment (case-insensitive)
    if operator == 'contains':
        return to_text(compare_value).lower() in to_text(field_value).lower()

    if operator == 'not_contains':
        return to_text(compare_value).lower() not in to_text(field_value).lower()

    if operator == 'starts_with':
        return to_text(field_value).lower().startswith(to_text(compare_value).lower())

    if operator == 'ends_with':
        return to_text(field_value).lower().endswith(to_text(compare_value).lower())

    # Numeric comparison (NaN compares False)
    if operator == 'greater_than':
        return to_number(field_value) > to_number(compare_value)

    if operator == 'less_than':
        return to_number(field_value) < to_number(compare_value)

    if operator == 'greater_than_or_equal':
        return to_number(field_value) >= to_number(compare_value)

    if operator == 'less_than_or_equal':
        return to_number(field_value) <= to_number(compare_value)

    # Pattern / format
    if operator == 'matches_pattern':
        try:
            pattern = re.compile(to_text(compare_value))
        except re.error as e:
            logger.warning(f"Invalid pattern on field '{condition.field_key}': {e}")
            return False
        return pattern.search(to_text(field_value)) is not None

    if operator == 'is_email':
        return is_valid_email(to_text(field_value))

    if operator == 'is_phone':
        return is_valid_phone(to_text(field_value))

    # Unknown operator
    logger.warning(f"Unknown operator: {operator}")
    return False
