"""
Constraint Evaluator - single field-validation checks

Each constraint kind has exactly one failure condition. A passing value
yields None; a failing value yields a FieldValidationError carrying either
the constraint's own message or a per-kind default.

'custom' constraints never fail here: they need logic that lives outside
the engine. They are reported by flow_engine.utils.ruleset_linter so the
gap is visible to authors rather than silently treated as validated.
"""

import logging
import re
from typing import Any, Optional

from flow_engine.contracts import ValidationConstraint
from flow_engine.results import FieldValidationError
from flow_engine.utils.value_helpers import (
    is_empty,
    is_valid_email,
    is_valid_phone,
    is_valid_url,
    to_number,
    to_text,
)

logger = logging.getLogger(__name__)


def default_message(constraint: ValidationConstraint, field_key: str) -> str:
    """Default error message for a constraint kind."""
    param = to_text(constraint.value)
    messages = {
        'required': f"{field_key} is required",
        'min_length': f"{field_key} must be at least {param} characters",
        'max_length': f"{field_key} must be at most {param} characters",
        'min_value': f"{field_key} must be at least {param}",
        'max_value': f"{field_key} must be at most {param}",
        'pattern': f"{field_key} is invalid",
        'email': f"{field_key} must be a valid email",
        'phone': f"{field_key} must be a valid phone number",
        'url': f"{field_key} must be a valid URL",
    }
    return messages.get(constraint.type, f"{field_key} is invalid")


def evaluate_constraint(
    constraint: ValidationConstraint,
    value: Any,
    field_key: str
) -> Optional[FieldValidationError]:
    """
    Check one value against one constraint.

    Args:
        constraint: Constraint to apply
        value: Current value of the field (None when missing)
        field_key: Field name, used in the error

    Returns:
        FieldValidationError if the value fails, None otherwise
    """
    if _fails(constraint, value, field_key):
        return FieldValidationError(
            field_key=field_key,
            constraint_type=constraint.type,
            message=constraint.message or default_message(constraint, field_key),
        )
    return None


def _fails(constraint: ValidationConstraint, value: Any, field_key: str) -> bool:
    kind = constraint.type
    text = to_text(value)

    if kind == 'required':
        return is_empty(value)

    if kind == 'min_length':
        return len(text) < to_number(constraint.value)

    if kind == 'max_length':
        return len(text) > to_number(constraint.value)

    if kind == 'min_value':
        return to_number(value) < to_number(constraint.value)

    if kind == 'max_value':
        return to_number(value) > to_number(constraint.value)

    if kind == 'pattern':
        try:
            pattern = re.compile(to_text(constraint.value))
        except re.error as e:
            # Malformed pattern counts as a failure, not a crash
            logger.warning(f"Invalid pattern constraint on '{field_key}': {e}")
            return True
        return pattern.search(text) is None

    if kind == 'email':
        return not is_empty(value) and not is_valid_email(text)

    if kind == 'phone':
        return not is_empty(value) and not is_valid_phone(text)

    if kind == 'url':
        return not is_empty(value) and not is_valid_url(text)

    if kind == 'custom':
        logger.debug(f"Custom constraint on '{field_key}' skipped (requires external logic)")
        return False

    logger.warning(f"Unknown constraint type on '{field_key}': {kind}")
    return False
