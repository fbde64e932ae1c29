"""
Rule Evaluator - one deterministic pass from rules + values to a snapshot

Responsibilities:
- Partition a rule list by kind
- Evaluate visibility, validation and progression in a fixed order
- Assemble one immutable EvaluationSnapshot

Evaluation order (never reorderable, later phases read earlier results):
1. Visibility: every known step/element starts visible; rules applied in
   ascending priority, each overwriting the previous value for its target
2. Validation: every applicable constraint checked, errors accumulated
3. Progression: permissive defaults, forced closed for next/submit when
   validation failed, then rules applied in ascending priority

Design principles:
- Pure functions: no state, no side effects (logging excepted)
- Deterministic: same (rules, values, ids) gives an equal snapshot apart
  from evaluated_at
- Malformed rules are skipped with a warning; siblings still evaluate
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from flow_engine.contracts import (
    ElementTarget,
    ProgressionRule,
    Rule,
    StepTarget,
    ValidationRule,
    VisibilityRule,
)
from flow_engine.core.condition_evaluator import evaluate_condition
from flow_engine.core.constraint_evaluator import evaluate_constraint
from flow_engine.results import (
    EvaluationSnapshot,
    FieldValidationError,
    ProgressionState,
    ValidationState,
    VisibilityState,
    freeze_mapping,
)

logger = logging.getLogger(__name__)

# Default blocked reasons
VALIDATION_NEXT_REASON = 'Please fix validation errors before continuing'
VALIDATION_SUBMIT_REASON = 'Please fix validation errors before submitting'
DEFAULT_NEXT_REASON = 'Progression not allowed'
DEFAULT_PREV_REASON = 'Cannot go back'
DEFAULT_SUBMIT_REASON = 'Submit not allowed'


@dataclass(frozen=True)
class EvaluationContext:
    """
    Inputs to one evaluation pass.

    Attributes:
        values: Current form values
        step_ids: Every step id in the flow (seeded as visible)
        element_ids: Every element id in the flow (seeded as visible)
    """
    values: Mapping[str, Any]
    step_ids: Tuple[str, ...] = ()
    element_ids: Tuple[str, ...] = ()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _by_priority(rules: Iterable[Rule]) -> List[Rule]:
    # sorted() is stable: equal priorities keep list order
    return sorted(rules, key=lambda rule: rule.priority or 0)


# =============================================================================
# Phase 1: Visibility
# =============================================================================

def evaluate_visibility_rules(
    rules: Sequence[VisibilityRule],
    values: Mapping[str, Any],
    step_ids: Iterable[str] = (),
    element_ids: Iterable[str] = ()
) -> VisibilityState:
    """
    Compute step and element visibility.

    Args:
        rules: Visibility rules, any order
        values: Current form values
        step_ids: Known step ids, all visible unless a rule says otherwise
        element_ids: Known element ids, likewise

    Returns:
        VisibilityState with one entry per known id plus any id a rule
        targets
    """
    steps: Dict[str, bool] = {step_id: True for step_id in step_ids}
    elements: Dict[str, bool] = {element_id: True for element_id in element_ids}

    for rule in _by_priority(rules):
        is_visible = evaluate_condition(rule.condition, values)
        target = rule.target

        if isinstance(target, StepTarget):
            steps[target.step_id] = is_visible
        elif isinstance(target, ElementTarget):
            elements[target.element_id] = is_visible
        else:
            logger.warning(f"Visibility rule '{rule.id}' has unknown target: {target!r}")

    return VisibilityState(steps=freeze_mapping(steps), elements=freeze_mapping(elements))


# =============================================================================
# Phase 2: Validation
# =============================================================================

def evaluate_validation_rules(
    rules: Sequence[ValidationRule],
    values: Mapping[str, Any]
) -> ValidationState:
    """
    Check every applicable validation rule and accumulate errors.

    A rule whose `when` condition is present and False is skipped entirely.

    Returns:
        ValidationState; is_valid is True when no error was produced
    """
    errors: Dict[str, List[FieldValidationError]] = {}
    all_errors: List[FieldValidationError] = []

    for rule in _by_priority(rules):
        if rule.when is not None and not evaluate_condition(rule.when, values):
            continue

        field_key = rule.target.field_key
        error = evaluate_constraint(rule.constraint, values.get(field_key), field_key)

        if error is not None:
            errors.setdefault(field_key, []).append(error)
            all_errors.append(error)

    return ValidationState(
        is_valid=not all_errors,
        errors=freeze_mapping({key: tuple(field_errors) for key, field_errors in errors.items()}),
        all_errors=tuple(all_errors),
    )


# =============================================================================
# Phase 3: Progression
# =============================================================================

def evaluate_progression_rules(
    rules: Sequence[ProgressionRule],
    values: Mapping[str, Any],
    validation: ValidationState
) -> ProgressionState:
    """
    Decide which navigation intents are allowed.

    Defaults are fully permissive. Failed validation closes next and submit
    before any rule runs; a rule can reopen them (last applied wins).
    A reason is present exactly when its flag is False.
    """
    can_go_next = True
    can_go_prev = True
    can_submit = True
    next_reason = None
    prev_reason = None
    submit_reason = None
    can_go_to_step: Dict[str, bool] = {}

    if not validation.is_valid:
        can_go_next = False
        next_reason = VALIDATION_NEXT_REASON
        can_submit = False
        submit_reason = VALIDATION_SUBMIT_REASON

    for rule in _by_priority(rules):
        allowed = evaluate_condition(rule.condition, values)

        if rule.intent == 'next-step':
            can_go_next = allowed
            next_reason = None if allowed else rule.blocked_reason or DEFAULT_NEXT_REASON

        elif rule.intent == 'prev-step':
            can_go_prev = allowed
            prev_reason = None if allowed else rule.blocked_reason or DEFAULT_PREV_REASON

        elif rule.intent == 'submit':
            can_submit = allowed
            submit_reason = None if allowed else rule.blocked_reason or DEFAULT_SUBMIT_REASON

        elif rule.intent == 'go-to-step':
            if rule.target_step_id:
                can_go_to_step[rule.target_step_id] = allowed
            else:
                logger.warning(f"Progression rule '{rule.id}' has no target step; skipped")

        else:
            logger.warning(f"Progression rule '{rule.id}' has unknown intent: {rule.intent}")

    return ProgressionState(
        can_go_next=can_go_next,
        can_go_prev=can_go_prev,
        can_submit=can_submit,
        next_blocked_reason=next_reason,
        prev_blocked_reason=prev_reason,
        submit_blocked_reason=submit_reason,
        can_go_to_step=freeze_mapping(can_go_to_step),
    )


# =============================================================================
# Entry points
# =============================================================================

def evaluate_rules(rules: Sequence[Rule], context: EvaluationContext) -> EvaluationSnapshot:
    """
    Evaluate all rules in deterministic order.

    Args:
        rules: Rules of any kind, in authored order
        context: Values plus the step/element id universe

    Returns:
        EvaluationSnapshot. An empty rule list yields the canonical
        permissive snapshot.
    """
    if not rules:
        return evaluate_empty_rules(context.step_ids, context.element_ids)

    visibility_rules = []
    validation_rules = []
    progression_rules = []

    for rule in rules:
        if isinstance(rule, VisibilityRule):
            visibility_rules.append(rule)
        elif isinstance(rule, ValidationRule):
            validation_rules.append(rule)
        elif isinstance(rule, ProgressionRule):
            progression_rules.append(rule)
        else:
            logger.warning(f"Unknown rule type '{getattr(rule, 'type', type(rule).__name__)}' "
                           f"(id={getattr(rule, 'id', None)}); ignored")

    visibility = evaluate_visibility_rules(
        visibility_rules, context.values, context.step_ids, context.element_ids
    )
    validation = evaluate_validation_rules(validation_rules, context.values)
    progression = evaluate_progression_rules(progression_rules, context.values, validation)

    logger.debug(
        f"Evaluated {len(rules)} rules: valid={validation.is_valid}, "
        f"next={progression.can_go_next}, submit={progression.can_submit}"
    )

    return EvaluationSnapshot(
        visibility=visibility,
        validation=validation,
        progression=progression,
        evaluated_at=_now_ms(),
    )


def evaluate_empty_rules(
    step_ids: Iterable[str] = (),
    element_ids: Iterable[str] = ()
) -> EvaluationSnapshot:
    """
    Canonical snapshot for a flow without rules.

    Everything known is visible, nothing is invalid, nothing is blocked.
    Flows authored before rules existed rely on this.
    """
    return EvaluationSnapshot(
        visibility=VisibilityState(
            steps=freeze_mapping({step_id: True for step_id in step_ids}),
            elements=freeze_mapping({element_id: True for element_id in element_ids}),
        ),
        validation=ValidationState(is_valid=True, errors=freeze_mapping({}), all_errors=()),
        progression=ProgressionState(),
        evaluated_at=_now_ms(),
    )
