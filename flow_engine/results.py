"""
Result types produced by the rule engine and the orchestrator.

These are the ONLY outputs of the engine:
- EvaluationSnapshot: one complete, immutable rule evaluation pass
- IntentResult: outcome of FlowOrchestrator.emit_intent()

Snapshots are frozen all the way down: maps are read-only proxies and
sequences are tuples, so the rendering layer can hold on to one without
being able to change what the orchestrator decides from.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from flow_engine.intents import FlowIntent


def freeze_mapping(data: Optional[Mapping]) -> Mapping:
    """Read-only copy of a mapping."""
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class FieldValidationError:
    """
    One failed validation constraint.

    Attributes:
        field_key: Field the constraint was checked against
        constraint_type: Constraint kind that failed (e.g. 'email')
        message: Human-readable message for the UI
    """
    field_key: str
    constraint_type: str
    message: str

    def to_dict(self) -> dict:
        return {
            'fieldKey': self.field_key,
            'constraintType': self.constraint_type,
            'message': self.message,
        }


@dataclass(frozen=True)
class VisibilityState:
    """
    Attributes:
        steps: step_id -> visible
        elements: element_id -> visible
    """
    steps: Mapping[str, bool]
    elements: Mapping[str, bool]

    def to_dict(self) -> dict:
        return {'steps': dict(self.steps), 'elements': dict(self.elements)}


@dataclass(frozen=True)
class ValidationState:
    """
    Attributes:
        is_valid: True when no rule produced an error
        errors: field_key -> tuple of errors, in evaluation order
        all_errors: Every error, flat, in evaluation order
    """
    is_valid: bool
    errors: Mapping[str, Tuple[FieldValidationError, ...]]
    all_errors: Tuple[FieldValidationError, ...]

    def to_dict(self) -> dict:
        return {
            'isValid': self.is_valid,
            'errors': {
                key: [error.to_dict() for error in field_errors]
                for key, field_errors in self.errors.items()
            },
            'allErrors': [error.to_dict() for error in self.all_errors],
        }


@dataclass(frozen=True)
class ProgressionState:
    can_go_next: bool = True
    can_go_prev: bool = True
    can_submit: bool = True
    next_blocked_reason: Optional[str] = None
    prev_blocked_reason: Optional[str] = None
    submit_blocked_reason: Optional[str] = None
    can_go_to_step: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict:
        return {
            'canGoNext': self.can_go_next,
            'nextBlockedReason': self.next_blocked_reason,
            'canGoPrev': self.can_go_prev,
            'prevBlockedReason': self.prev_blocked_reason,
            'canSubmit': self.can_submit,
            'submitBlockedReason': self.submit_blocked_reason,
            'canGoToStep': dict(self.can_go_to_step),
        }


@dataclass(frozen=True)
class EvaluationSnapshot:
    """
    Complete output of one rule evaluation pass.

    A snapshot is a pure function of (rules, values, step/element ids):
    two evaluations of the same triple compare equal via
    to_dict(include_timestamp=False).

    Attributes:
        visibility: Step/element visibility
        validation: Validation outcome
        progression: What navigation is currently allowed
        evaluated_at: Epoch milliseconds of the evaluation
    """
    visibility: VisibilityState
    validation: ValidationState
    progression: ProgressionState
    evaluated_at: int

    def to_dict(self, include_timestamp: bool = True) -> dict:
        data: Dict[str, Any] = {
            'visibility': self.visibility.to_dict(),
            'validation': self.validation.to_dict(),
            'progression': self.progression.to_dict(),
        }
        if include_timestamp:
            data['evaluatedAt'] = self.evaluated_at
        return data


@dataclass(frozen=True)
class CanProgress:
    """
    What progression actions the UI should show as enabled.

    Read-only projection of ProgressionState. UI reads this; UI never
    recomputes it.
    """
    next: bool
    prev: bool
    submit: bool
    go_to_step: Mapping[str, bool]

    def to_dict(self) -> dict:
        return {
            'next': self.next,
            'prev': self.prev,
            'submit': self.submit,
            'goToStep': dict(self.go_to_step),
        }


@dataclass(frozen=True)
class IntentResult:
    """
    Outcome of emitting an intent. Never silent.

    Attributes:
        executed: Whether the intent was carried out
        intent: The intent that was processed
        blocked_reason: Why it was not carried out (None when executed)
    """
    executed: bool
    intent: FlowIntent
    blocked_reason: Optional[str] = None

    def to_dict(self) -> dict:
        intent_dict = self.intent.to_dict() if hasattr(self.intent, 'to_dict') else None
        return {
            'executed': self.executed,
            'blockedReason': self.blocked_reason,
            'intent': intent_dict,
        }
