"""
Semantic contracts for the flow progression rule engine.

This module defines the immutable data structures that rules are authored
in, stored as, and evaluated from. These are NOT validators - they define
shape and semantics without enforcing rules. Structural checks live in
flow_engine.persistence (load time) and flow_engine.utils.ruleset_linter
(authoring time).

Design principles:
- Frozen dataclasses (immutable after creation)
- Sequences are tuples, never lists
- No dependencies on other modules
- Definition layer only (no evaluation)

Contents:
- Conditions: FieldCondition, AndCondition, OrCondition, NotCondition,
  AlwaysCondition, UnknownCondition
- ValidationConstraint
- Targets: StepTarget, ElementTarget, FieldTarget
- Rules: VisibilityRule, ValidationRule, ProgressionRule, UnknownRule
- RuleSet: the unit of persistence and transport
- FlowStep

Usage:
    from flow_engine.contracts import FieldCondition, VisibilityRule, StepTarget
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple, Union


# =============================================================================
# Vocabulary
# =============================================================================

# Operators that read only the field value; a comparison value is ignored
VALUELESS_OPERATORS = frozenset({
    'exists',
    'not_exists',
    'is_empty',
    'is_not_empty',
    'is_email',
    'is_phone',
})

# Operators that compare the field value against `value`
COMPARISON_OPERATORS = frozenset({
    'equals',
    'not_equals',
    'contains',
    'not_contains',
    'starts_with',
    'ends_with',
    'greater_than',
    'less_than',
    'greater_than_or_equal',
    'less_than_or_equal',
    'matches_pattern',
})

FIELD_OPERATORS = VALUELESS_OPERATORS | COMPARISON_OPERATORS

CONSTRAINT_TYPES = frozenset({
    'required',
    'min_length',
    'max_length',
    'min_value',
    'max_value',
    'pattern',
    'email',
    'phone',
    'url',
    'custom',
})

PROGRESSION_INTENTS = frozenset({
    'next-step',
    'prev-step',
    'go-to-step',
    'submit',
})


# =============================================================================
# Conditions
# =============================================================================

@dataclass(frozen=True)
class FieldCondition:
    """
    Compare one collected value against an operator (and optional value).

    Attributes:
        field_key: Key into the flat value map (e.g. 'email', 'age')
        operator: One of FIELD_OPERATORS. Anything else fails closed.
        value: Comparison value. None for VALUELESS_OPERATORS.

    Examples:
        >>> FieldCondition('age', 'greater_than_or_equal', 18)
        >>> FieldCondition('email', 'is_email')
    """
    field_key: str
    operator: str
    value: Any = None
    type: str = field(default='field', init=False)


@dataclass(frozen=True)
class AndCondition:
    """All sub-conditions true. An empty tuple is vacuously true."""
    conditions: Tuple['Condition', ...] = ()
    type: str = field(default='and', init=False)


@dataclass(frozen=True)
class OrCondition:
    """Any sub-condition true. An empty tuple is false."""
    conditions: Tuple['Condition', ...] = ()
    type: str = field(default='or', init=False)


@dataclass(frozen=True)
class NotCondition:
    condition: 'Condition'
    type: str = field(default='not', init=False)


@dataclass(frozen=True)
class AlwaysCondition:
    value: bool = True
    type: str = field(default='always', init=False)


@dataclass(frozen=True)
class UnknownCondition:
    """
    Placeholder for a condition whose `type` tag was not recognised.

    Kept (rather than dropped) so that a RuleSet authored by a newer
    builder survives a load/save cycle unchanged. Malformed payloads of a
    known tag (e.g. a field condition without fieldKey) land here too.
    Always evaluates False.

    Attributes:
        type: The unrecognised tag as found in the payload
        raw: The source payload, preserved verbatim for round-trip
    """
    type: str
    raw: Mapping[str, Any] = field(default_factory=dict)


Condition = Union[
    FieldCondition,
    AndCondition,
    OrCondition,
    NotCondition,
    AlwaysCondition,
    UnknownCondition,
]


# =============================================================================
# Validation constraints
# =============================================================================

@dataclass(frozen=True)
class ValidationConstraint:
    """
    A single field-validation constraint.

    Attributes:
        type: One of CONSTRAINT_TYPES
        value: Parameter for the constraint (length, bound, regex).
            None for required/email/phone/url/custom.
        message: Override for the default error message
    """
    type: str
    value: Any = None
    message: Optional[str] = None


# =============================================================================
# Targets
# =============================================================================

@dataclass(frozen=True)
class StepTarget:
    step_id: str
    kind: str = field(default='step', init=False)


@dataclass(frozen=True)
class ElementTarget:
    element_id: str
    kind: str = field(default='element', init=False)


@dataclass(frozen=True)
class FieldTarget:
    field_key: str
    kind: str = field(default='field', init=False)


VisibilityTarget = Union[StepTarget, ElementTarget]


# =============================================================================
# Rules
# =============================================================================

@dataclass(frozen=True)
class VisibilityRule:
    """
    Show or hide a step or element.

    The target is visible exactly when `condition` evaluates True. When
    several rules address the same target, the last one applied wins
    (rules are applied in ascending priority order, ties in list order).
    """
    target: VisibilityTarget
    condition: Condition
    priority: int = 0
    id: Optional[str] = None
    type: str = field(default='visibility', init=False)


@dataclass(frozen=True)
class ValidationRule:
    """
    Validate one field.

    Attributes:
        target: Field whose value is checked
        constraint: The check itself
        when: Optional gate. When present and False, the rule is skipped.
    """
    target: FieldTarget
    constraint: ValidationConstraint
    when: Optional[Condition] = None
    priority: int = 0
    id: Optional[str] = None
    type: str = field(default='validation', init=False)


@dataclass(frozen=True)
class ProgressionRule:
    """
    Allow or block one kind of navigation intent.

    Attributes:
        intent: One of PROGRESSION_INTENTS
        condition: Progression allowed exactly when this is True
        target_step_id: Required for 'go-to-step', ignored otherwise
        blocked_reason: Shown to the user when the rule blocks
    """
    intent: str
    condition: Condition
    target_step_id: Optional[str] = None
    blocked_reason: Optional[str] = None
    priority: int = 0
    id: Optional[str] = None
    type: str = field(default='progression', init=False)


@dataclass(frozen=True)
class UnknownRule:
    """
    Rule with an unrecognised `type` tag. Ignored by the evaluator,
    preserved verbatim on round-trip. Also used for rules whose tag is
    known but whose payload is malformed, so one bad rule never stops the
    rest of the set from loading.
    """
    type: str
    raw: Mapping[str, Any] = field(default_factory=dict)
    priority: int = 0
    id: Optional[str] = None


Rule = Union[VisibilityRule, ValidationRule, ProgressionRule, UnknownRule]


@dataclass(frozen=True)
class RuleSet:
    """
    The unit of persistence and transport.

    Attributes:
        id: Stable identifier of the rule set
        version: Monotonic version number, bumped on every authored change
        rules: Ordered rules. Order matters for ties in priority.
        name: Optional display name
    """
    id: str
    version: int = 1
    rules: Tuple[Rule, ...] = ()
    name: Optional[str] = None


# =============================================================================
# Steps
# =============================================================================

@dataclass(frozen=True)
class FlowStep:
    """
    One step of a flow.

    The engine only cares about the id, the step order (position in the
    list handed to the orchestrator) and element membership.
    """
    id: str
    name: Optional[str] = None
    element_ids: Tuple[str, ...] = ()
