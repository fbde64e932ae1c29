"""
Authoring-time checks for rule sets.

The evaluator never rejects a rule set: malformed rules fail closed at
evaluation time. Authors still need to know about them, so this module
walks a RuleSet and lists what will not behave the way it reads.

Checks:
- Duplicate rule ids
- Rules or conditions that loaded as unknown / malformed
- Field conditions with an unknown operator, or missing the comparison
  value their operator needs
- Invalid regex in matches_pattern conditions and pattern constraints
- Unknown constraint types
- Custom constraints (never fail inside the engine; need external logic)
- Progression rules with an unknown intent, or go-to-step without target
- References to steps that are not in the flow (when step ids are given)
"""

import logging
import re
from typing import Iterable, List, Optional

from flow_engine.contracts import (
    COMPARISON_OPERATORS,
    CONSTRAINT_TYPES,
    FIELD_OPERATORS,
    PROGRESSION_INTENTS,
    AndCondition,
    Condition,
    FieldCondition,
    NotCondition,
    OrCondition,
    ProgressionRule,
    RuleSet,
    StepTarget,
    UnknownCondition,
    UnknownRule,
    ValidationRule,
    VisibilityRule,
)

logger = logging.getLogger(__name__)


def _label(rule, index: int) -> str:
    return f"Rule '{rule.id}'" if rule.id else f"Rule #{index}"


def _lint_condition(condition: Condition, label: str, findings: List[str]) -> None:
    if isinstance(condition, UnknownCondition):
        findings.append(f"{label}: unknown condition type '{condition.type}' (evaluates false)")
        return

    if isinstance(condition, (AndCondition, OrCondition)):
        for sub in condition.conditions:
            _lint_condition(sub, label, findings)
        return

    if isinstance(condition, NotCondition):
        _lint_condition(condition.condition, label, findings)
        return

    if isinstance(condition, FieldCondition):
        if condition.operator not in FIELD_OPERATORS:
            findings.append(
                f"{label}: unknown operator '{condition.operator}' on field "
                f"'{condition.field_key}' (evaluates false)"
            )
        elif condition.operator in COMPARISON_OPERATORS and condition.value is None:
            findings.append(
                f"{label}: operator '{condition.operator}' on field "
                f"'{condition.field_key}' has no comparison value"
            )
        elif condition.operator == 'matches_pattern':
            try:
                re.compile(str(condition.value))
            except re.error as e:
                findings.append(f"{label}: invalid pattern for '{condition.field_key}': {e}")


def lint_rule_set(rule_set: RuleSet, step_ids: Optional[Iterable[str]] = None) -> List[str]:
    """
    List problems in a rule set.

    Args:
        rule_set: Rule set to check
        step_ids: Steps in the flow. When given, step references are
            checked against them.

    Returns:
        list[str]: Findings, in rule order. Empty when nothing was found.
    """
    findings: List[str] = []
    known_steps = set(step_ids) if step_ids is not None else None
    seen_ids = set()

    for index, rule in enumerate(rule_set.rules):
        label = _label(rule, index)

        if rule.id:
            if rule.id in seen_ids:
                findings.append(f"Duplicate rule id '{rule.id}'")
            seen_ids.add(rule.id)

        if isinstance(rule, UnknownRule):
            findings.append(f"{label}: unknown or malformed rule of type '{rule.type}' (ignored)")
            continue

        if isinstance(rule, VisibilityRule):
            _lint_condition(rule.condition, label, findings)
            if (known_steps is not None and isinstance(rule.target, StepTarget)
                    and rule.target.step_id not in known_steps):
                findings.append(f"{label}: targets unknown step '{rule.target.step_id}'")

        elif isinstance(rule, ValidationRule):
            constraint = rule.constraint
            if rule.when is not None:
                _lint_condition(rule.when, label, findings)
            if constraint.type not in CONSTRAINT_TYPES:
                findings.append(f"{label}: unknown constraint type '{constraint.type}' (never fails)")
            elif constraint.type == 'custom':
                findings.append(
                    f"{label}: custom constraint on '{rule.target.field_key}' is not "
                    f"enforced by the engine and needs external validation"
                )
            elif constraint.type == 'pattern':
                try:
                    re.compile(str(constraint.value))
                except re.error as e:
                    findings.append(
                        f"{label}: invalid pattern for '{rule.target.field_key}' "
                        f"(every value will fail): {e}"
                    )

        elif isinstance(rule, ProgressionRule):
            _lint_condition(rule.condition, label, findings)
            if rule.intent not in PROGRESSION_INTENTS:
                findings.append(f"{label}: unknown progression intent '{rule.intent}'")
            elif rule.intent == 'go-to-step':
                if not rule.target_step_id:
                    findings.append(f"{label}: go-to-step rule without targetStepId (ignored)")
                elif known_steps is not None and rule.target_step_id not in known_steps:
                    findings.append(f"{label}: targets unknown step '{rule.target_step_id}'")

    if findings:
        logger.info(f"Rule set '{rule_set.id}' v{rule_set.version}: {len(findings)} lint findings")

    return findings


def assert_valid_rule_set(rule_set: RuleSet, step_ids: Optional[Iterable[str]] = None) -> None:
    """
    Raise if lint_rule_set() finds anything.

    Raises:
        ValueError: With every finding listed
    """
    findings = lint_rule_set(rule_set, step_ids)
    if findings:
        raise ValueError("Rule set validation failed:\n  - " + "\n  - ".join(findings))
