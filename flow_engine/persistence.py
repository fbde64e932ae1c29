"""
RuleSet persistence and transport.

Rule sets are authored visually, stored externally and may be evaluated
on a different runtime than the one that authored them. This module is
the boundary between their JSON wire form and the frozen contracts.

Wire format (camelCase keys):
    {
      "id": "signup",
      "name": "Signup flow",          # optional
      "version": 3,
      "rules": [
        {"type": "visibility", "id": "r1", "priority": 1,
         "target": {"kind": "step", "stepId": "minor-consent"},
         "condition": {"type": "field", "fieldKey": "age",
                       "operator": "less_than", "value": 18}},
        {"type": "validation", "target": {"kind": "field", "fieldKey": "email"},
         "constraint": {"type": "email"}},
        {"type": "progression", "intent": "go-to-step",
         "targetStepId": "review", "condition": {"type": "always", "value": false},
         "blockedReason": "Finish the form first"}
      ]
    }

Loading policy:
- Structurally broken documents (not an object, missing id, rules not a
  list, non-integer version) raise ValueError
- A single malformed rule or condition loads as UnknownRule /
  UnknownCondition (logged), keeping its raw payload for round-trip, and
  evaluates closed

Contents:
- rule_set_from_dict() / rule_set_to_dict()
- rule_from_dict() / rule_to_dict(), condition_from_dict() / condition_to_dict()
- load_flow_document(): steps + rule set from one JSON file
- FlowDocumentStore: versioned, append-only rule set files
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flow_engine.contracts import (
    AlwaysCondition,
    AndCondition,
    Condition,
    ElementTarget,
    FieldCondition,
    FieldTarget,
    FlowStep,
    NotCondition,
    OrCondition,
    ProgressionRule,
    Rule,
    RuleSet,
    StepTarget,
    UnknownCondition,
    UnknownRule,
    ValidationConstraint,
    ValidationRule,
    VisibilityRule,
)

logger = logging.getLogger(__name__)


class MalformedPayload(ValueError):
    """A rule or condition payload that cannot be read. Caught internally."""


# =============================================================================
# Conditions
# =============================================================================

def condition_from_dict(data: Any) -> Condition:
    """
    Parse a condition payload.

    Never raises: unreadable payloads become UnknownCondition.
    """
    try:
        return _parse_condition(data)
    except MalformedPayload as e:
        logger.warning(f"Malformed condition loaded as unknown: {e}")
        raw = dict(data) if isinstance(data, Mapping) else {'value': data}
        tag = raw.get('type') if isinstance(raw.get('type'), str) else 'malformed'
        return UnknownCondition(type=tag, raw=raw)


def _parse_condition(data: Any) -> Condition:
    if not isinstance(data, Mapping):
        raise MalformedPayload(f"condition must be an object, got {type(data).__name__}")

    condition_type = data.get('type')

    if condition_type == 'field':
        field_key = data.get('fieldKey')
        operator = data.get('operator')
        if not isinstance(field_key, str) or not field_key:
            raise MalformedPayload("field condition missing 'fieldKey'")
        if not isinstance(operator, str):
            raise MalformedPayload(f"field condition on '{field_key}' missing 'operator'")
        # Unknown operators are kept; the evaluator fails them closed
        return FieldCondition(field_key=field_key, operator=operator, value=data.get('value'))

    if condition_type in ('and', 'or'):
        conditions = data.get('conditions', [])
        if not isinstance(conditions, list):
            raise MalformedPayload(f"'{condition_type}' condition needs a 'conditions' list")
        parsed = tuple(condition_from_dict(sub) for sub in conditions)
        if condition_type == 'and':
            return AndCondition(conditions=parsed)
        return OrCondition(conditions=parsed)

    if condition_type == 'not':
        if 'condition' not in data:
            raise MalformedPayload("'not' condition missing 'condition'")
        return NotCondition(condition=condition_from_dict(data['condition']))

    if condition_type == 'always':
        value = data.get('value')
        if not isinstance(value, bool):
            raise MalformedPayload("'always' condition needs a boolean 'value'")
        return AlwaysCondition(value=value)

    logger.warning(f"Unknown condition type loaded: {condition_type!r}")
    return UnknownCondition(type=str(condition_type), raw=dict(data))


def condition_to_dict(condition: Condition) -> dict:
    if isinstance(condition, UnknownCondition):
        return dict(condition.raw)

    if isinstance(condition, FieldCondition):
        data = {'type': 'field', 'fieldKey': condition.field_key, 'operator': condition.operator}
        if condition.value is not None:
            data['value'] = condition.value
        return data

    if isinstance(condition, (AndCondition, OrCondition)):
        return {
            'type': condition.type,
            'conditions': [condition_to_dict(sub) for sub in condition.conditions],
        }

    if isinstance(condition, NotCondition):
        return {'type': 'not', 'condition': condition_to_dict(condition.condition)}

    if isinstance(condition, AlwaysCondition):
        return {'type': 'always', 'value': condition.value}

    raise TypeError(f"Not a condition: {condition!r}")


# =============================================================================
# Rules
# =============================================================================

def rule_from_dict(data: Any) -> Rule:
    """
    Parse a rule payload.

    Never raises: unreadable payloads become UnknownRule.
    """
    try:
        return _parse_rule(data)
    except MalformedPayload as e:
        raw = dict(data) if isinstance(data, Mapping) else {'value': data}
        rule_id = raw.get('id') if isinstance(raw.get('id'), str) else None
        tag = raw.get('type') if isinstance(raw.get('type'), str) else 'malformed'
        logger.warning(f"Malformed rule {rule_id!r} loaded as unknown: {e}")
        return UnknownRule(type=tag, raw=raw, priority=_priority(raw), id=rule_id)


def _priority(data: Mapping[str, Any]) -> int:
    priority = data.get('priority', 0)
    if isinstance(priority, bool) or not isinstance(priority, (int, float)):
        return 0
    return int(priority)


def _parse_rule(data: Any) -> Rule:
    if not isinstance(data, Mapping):
        raise MalformedPayload(f"rule must be an object, got {type(data).__name__}")

    rule_type = data.get('type')
    rule_id = data.get('id')
    if rule_id is not None and not isinstance(rule_id, str):
        raise MalformedPayload("rule 'id' must be a string")

    priority = data.get('priority', 0)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise MalformedPayload(f"rule {rule_id!r} priority must be an integer")

    if rule_type == 'visibility':
        target = data.get('target')
        if not isinstance(target, Mapping):
            raise MalformedPayload(f"visibility rule {rule_id!r} missing 'target'")
        if target.get('kind') == 'step' and isinstance(target.get('stepId'), str):
            parsed_target = StepTarget(step_id=target['stepId'])
        elif target.get('kind') == 'element' and isinstance(target.get('elementId'), str):
            parsed_target = ElementTarget(element_id=target['elementId'])
        else:
            raise MalformedPayload(f"visibility rule {rule_id!r} has unreadable target {dict(target)}")
        return VisibilityRule(
            target=parsed_target,
            condition=condition_from_dict(data.get('condition')),
            priority=priority,
            id=rule_id,
        )

    if rule_type == 'validation':
        target = data.get('target')
        if not isinstance(target, Mapping) or not isinstance(target.get('fieldKey'), str):
            raise MalformedPayload(f"validation rule {rule_id!r} missing target fieldKey")
        constraint = data.get('constraint')
        if not isinstance(constraint, Mapping) or not isinstance(constraint.get('type'), str):
            raise MalformedPayload(f"validation rule {rule_id!r} missing constraint type")
        when = data.get('when')
        return ValidationRule(
            target=FieldTarget(field_key=target['fieldKey']),
            constraint=ValidationConstraint(
                type=constraint['type'],
                value=constraint.get('value'),
                message=constraint.get('message'),
            ),
            when=condition_from_dict(when) if when is not None else None,
            priority=priority,
            id=rule_id,
        )

    if rule_type == 'progression':
        intent = data.get('intent')
        if not isinstance(intent, str):
            raise MalformedPayload(f"progression rule {rule_id!r} missing 'intent'")
        return ProgressionRule(
            intent=intent,
            condition=condition_from_dict(data.get('condition')),
            target_step_id=data.get('targetStepId'),
            blocked_reason=data.get('blockedReason'),
            priority=priority,
            id=rule_id,
        )

    logger.warning(f"Unknown rule type loaded: {rule_type!r} (id={rule_id!r})")
    return UnknownRule(type=str(rule_type), raw=dict(data), priority=priority, id=rule_id)


def _rule_header(rule: Rule) -> Dict[str, Any]:
    data: Dict[str, Any] = {'type': rule.type}
    if rule.id is not None:
        data['id'] = rule.id
    if rule.priority:
        data['priority'] = rule.priority
    return data


def rule_to_dict(rule: Rule) -> dict:
    if isinstance(rule, UnknownRule):
        return dict(rule.raw)

    data = _rule_header(rule)

    if isinstance(rule, VisibilityRule):
        if isinstance(rule.target, StepTarget):
            data['target'] = {'kind': 'step', 'stepId': rule.target.step_id}
        else:
            data['target'] = {'kind': 'element', 'elementId': rule.target.element_id}
        data['condition'] = condition_to_dict(rule.condition)
        return data

    if isinstance(rule, ValidationRule):
        data['target'] = {'kind': 'field', 'fieldKey': rule.target.field_key}
        constraint: Dict[str, Any] = {'type': rule.constraint.type}
        if rule.constraint.value is not None:
            constraint['value'] = rule.constraint.value
        if rule.constraint.message is not None:
            constraint['message'] = rule.constraint.message
        data['constraint'] = constraint
        if rule.when is not None:
            data['when'] = condition_to_dict(rule.when)
        return data

    if isinstance(rule, ProgressionRule):
        data['intent'] = rule.intent
        if rule.target_step_id is not None:
            data['targetStepId'] = rule.target_step_id
        data['condition'] = condition_to_dict(rule.condition)
        if rule.blocked_reason is not None:
            data['blockedReason'] = rule.blocked_reason
        return data

    raise TypeError(f"Not a rule: {rule!r}")


# =============================================================================
# Rule sets
# =============================================================================

def rule_set_from_dict(data: Any) -> RuleSet:
    """
    Parse a rule set payload.

    Raises:
        ValueError: If the document itself is structurally broken. All
            problems are reported together.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"Rule set must be an object, got {type(data).__name__}")

    errors = []

    rule_set_id = data.get('id')
    if not isinstance(rule_set_id, str) or not rule_set_id:
        errors.append("Missing 'id'")

    version = data.get('version', 1)
    if isinstance(version, bool) or not isinstance(version, int):
        errors.append(f"'version' must be an integer, got {version!r}")

    rules = data.get('rules', [])
    if not isinstance(rules, list):
        errors.append("'rules' must be a list")

    name = data.get('name')
    if name is not None and not isinstance(name, str):
        errors.append("'name' must be a string")

    if errors:
        raise ValueError("Rule set validation failed:\n  - " + "\n  - ".join(errors))

    return RuleSet(
        id=rule_set_id,
        version=version,
        rules=tuple(rule_from_dict(rule) for rule in rules),
        name=name,
    )


def rule_set_to_dict(rule_set: RuleSet) -> dict:
    data: Dict[str, Any] = {'id': rule_set.id}
    if rule_set.name is not None:
        data['name'] = rule_set.name
    data['version'] = rule_set.version
    data['rules'] = [rule_to_dict(rule) for rule in rule_set.rules]
    return data


# =============================================================================
# Steps and flow documents
# =============================================================================

def step_from_dict(data: Any) -> FlowStep:
    if not isinstance(data, Mapping) or not isinstance(data.get('id'), str):
        raise ValueError(f"Step must be an object with a string 'id', got {data!r}")
    element_ids = data.get('elementIds') or []
    return FlowStep(id=data['id'], name=data.get('name'), element_ids=tuple(element_ids))


def step_to_dict(step: FlowStep) -> dict:
    data: Dict[str, Any] = {'id': step.id}
    if step.name is not None:
        data['name'] = step.name
    if step.element_ids:
        data['elementIds'] = list(step.element_ids)
    return data


@dataclass(frozen=True)
class FlowDocument:
    """Steps plus the rule set that governs them, as stored by the builder."""
    steps: Tuple[FlowStep, ...]
    rule_set: RuleSet
    interactive: bool = False


def flow_document_from_dict(data: Any) -> FlowDocument:
    if not isinstance(data, Mapping):
        raise ValueError("Flow document must be an object")
    steps = data.get('steps', [])
    if not isinstance(steps, list):
        raise ValueError("Flow document 'steps' must be a list")
    rule_set = data.get('ruleSet') or {'id': 'default', 'version': 1, 'rules': []}
    return FlowDocument(
        steps=tuple(step_from_dict(step) for step in steps),
        rule_set=rule_set_from_dict(rule_set),
        interactive=bool(data.get('interactive', False)),
    )


def load_flow_document(path: str) -> FlowDocument:
    """
    Load steps and rule set from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the document is structurally broken
    """
    document_path = Path(path)
    if not document_path.exists():
        raise FileNotFoundError(f"Flow document not found: {path}")

    with open(document_path, 'r') as f:
        data = json.load(f)

    document = flow_document_from_dict(data)
    logger.info(
        f"Loaded flow document {document_path.name}: {len(document.steps)} steps, "
        f"rule set '{document.rule_set.id}' v{document.rule_set.version}"
    )
    return document


# =============================================================================
# Versioned store
# =============================================================================

class FlowDocumentStore:
    """
    Versioned rule set files.

    Layout:
        rulesets/signup/
            signup_v001.json
            signup_v002.json
            ...

    Design:
    - Append-only: a saved version is never overwritten
    - Latest version = highest version number
    """

    VERSION_PATTERN = re.compile(r'_v(\d+)\.json$')

    def __init__(self, base_dir: str = "outputs/rulesets"):
        """
        Args:
            base_dir: Base directory for all rule sets
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"FlowDocumentStore initialized: {self.base_dir}")

    def _rule_set_dir(self, rule_set_id: str) -> Path:
        if not re.match(r'^[A-Za-z0-9_.-]+$', rule_set_id) or rule_set_id in ('.', '..'):
            raise ValueError(f"Rule set id not usable as a directory name: {rule_set_id!r}")
        return self.base_dir / rule_set_id

    def save(self, rule_set: RuleSet) -> str:
        """
        Save one version of a rule set.

        Returns:
            str: Absolute path to saved file

        Raises:
            FileExistsError: If this version was already saved
        """
        rule_set_dir = self._rule_set_dir(rule_set.id)
        rule_set_dir.mkdir(exist_ok=True)

        filepath = rule_set_dir / f"{rule_set.id}_v{rule_set.version:03d}.json"
        if filepath.exists():
            raise FileExistsError(
                f"Rule set version already exists: {filepath}. "
                f"Bump the version before saving."
            )

        with open(filepath, 'w') as f:
            json.dump(rule_set_to_dict(rule_set), f, indent=2, ensure_ascii=False)

        logger.info(f"Saved rule set '{rule_set.id}' v{rule_set.version}: {filepath.name}")
        return str(filepath.absolute())

    def list_versions(self, rule_set_id: str) -> List[int]:
        rule_set_dir = self._rule_set_dir(rule_set_id)
        if not rule_set_dir.exists():
            return []

        versions = []
        for path in rule_set_dir.glob(f"{rule_set_id}_v*.json"):
            match = self.VERSION_PATTERN.search(path.name)
            if match:
                versions.append(int(match.group(1)))
        return sorted(versions)

    def load(self, rule_set_id: str, version: Optional[int] = None) -> Optional[RuleSet]:
        """
        Load a rule set version (latest when version is None).

        Returns:
            RuleSet, or None if nothing was saved under this id/version
        """
        versions = self.list_versions(rule_set_id)
        if not versions:
            logger.warning(f"No saved versions for rule set '{rule_set_id}'")
            return None

        wanted = versions[-1] if version is None else version
        if wanted not in versions:
            logger.warning(f"Rule set '{rule_set_id}' has no version {wanted}")
            return None

        filepath = self._rule_set_dir(rule_set_id) / f"{rule_set_id}_v{wanted:03d}.json"
        with open(filepath, 'r') as f:
            data = json.load(f)

        logger.info(f"Loading rule set '{rule_set_id}' v{wanted}")
        return rule_set_from_dict(data)

    def exists(self, rule_set_id: str) -> bool:
        return bool(self.list_versions(rule_set_id))
