"""
Test rule set persistence: wire format parsing, serialization and the
versioned FlowDocumentStore.

Run with: python -m pytest tests/test_persistence.py
"""

import json
import os
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from flow_engine.contracts import (
    AlwaysCondition,
    AndCondition,
    FieldCondition,
    NotCondition,
    ProgressionRule,
    RuleSet,
    StepTarget,
    UnknownCondition,
    UnknownRule,
    ValidationRule,
    VisibilityRule,
)
from flow_engine.core.rule_evaluator import EvaluationContext, evaluate_rules
from flow_engine.persistence import (
    FlowDocumentStore,
    condition_from_dict,
    condition_to_dict,
    flow_document_from_dict,
    load_flow_document,
    rule_from_dict,
    rule_set_from_dict,
    rule_set_to_dict,
    step_from_dict,
    step_to_dict,
)

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEMO_FLOW = os.path.join(PROJECT_ROOT, 'data', 'demo_flow.json')

SIGNUP = {
    'id': 'signup',
    'name': 'Signup',
    'version': 3,
    'rules': [
        {
            'type': 'visibility',
            'id': 'r1',
            'priority': 2,
            'target': {'kind': 'step', 'stepId': 'consent'},
            'condition': {'type': 'field', 'fieldKey': 'age', 'operator': 'less_than', 'value': 18},
        },
        {
            'type': 'validation',
            'id': 'r2',
            'target': {'kind': 'field', 'fieldKey': 'email'},
            'constraint': {'type': 'email', 'message': 'Bad email'},
            'when': {'type': 'not', 'condition': {'type': 'always', 'value': False}},
        },
        {
            'type': 'progression',
            'id': 'r3',
            'intent': 'go-to-step',
            'targetStepId': 'review',
            'condition': {
                'type': 'and',
                'conditions': [
                    {'type': 'field', 'fieldKey': 'email', 'operator': 'is_email'},
                    {'type': 'always', 'value': True},
                ],
            },
            'blockedReason': 'Finish the form first',
        },
    ],
}


# ========================
# Parsing
# ========================

def test_rule_set_parses_into_contracts():
    rule_set = rule_set_from_dict(SIGNUP)

    assert rule_set.id == 'signup'
    assert rule_set.version == 3
    assert rule_set.name == 'Signup'

    visibility, validation, progression = rule_set.rules
    assert isinstance(visibility, VisibilityRule)
    assert visibility.target == StepTarget('consent')
    assert visibility.priority == 2
    assert visibility.condition == FieldCondition('age', 'less_than', 18)

    assert isinstance(validation, ValidationRule)
    assert validation.constraint.message == 'Bad email'
    assert validation.when == NotCondition(AlwaysCondition(False))

    assert isinstance(progression, ProgressionRule)
    assert progression.target_step_id == 'review'
    assert isinstance(progression.condition, AndCondition)


def test_round_trip_preserves_wire_form():
    assert rule_set_to_dict(rule_set_from_dict(SIGNUP)) == SIGNUP


def test_round_trip_preserves_evaluation():
    rule_set = rule_set_from_dict(SIGNUP)
    reloaded = rule_set_from_dict(json.loads(json.dumps(rule_set_to_dict(rule_set))))
    context = EvaluationContext(values={'age': 12, 'email': 'x'}, step_ids=('consent', 'review'))

    before = evaluate_rules(rule_set.rules, context).to_dict(include_timestamp=False)
    after = evaluate_rules(reloaded.rules, context).to_dict(include_timestamp=False)

    assert before == after


def test_defaults_are_omitted_on_output():
    rule_set = rule_set_from_dict({
        'id': 'minimal',
        'rules': [{'type': 'progression', 'intent': 'submit', 'condition': {'type': 'always', 'value': True}}],
    })

    assert rule_set.version == 1
    assert rule_set_to_dict(rule_set) == {
        'id': 'minimal',
        'version': 1,
        'rules': [{'type': 'progression', 'intent': 'submit', 'condition': {'type': 'always', 'value': True}}],
    }


# ========================
# Malformed content
# ========================

def test_unknown_rule_type_preserved():
    raw = {'type': 'analytics', 'id': 'track-1', 'event': 'step_viewed'}
    rule_set = rule_set_from_dict({'id': 'x', 'rules': [raw]})

    rule = rule_set.rules[0]
    assert isinstance(rule, UnknownRule)
    assert rule.id == 'track-1'
    assert rule_set_to_dict(rule_set)['rules'] == [raw]


def test_malformed_rule_loads_as_unknown():
    raw = {'type': 'visibility', 'id': 'broken', 'target': {'kind': 'planet'}, 'condition': {'type': 'always', 'value': True}}
    rule = rule_from_dict(raw)

    assert isinstance(rule, UnknownRule)
    assert rule.type == 'visibility'
    assert rule.raw == raw


def test_non_object_rule_loads_as_unknown():
    rule = rule_from_dict('not a rule')
    assert isinstance(rule, UnknownRule)
    assert rule.type == 'malformed'


def test_malformed_rule_does_not_affect_siblings():
    rule_set = rule_set_from_dict({
        'id': 'x',
        'rules': [
            {'type': 'validation', 'target': {'kind': 'field'}},
            {'type': 'visibility', 'target': {'kind': 'step', 'stepId': 'a'}, 'condition': {'type': 'always', 'value': False}},
        ],
    })
    snapshot = evaluate_rules(rule_set.rules, EvaluationContext(values={}, step_ids=('a',)))

    assert isinstance(rule_set.rules[0], UnknownRule)
    assert snapshot.visibility.steps['a'] is False


def test_unknown_condition_preserved_and_fails_closed():
    raw = {'type': 'xor', 'conditions': []}
    condition = condition_from_dict(raw)

    assert isinstance(condition, UnknownCondition)
    assert condition_to_dict(condition) == raw


@pytest.mark.parametrize("raw", [
    {'type': 'field', 'operator': 'equals'},
    {'type': 'always', 'value': 'yes'},
    {'type': 'not'},
    {'type': 'and', 'conditions': 'nope'},
])
def test_malformed_conditions_become_unknown(raw):
    assert isinstance(condition_from_dict(raw), UnknownCondition)


def test_unknown_operator_is_kept():
    condition = condition_from_dict({'type': 'field', 'fieldKey': 'x', 'operator': 'sounds_like', 'value': 'y'})
    assert condition == FieldCondition('x', 'sounds_like', 'y')


@pytest.mark.parametrize("payload, message", [
    ([], 'must be an object'),
    ({'rules': []}, "Missing 'id'"),
    ({'id': 'x', 'rules': {}}, "'rules' must be a list"),
    ({'id': 'x', 'version': '2'}, "'version' must be an integer"),
])
def test_structurally_broken_rule_sets_raise(payload, message):
    with pytest.raises(ValueError, match=message):
        rule_set_from_dict(payload)


def test_all_structural_errors_reported_together():
    with pytest.raises(ValueError) as exc_info:
        rule_set_from_dict({'version': True, 'rules': 'x'})

    message = str(exc_info.value)
    assert "Missing 'id'" in message
    assert "'version' must be an integer" in message
    assert "'rules' must be a list" in message


# ========================
# Steps and documents
# ========================

def test_step_round_trip():
    data = {'id': 'contact', 'name': 'Contact', 'elementIds': ['email-input']}
    assert step_to_dict(step_from_dict(data)) == data


def test_step_without_id_raises():
    with pytest.raises(ValueError):
        step_from_dict({'name': 'Nameless'})


def test_flow_document_without_rule_set_gets_empty_default():
    document = flow_document_from_dict({'steps': [{'id': 'a'}]})
    assert document.rule_set == RuleSet(id='default', version=1, rules=())
    assert document.interactive is False


def test_load_demo_flow_document():
    document = load_flow_document(DEMO_FLOW)

    assert [step.id for step in document.steps] == ['about-you', 'guardian', 'contact', 'review']
    assert document.rule_set.id == 'signup'
    assert not any(isinstance(rule, UnknownRule) for rule in document.rule_set.rules)


def test_load_missing_document_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_flow_document(str(tmp_path / 'missing.json'))


# ========================
# FlowDocumentStore
# ========================

def test_store_save_and_load_latest(tmp_path):
    store = FlowDocumentStore(base_dir=str(tmp_path / 'rulesets'))
    first = rule_set_from_dict(SIGNUP)
    second = RuleSet(id='signup', version=4, rules=first.rules[:1], name='Signup')

    path = store.save(first)
    store.save(second)

    assert path.endswith('signup_v003.json')
    assert store.list_versions('signup') == [3, 4]
    assert store.exists('signup') is True
    assert store.load('signup') == second
    assert store.load('signup', version=3) == first


def test_store_is_append_only(tmp_path):
    store = FlowDocumentStore(base_dir=str(tmp_path))
    rule_set = RuleSet(id='signup', version=1)
    store.save(rule_set)

    with pytest.raises(FileExistsError):
        store.save(rule_set)


def test_store_missing_versions(tmp_path):
    store = FlowDocumentStore(base_dir=str(tmp_path))
    store.save(RuleSet(id='signup', version=1))

    assert store.load('other') is None
    assert store.load('signup', version=9) is None
    assert store.exists('other') is False


def test_store_rejects_path_like_ids(tmp_path):
    store = FlowDocumentStore(base_dir=str(tmp_path))
    with pytest.raises(ValueError):
        store.save(RuleSet(id='../escape', version=1))
