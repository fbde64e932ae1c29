"""
Test the Flask host routes with the Flask test client

Run with: python -m pytest tests/test_app.py
"""

import os
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import app as host


@pytest.fixture
def client(tmp_path):
    """Test client with no running flow and a throwaway rule set store"""
    host.current_flow = {
        'orchestrator': None,
        'submissions': [],
        'pending_actions': [],
        'step_changes': [],
    }
    host.app.config['TESTING'] = True
    host.app.config['RULESET_DIR'] = str(tmp_path / 'rulesets')
    with host.app.test_client() as test_client:
        yield test_client


def start_demo(client, interactive=True):
    response = client.post('/api/start', json={'interactive': interactive})
    assert response.status_code == 200
    return response.get_json()


def emit(client, intent):
    return client.post('/api/intent', json=intent).get_json()


# ========================
# Missing orchestrator
# ========================

@pytest.mark.parametrize("method, url", [
    ('get', '/api/state'),
    ('post', '/api/reset'),
    ('delete', '/api/values'),
    ('get', '/api/rules'),
])
def test_routes_without_flow_return_409(client, method, url):
    response = getattr(client, method)(url)
    assert response.status_code == 409
    assert response.get_json()['success'] is False
    assert 'Missing orchestrator' in response.get_json()['error']


def test_intent_without_flow_returns_409(client):
    response = client.post('/api/intent', json={'type': 'next-step'})
    assert response.status_code == 409


# ========================
# Start
# ========================

def test_start_demo_flow(client):
    data = start_demo(client)

    state = data['state']
    assert data['success'] is True
    assert data['lint'] == []
    assert state['currentStepId'] == 'about-you'
    assert state['visibleSteps'] == ['about-you', 'contact', 'review']
    assert state['interactive'] is True


def test_start_inline_document_defaults_to_edit_mode(client):
    document = {'steps': [{'id': 'one'}, {'id': 'two'}]}
    response = client.post('/api/start', json={'document': document})
    assert response.get_json()['state']['interactive'] is False

    result = emit(client, {'type': 'next-step'})['result']
    assert result['executed'] is False
    assert result['blockedReason'] == 'Edit mode - progression disabled'


def test_start_with_broken_document_returns_400(client):
    response = client.post('/api/start', json={'document': {'ruleSet': {'rules': []}}})
    assert response.status_code == 400
    assert "Missing 'id'" in response.get_json()['error']


def test_start_with_missing_file_returns_404(client, tmp_path):
    host.app.config['FLOW_DOCUMENT'] = str(tmp_path / 'nope.json')
    try:
        response = client.post('/api/start', json={})
    finally:
        host.app.config['FLOW_DOCUMENT'] = str(host.BASE_DIR / 'data' / 'demo_flow.json')
    assert response.status_code == 404


# ========================
# Values and intents
# ========================

def test_next_blocked_until_age_entered(client):
    start_demo(client)

    result = emit(client, {'type': 'next-step'})['result']
    assert result['executed'] is False
    assert result['blockedReason'] == 'Please enter your age'


def test_minor_walks_through_guardian_step(client):
    start_demo(client)

    state = client.post('/api/values', json={'values': {'name': 'Ada', 'age': 15}}).get_json()['state']
    assert state['visibleSteps'] == ['about-you', 'guardian', 'contact', 'review']

    data = emit(client, {'type': 'next-step'})
    assert data['result']['executed'] is True
    assert data['state']['currentStepId'] == 'guardian'


def test_adult_skips_guardian_step(client):
    start_demo(client)
    client.post('/api/values', json={'values': {'name': 'Ada', 'age': 30}})

    data = emit(client, {'type': 'next-step'})
    assert data['state']['currentStepId'] == 'contact'


def test_single_value_and_validation_errors(client):
    start_demo(client)

    state = client.post('/api/values', json={'key': 'email', 'value': 'not-an-email'}).get_json()['state']

    assert state['isValid'] is False
    assert state['validationErrors']['email'] == ['email must be a valid email']
    assert state['validationErrors']['name'] == ['Please tell us your name']


def test_values_payload_errors_return_400(client):
    start_demo(client)
    assert client.post('/api/values', json={}).status_code == 400
    assert client.post('/api/values', json={'values': ['x']}).status_code == 400


def test_go_to_review_needs_email(client):
    start_demo(client)
    client.post('/api/values', json={'values': {'name': 'Ada', 'age': 30}})

    result = emit(client, {'type': 'go-to-step', 'stepId': 'review'})['result']
    assert result['blockedReason'] == 'Cannot navigate to step review'

    client.post('/api/values', json={'key': 'email', 'value': 'ada@example.com'})
    data = emit(client, {'type': 'go-to-step', 'stepId': 'review'})
    assert data['result']['executed'] is True
    assert data['state']['currentStepId'] == 'review'


def test_submit_and_end_flow(client):
    start_demo(client)
    client.post('/api/values', json={'values': {'name': 'Ada', 'age': 30, 'email': 'ada@example.com'}})

    data = emit(client, {'type': 'submit', 'values': {'plan': 'pro'}})
    assert data['result']['executed'] is True
    assert data['submissions'] == 1

    ended = client.delete('/api/flow').get_json()
    assert ended['submissions'] == [{'name': 'Ada', 'age': 30, 'email': 'ada@example.com', 'plan': 'pro'}]
    assert client.get('/api/state').status_code == 409


def test_submit_blocked_without_contact(client):
    start_demo(client)
    client.post('/api/values', json={'values': {'name': 'Ada', 'age': 30}})

    result = emit(client, {'type': 'submit'})['result']
    assert result['executed'] is False
    assert result['blockedReason'] == 'We need an email address or phone number'


def test_unknown_intent_is_rejected_not_an_error(client):
    start_demo(client)

    data = emit(client, {'type': 'teleport'})

    assert data['result']['executed'] is False
    assert data['result']['blockedReason'] == 'Unknown intent type'
    assert data['state']['lastBlockedReason'] == 'Unknown intent type'


def test_button_action_external(client):
    start_demo(client, interactive=False)

    data = client.post('/api/action', json={'action': {'type': 'url', 'value': 'https://example.com'}}).get_json()

    assert data['result']['executed'] is True
    assert data['actions'] == [{'type': 'url', 'url': 'https://example.com', 'openNewTab': False}]


def test_button_action_without_intent_returns_400(client):
    start_demo(client)
    response = client.post('/api/action', json={'action': {'type': 'go-to-step'}})
    assert response.status_code == 400


# ========================
# Rules, steps, mode
# ========================

def test_replace_and_export_rules(client):
    start_demo(client)
    rule_set = {
        'id': 'tiny',
        'version': 2,
        'rules': [{'type': 'progression', 'intent': 'teleport', 'condition': {'type': 'always', 'value': True}}],
    }

    data = client.put('/api/rules', json={'ruleSet': rule_set}).get_json()
    assert data['state']['ruleSet'] == {'id': 'tiny', 'version': 2}
    assert len(data['lint']) == 1

    exported = client.get('/api/rules').get_json()
    assert exported['ruleSet'] == rule_set


def test_replace_rules_with_bad_payload_returns_400(client):
    start_demo(client)
    assert client.put('/api/rules', json={}).status_code == 400


def test_strict_rule_replacement_rejects_lint_findings(client):
    start_demo(client)
    rule_set = {
        'id': 'tiny',
        'rules': [{'type': 'visibility', 'target': {'kind': 'step', 'stepId': 'ghost'},
                   'condition': {'type': 'always', 'value': False}}],
    }

    response = client.put('/api/rules', json={'ruleSet': rule_set, 'strict': True})

    assert response.status_code == 400
    assert "targets unknown step 'ghost'" in response.get_json()['error']
    assert client.get('/api/rules').get_json()['ruleSet']['id'] == 'signup'


def test_strict_rule_replacement_accepts_clean_rules(client):
    start_demo(client)
    rule_set = {'id': 'tiny', 'version': 1, 'rules': []}

    response = client.put('/api/rules', json={'ruleSet': rule_set, 'strict': True})

    assert response.status_code == 200
    assert response.get_json()['lint'] == []


def test_save_rules_is_append_only(client):
    start_demo(client)

    first = client.post('/api/rules/save')
    assert first.status_code == 200
    assert first.get_json()['path'].endswith('signup_v001.json')

    assert client.post('/api/rules/save').status_code == 409


def test_replace_steps_resets_pointer(client):
    start_demo(client)
    data = client.put('/api/steps', json={'steps': [{'id': 'x'}, {'id': 'y'}]}).get_json()
    assert data['state']['currentStepId'] == 'x'
    assert data['stepChanges'] == [{'stepId': 'x', 'visibleIndex': 0}]


def test_step_changes_are_reported_once(client):
    start_demo(client)
    client.post('/api/values', json={'values': {'name': 'Ada', 'age': 30}})

    moved = emit(client, {'type': 'next-step'})
    assert moved['stepChanges'] == [{'stepId': 'contact', 'visibleIndex': 1}]

    assert client.get('/api/state').get_json()['stepChanges'] == []
    assert host.current_flow['step_changes'] == []


def test_mode_and_reset(client):
    start_demo(client, interactive=False)

    state = client.post('/api/mode', json={'interactive': True}).get_json()['state']
    assert state['interactive'] is True

    client.post('/api/values', json={'values': {'name': 'Ada', 'age': 30}})
    emit(client, {'type': 'next-step'})

    state = client.post('/api/reset').get_json()['state']
    assert state['currentStepId'] == 'about-you'
    assert state['values'] == {}
