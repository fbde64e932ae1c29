"""
Flask host for the flow progression engine.

Owns one FlowOrchestrator per process and exposes its setters and intent
entry point over JSON. The engine itself is single-writer, so every route
touches the orchestrator under one lock.
"""

from flask import Flask, jsonify, request
import logging
import os
import threading
from pathlib import Path

from flow_engine.core.flow_orchestrator import FlowOrchestrator
from flow_engine.errors import MissingOrchestratorError
from flow_engine.intents import intent_from_dict
from flow_engine.persistence import (
    FlowDocumentStore,
    flow_document_from_dict,
    load_flow_document,
    rule_set_from_dict,
    rule_set_to_dict,
    step_from_dict,
)
from flow_engine.utils.button_actions import button_action_to_intent
from flow_engine.utils.ruleset_linter import assert_valid_rule_set, lint_rule_set

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

# Initialize Flask app
app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('FLOW_ENGINE_SECRET_KEY', 'flow-engine-dev-key')
app.config['FLOW_DOCUMENT'] = os.environ.get(
    'FLOW_ENGINE_DOCUMENT', str(BASE_DIR / 'data' / 'demo_flow.json')
)
app.config['RULESET_DIR'] = os.environ.get('FLOW_ENGINE_RULESET_DIR', 'outputs/rulesets')

# Global state for the current flow
flow_lock = threading.Lock()
current_flow = {
    'orchestrator': None,
    'submissions': [],
    'pending_actions': [],
    'step_changes': [],
}


def get_orchestrator_safe():
    """Current orchestrator, or None if no flow was started."""
    return current_flow['orchestrator']


def get_orchestrator() -> FlowOrchestrator:
    """
    Current orchestrator.

    Raises:
        MissingOrchestratorError: If no flow was started
    """
    orchestrator = get_orchestrator_safe()
    if orchestrator is None:
        raise MissingOrchestratorError()
    return orchestrator


def create_flow(document, interactive=None):
    """Create a new orchestrator for a flow document, replacing any current one."""
    global current_flow

    submissions = []
    pending_actions = []
    step_changes = []

    def record_submit(values):
        submissions.append(values)
        logger.info(f"Flow submitted with {len(values)} values")

    def record_step_change(step_id, index):
        step_changes.append({'stepId': step_id, 'visibleIndex': index})

    def record_rejection(intent, reason):
        logger.info(f"Rejected {getattr(intent, 'type', intent)}: {reason}")

    orchestrator = FlowOrchestrator(
        steps=document.steps,
        rule_set=document.rule_set,
        interactive=document.interactive if interactive is None else bool(interactive),
        on_submit=record_submit,
        on_step_change=record_step_change,
        on_intent_rejected=record_rejection,
        on_external_action=lambda intent: pending_actions.append(intent.to_dict()),
    )

    current_flow = {
        'orchestrator': orchestrator,
        'submissions': submissions,
        'pending_actions': pending_actions,
        'step_changes': step_changes,
    }
    return orchestrator


def state_response(extra=None, status=200):
    """State payload, draining the step changes recorded since the last response."""
    orchestrator = get_orchestrator()
    step_changes = list(current_flow['step_changes'])
    current_flow['step_changes'].clear()
    payload = {'success': True, 'state': orchestrator.to_dict(), 'stepChanges': step_changes}
    payload.update(extra or {})
    return jsonify(payload), status


@app.errorhandler(MissingOrchestratorError)
def handle_missing_orchestrator(error):
    logger.error(f"{error}")
    return jsonify({'success': False, 'error': str(error)}), 409


@app.errorhandler(ValueError)
def handle_bad_payload(error):
    logger.warning(f"Bad request payload: {error}")
    return jsonify({'success': False, 'error': str(error)}), 400


@app.route('/api/start', methods=['POST'])
def start_flow():
    """Start a flow from an inline document or the configured file."""
    data = request.get_json(silent=True) or {}

    with flow_lock:
        if 'document' in data:
            document = flow_document_from_dict(data['document'])
        else:
            try:
                document = load_flow_document(app.config['FLOW_DOCUMENT'])
            except FileNotFoundError as e:
                logger.error(f"Error starting flow: {e}")
                return jsonify({'success': False, 'error': str(e)}), 404

        create_flow(document, data.get('interactive'))
        return state_response({'lint': lint_rule_set(document.rule_set, [s.id for s in document.steps])})


@app.route('/api/state', methods=['GET'])
def get_state():
    with flow_lock:
        return state_response()


@app.route('/api/values', methods=['POST'])
def set_values():
    """Set one value ({key, value}) or several ({values: {...}})."""
    data = request.get_json(silent=True) or {}

    with flow_lock:
        orchestrator = get_orchestrator()
        if 'values' in data:
            if not isinstance(data['values'], dict):
                raise ValueError("'values' must be an object")
            orchestrator.set_values(data['values'])
        elif 'key' in data:
            orchestrator.set_value(str(data['key']), data.get('value'))
        else:
            raise ValueError("Provide 'key' and 'value', or 'values'")
        return state_response()


@app.route('/api/values', methods=['DELETE'])
def clear_values():
    with flow_lock:
        get_orchestrator().clear_values()
        return state_response()


@app.route('/api/intent', methods=['POST'])
def emit_intent():
    """Emit an intent in wire form ({type: 'next-step'}, ...)."""
    data = request.get_json(silent=True) or {}

    with flow_lock:
        orchestrator = get_orchestrator()
        intent = intent_from_dict(data)
        # Unknown intent types still go through the orchestrator so the
        # rejection is recorded like any other
        result = orchestrator.emit_intent(intent if intent is not None else data)
        return _intent_response(result)


@app.route('/api/action', methods=['POST'])
def emit_button_action():
    """Emit the intent for a button action config ({action: {...}})."""
    data = request.get_json(silent=True) or {}

    with flow_lock:
        orchestrator = get_orchestrator()
        action = data.get('action')
        intent = button_action_to_intent(action)
        if intent is None:
            raise ValueError(f"Button action has no intent: {action!r}")
        return _intent_response(orchestrator.emit_intent(intent))


def _intent_response(result):
    actions = list(current_flow['pending_actions'])
    current_flow['pending_actions'].clear()
    return state_response({
        'result': result.to_dict(),
        'actions': actions,
        'submissions': len(current_flow['submissions']),
    })


@app.route('/api/rules', methods=['PUT'])
def replace_rules():
    """Replace the rule set. With {strict: true}, any lint finding rejects it."""
    data = request.get_json(silent=True) or {}

    with flow_lock:
        orchestrator = get_orchestrator()
        rule_set = rule_set_from_dict(data.get('ruleSet'))
        step_ids = [step.id for step in orchestrator.steps]
        if data.get('strict'):
            assert_valid_rule_set(rule_set, step_ids)
        orchestrator.set_rule_set(rule_set)
        return state_response({'lint': lint_rule_set(rule_set, step_ids)})


@app.route('/api/rules', methods=['GET'])
def export_rules():
    with flow_lock:
        orchestrator = get_orchestrator()
        step_ids = [step.id for step in orchestrator.steps]
        return jsonify({
            'success': True,
            'ruleSet': rule_set_to_dict(orchestrator.rule_set),
            'lint': lint_rule_set(orchestrator.rule_set, step_ids),
        })


@app.route('/api/rules/save', methods=['POST'])
def save_rules():
    """Save the current rule set version to the configured store."""
    with flow_lock:
        orchestrator = get_orchestrator()
        store = FlowDocumentStore(app.config['RULESET_DIR'])
        try:
            path = store.save(orchestrator.rule_set)
        except FileExistsError as e:
            logger.warning(f"{e}")
            return jsonify({'success': False, 'error': str(e)}), 409
        return jsonify({'success': True, 'path': path})


@app.route('/api/steps', methods=['PUT'])
def replace_steps():
    data = request.get_json(silent=True) or {}

    with flow_lock:
        orchestrator = get_orchestrator()
        steps = data.get('steps')
        if not isinstance(steps, list):
            raise ValueError("'steps' must be a list")
        orchestrator.set_steps([step_from_dict(step) for step in steps])
        return state_response()


@app.route('/api/mode', methods=['POST'])
def set_mode():
    data = request.get_json(silent=True) or {}

    with flow_lock:
        get_orchestrator().set_interactive(bool(data.get('interactive', False)))
        return state_response()


@app.route('/api/reset', methods=['POST'])
def reset_flow():
    with flow_lock:
        get_orchestrator().reset()
        return state_response()


@app.route('/api/flow', methods=['DELETE'])
def end_flow():
    """Drop the current orchestrator."""
    global current_flow

    with flow_lock:
        submissions = current_flow['submissions']
        current_flow = {
            'orchestrator': None,
            'submissions': [],
            'pending_actions': [],
            'step_changes': [],
        }
        return jsonify({'success': True, 'submissions': submissions})


if __name__ == '__main__':
    os.makedirs(app.config['RULESET_DIR'], exist_ok=True)

    print("\n" + "="*60)
    print("FLOW ENGINE - WEB HOST")
    print("="*60)
    print("\nServer starting...")
    print("POST /api/start to begin a flow at http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=False, host='0.0.0.0', port=5000)
