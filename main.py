"""
Console Test Harness for FlowOrchestrator

Simple console loop to walk a flow document before wiring it into a host.

Commands:
    set <key> <value>   record a field value
    next | prev         navigate
    goto <step_id>      jump to a step
    submit              submit the flow
    state               print snapshot details
    quit                leave
"""

import json
import logging
import sys

from flow_engine.core.flow_orchestrator import FlowOrchestrator
from flow_engine.intents import GoToStep, NextStep, PrevStep, Submit
from flow_engine.persistence import load_flow_document
from flow_engine.utils.ruleset_linter import lint_rule_set

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def parse_value(raw):
    """Read a console value as JSON when possible (numbers, booleans), else text."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def print_state(orchestrator):
    """Print the parts of the snapshot a renderer would use"""
    print("\n" + "-" * 60)
    print(f"Current step: {orchestrator.current_step_id}")
    print(f"Visible steps: {', '.join(orchestrator.visible_steps) or '(none)'}")
    print(f"Values: {orchestrator.values}")

    if not orchestrator.is_valid:
        print("Validation errors:")
        for field_key, messages in orchestrator.validation_errors.items():
            for message in messages:
                print(f"  - {field_key}: {message}")

    can = orchestrator.can_progress
    print(f"Can go next: {can.next}  prev: {can.prev}  submit: {can.submit}")
    if orchestrator.blocked_reason:
        print(f"Next blocked: {orchestrator.blocked_reason}")
    print("-" * 60)


def main(document_path="data/demo_flow.json"):
    """Run console test"""
    print_separator()
    print("FLOW ORCHESTRATOR - CONSOLE TEST")
    print_separator()

    try:
        document = load_flow_document(document_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"\nFailed to load flow: {e}")
        return 1

    for finding in lint_rule_set(document.rule_set, [step.id for step in document.steps]):
        print(f"Lint: {finding}")

    submitted = []

    orchestrator = FlowOrchestrator(
        steps=document.steps,
        rule_set=document.rule_set,
        interactive=True,
        on_submit=submitted.append,
        on_step_change=lambda step_id, index: print(f"\n>> Step {index + 1}: {step_id}"),
    )

    print_state(orchestrator)

    while not submitted:
        try:
            line = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nFlow interrupted by user")
            break

        if not line:
            continue

        command, _, rest = line.partition(" ")
        command = command.lower()

        if command in EXIT_COMMANDS:
            break

        if command == "set":
            key, _, raw_value = rest.partition(" ")
            if not key:
                print("Usage: set <key> <value>")
                continue
            orchestrator.set_value(key, parse_value(raw_value) if raw_value else None)
            print_state(orchestrator)
            continue

        if command == "state":
            print_state(orchestrator)
            continue

        intents = {
            "next": NextStep,
            "prev": PrevStep,
            "submit": Submit,
        }
        if command in intents:
            result = orchestrator.emit_intent(intents[command]())
        elif command == "goto":
            result = orchestrator.emit_intent(GoToStep(step_id=rest.strip()))
        else:
            print(f"Unknown command: {command}")
            continue

        if not result.executed:
            print(f"Blocked: {result.blocked_reason}")

    if submitted:
        print_separator()
        print("FLOW SUBMITTED")
        print_separator()
        print(json.dumps(submitted[0], indent=2, default=str))

    print_separator()
    print("Console test complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main(*sys.argv[1:2]))
