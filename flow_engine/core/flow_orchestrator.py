"""
Flow Orchestrator - the single authority for step progression

Responsibilities:
- Own step order, the current step pointer and collected form values
- Re-evaluate rules whenever values, rules or steps change
- Keep the pointer on a visible step (auto-correction)
- Decide every intent through emit_intent() and report the outcome

Design principles:
- Single choke point: the step pointer only moves through emit_intent(),
  set_current_step_id() (authoring navigation) and auto-correction
- Never silent: emit_intent() always returns an IntentResult
- Snapshot always consistent with the latest committed state: every
  mutating setter ends with recompute()
- Single writer: no locking here, the host serialises access
- Thin orchestration layer: rule semantics live in rule_evaluator

Mode flag:
- interactive=False (authoring): next/prev/go-to/submit rejected up front
- interactive=True (end user running the flow): rule-gated
- External actions (url/scroll/phone/email/download) run in either mode
"""

import dataclasses
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from flow_engine.contracts import FlowStep, Rule, RuleSet
from flow_engine.core.rule_evaluator import EvaluationContext, evaluate_rules
from flow_engine.intents import (
    EXTERNAL_ACTION_TYPES,
    DialPhone,
    Download,
    FlowIntent,
    GoToStep,
    NextStep,
    OpenUrl,
    PrevStep,
    ScrollTo,
    SendEmail,
    Submit,
)
from flow_engine.results import CanProgress, EvaluationSnapshot, IntentResult

logger = logging.getLogger(__name__)

SubmitCallback = Callable[[Dict[str, Any]], None]
StepChangeCallback = Callable[[str, int], None]
RejectedCallback = Callable[[FlowIntent, str], None]
ExternalActionCallback = Callable[[FlowIntent], None]


class FlowOrchestrator:
    """
    Intent-gated step orchestrator for one flow instance.

    One instance = one owner. The UI reads the exposed state and emits
    intents; it never writes the pointer or the value map directly.
    """

    DEFAULT_RULE_SET_ID = 'default'

    # Fixed rejection reasons
    EDIT_MODE_REASON = 'Edit mode - progression disabled'
    EDIT_MODE_SUBMIT_REASON = 'Edit mode - submit disabled'
    VALIDATION_REASON = 'Please fix validation errors'
    VALIDATION_SUBMIT_REASON = 'Please fix validation errors before submitting'
    NEXT_BLOCKED_REASON = 'Progression blocked by rule'
    PREV_BLOCKED_REASON = 'Cannot go back'
    SUBMIT_BLOCKED_REASON = 'Submit not allowed'
    NO_NEXT_REASON = 'No next step available'
    NO_PREV_REASON = 'No previous step available'
    NOT_VISIBLE_REASON = 'Target step is not visible'
    UNKNOWN_INTENT_REASON = 'Unknown intent type'

    # Missing payload per external action type
    MISSING_PAYLOAD_REASONS = {
        OpenUrl: ('url', 'No URL provided'),
        ScrollTo: ('selector', 'No selector provided'),
        DialPhone: ('number', 'No phone number provided'),
        SendEmail: ('address', 'No email address provided'),
        Download: ('url', 'No download URL provided'),
    }

    def __init__(
        self,
        steps: Iterable[FlowStep] = (),
        initial_step_id: Optional[str] = None,
        rule_set: Optional[RuleSet] = None,
        interactive: bool = False,
        on_submit: Optional[SubmitCallback] = None,
        on_step_change: Optional[StepChangeCallback] = None,
        on_intent_rejected: Optional[RejectedCallback] = None,
        on_external_action: Optional[ExternalActionCallback] = None
    ):
        """
        Initialize orchestrator.

        Args:
            steps: Steps in flow order
            initial_step_id: Starting step (defaults to the first step)
            rule_set: Rules to enforce (defaults to an empty, permissive set)
            interactive: True when an end user is running the flow
            on_submit: Receives the merged value map on submit
            on_step_change: Receives (step_id, index in visible steps)
            on_intent_rejected: Receives (intent, reason); for logging only
            on_external_action: Performs url/scroll/phone/email/download
                side effects on behalf of the host

        Raises:
            TypeError: If a callback is provided but not callable
        """
        self._validate_callbacks(on_submit, on_step_change, on_intent_rejected, on_external_action)

        self.on_submit = on_submit
        self.on_step_change = on_step_change
        self.on_intent_rejected = on_intent_rejected
        self.on_external_action = on_external_action

        self._steps: Tuple[FlowStep, ...] = tuple(steps)
        self._rule_set: RuleSet = rule_set or RuleSet(id=self.DEFAULT_RULE_SET_ID)
        self._interactive = bool(interactive)
        self._values: Dict[str, Any] = {}
        self._last_intent_result: Optional[IntentResult] = None
        self._last_blocked_reason: Optional[str] = None

        step_ids = self._step_ids()
        if initial_step_id is not None and initial_step_id in step_ids:
            self._current_step_id: Optional[str] = initial_step_id
        else:
            if initial_step_id is not None:
                logger.warning(f"Initial step '{initial_step_id}' not in steps; using first step")
            self._current_step_id = step_ids[0] if step_ids else None

        self._visible_steps: Tuple[str, ...] = ()
        self._recompute(notify=False)

        logger.info(
            f"Flow orchestrator initialized: {len(self._steps)} steps, "
            f"{len(self._rule_set.rules)} rules, interactive={self._interactive}"
        )

    def _validate_callbacks(self, *callbacks):
        for callback in callbacks:
            if callback is not None and not callable(callback):
                raise TypeError(f"Orchestrator callbacks must be callable, got {type(callback).__name__}")

    # =========================================================================
    # Read surface
    # =========================================================================

    @property
    def steps(self) -> Tuple[FlowStep, ...]:
        return self._steps

    @property
    def current_step_id(self) -> Optional[str]:
        return self._current_step_id

    @property
    def current_step_index(self) -> int:
        """Index of the current step in the configured list (0 when unset)."""
        step_ids = self._step_ids()
        if self._current_step_id in step_ids:
            return step_ids.index(self._current_step_id)
        return 0

    @property
    def total_steps(self) -> int:
        return len(self._steps)

    @property
    def is_first_step(self) -> bool:
        """True on the first configured step."""
        return self._current_step_id is not None and self.current_step_index == 0

    @property
    def is_last_step(self) -> bool:
        """True on the last configured step (where next-step submits)."""
        return self._current_step_id is not None and self.current_step_index == len(self._steps) - 1

    @property
    def values(self) -> Dict[str, Any]:
        """Copy of the collected values."""
        return dict(self._values)

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rule_set.rules

    @property
    def interactive(self) -> bool:
        return self._interactive

    @property
    def snapshot(self) -> EvaluationSnapshot:
        return self._snapshot

    @property
    def visible_steps(self) -> Tuple[str, ...]:
        """Visible step ids in flow order. UI renders only these."""
        return self._visible_steps

    @property
    def validation_errors(self) -> Dict[str, List[str]]:
        """field_key -> error messages."""
        return {
            key: [error.message for error in field_errors]
            for key, field_errors in self._snapshot.validation.errors.items()
        }

    @property
    def is_valid(self) -> bool:
        return self._snapshot.validation.is_valid

    @property
    def can_progress(self) -> CanProgress:
        progression = self._snapshot.progression
        return CanProgress(
            next=progression.can_go_next,
            prev=progression.can_go_prev,
            submit=progression.can_submit,
            go_to_step=progression.can_go_to_step,
        )

    @property
    def blocked_reason(self) -> Optional[str]:
        """Why next-step is currently blocked, if it is."""
        return self._snapshot.progression.next_blocked_reason

    @property
    def last_intent_result(self) -> Optional[IntentResult]:
        return self._last_intent_result

    @property
    def last_blocked_reason(self) -> Optional[str]:
        return self._last_blocked_reason

    def to_dict(self) -> dict:
        """JSON-safe view of the orchestrator state for hosts."""
        return {
            'steps': [step.id for step in self._steps],
            'currentStepId': self._current_step_id,
            'currentStepIndex': self.current_step_index,
            'visibleSteps': list(self._visible_steps),
            'isFirstStep': self.is_first_step,
            'isLastStep': self.is_last_step,
            'interactive': self._interactive,
            'values': dict(self._values),
            'isValid': self.is_valid,
            'validationErrors': self.validation_errors,
            'canProgress': self.can_progress.to_dict(),
            'blockedReason': self.blocked_reason,
            'lastBlockedReason': self._last_blocked_reason,
            'lastIntentResult': (
                self._last_intent_result.to_dict() if self._last_intent_result else None
            ),
            'ruleSet': {'id': self._rule_set.id, 'version': self._rule_set.version},
            'snapshot': self._snapshot.to_dict(),
        }

    # =========================================================================
    # Setters (every one ends in recompute)
    # =========================================================================

    def set_value(self, key: str, value: Any) -> None:
        """Record one field value and re-evaluate."""
        self._values[key] = value
        self.recompute()

    def set_values(self, values: Mapping[str, Any]) -> None:
        """Record several field values with a single re-evaluation."""
        self._values.update(values)
        self.recompute()

    def clear_values(self) -> None:
        self._values = {}
        self.recompute()

    def set_rule_set(self, rule_set: RuleSet) -> None:
        self._rule_set = rule_set
        logger.info(f"Rule set '{rule_set.id}' v{rule_set.version} loaded ({len(rule_set.rules)} rules)")
        self.recompute()

    def set_rules(self, rules: Iterable[Rule]) -> None:
        """Replace the rules, keeping the current rule set's id and version."""
        self.set_rule_set(dataclasses.replace(self._rule_set, rules=tuple(rules)))

    def set_interactive(self, interactive: bool) -> None:
        self._interactive = bool(interactive)
        logger.info(f"Interactive mode {'on' if self._interactive else 'off'}")

    def set_steps(self, steps: Iterable[FlowStep]) -> None:
        """
        Replace the step list.

        If the current step no longer exists, the pointer resets to the new
        first step (then auto-correction applies if that step is hidden).
        """
        self._steps = tuple(steps)
        step_ids = self._step_ids()

        reset = False
        if self._current_step_id not in step_ids:
            self._current_step_id = step_ids[0] if step_ids else None
            reset = True

        pointer_after_reset = self._current_step_id
        self.recompute()

        # Auto-correction already notified if it moved the pointer
        if reset and self._current_step_id is not None and self._current_step_id == pointer_after_reset:
            self._notify_step_change(self._current_step_id)

    def set_current_step_id(self, step_id: str) -> bool:
        """
        Direct step selection for authoring navigation (not for buttons).

        Unknown step ids are ignored.

        Returns:
            True if the pointer moved
        """
        if step_id not in self._step_ids():
            logger.warning(f"Ignoring navigation to unknown step '{step_id}'")
            return False
        self._move_to(step_id)
        return True

    def reset(self) -> None:
        """Clear values and feedback, return to the first step."""
        self._values = {}
        self._last_intent_result = None
        self._last_blocked_reason = None

        step_ids = self._step_ids()
        previous = self._current_step_id
        self._current_step_id = step_ids[0] if step_ids else None
        pointer_after_reset = self._current_step_id
        self.recompute()

        # Auto-correction already notified if it moved the pointer
        if (self._current_step_id is not None and self._current_step_id != previous
                and self._current_step_id == pointer_after_reset):
            self._notify_step_change(self._current_step_id)

        logger.info("Flow reset")

    def recompute(self) -> EvaluationSnapshot:
        """Re-evaluate rules against the current state and auto-correct."""
        return self._recompute(notify=True)

    # =========================================================================
    # Intent handling
    # =========================================================================

    def emit_intent(self, intent: FlowIntent) -> IntentResult:
        """
        Process an intent. The ONLY way to trigger progression or submit.

        Args:
            intent: Intent emitted by the UI layer

        Returns:
            IntentResult; never None, never raises for rejected intents
        """
        if isinstance(intent, EXTERNAL_ACTION_TYPES):
            return self._handle_external_action(intent)

        if isinstance(intent, NextStep):
            return self._handle_next(intent)

        if isinstance(intent, PrevStep):
            return self._handle_prev(intent)

        if isinstance(intent, GoToStep):
            return self._handle_go_to(intent)

        if isinstance(intent, Submit):
            return self._handle_submit(intent)

        return self._result(intent, False, self.UNKNOWN_INTENT_REASON)

    def _handle_next(self, intent: NextStep) -> IntentResult:
        if not self._interactive:
            return self._result(intent, False, self.EDIT_MODE_REASON)

        progression = self._snapshot.progression
        if not progression.can_go_next:
            return self._result(intent, False, progression.next_blocked_reason or self.NEXT_BLOCKED_REASON)

        if not self.is_valid:
            return self._result(intent, False, self.VALIDATION_REASON)

        if self._current_step_id is None:
            return self._result(intent, False, self.NO_NEXT_REASON)

        if not self.is_last_step:
            # A hidden next step resolves like auto-correction: forward, then back
            target = self._nearest_visible_step(self.current_step_index + 1, 1)
            if target is not None:
                self._move_to(target)
            return self._result(intent, True)

        # Last configured step: implicit submit
        self._fire_submit(dict(self._values))
        return self._result(intent, True)

    def _handle_prev(self, intent: PrevStep) -> IntentResult:
        if not self._interactive:
            return self._result(intent, False, self.EDIT_MODE_REASON)

        progression = self._snapshot.progression
        if not progression.can_go_prev:
            return self._result(intent, False, progression.prev_blocked_reason or self.PREV_BLOCKED_REASON)

        if self._current_step_id is None or self.is_first_step:
            return self._result(intent, False, self.NO_PREV_REASON)

        target = self._nearest_visible_step(self.current_step_index - 1, -1)
        if target is not None:
            self._move_to(target)
        return self._result(intent, True)

    def _handle_go_to(self, intent: GoToStep) -> IntentResult:
        if not self._interactive:
            return self._result(intent, False, self.EDIT_MODE_REASON)

        if self._snapshot.progression.can_go_to_step.get(intent.step_id) is False:
            return self._result(intent, False, f"Cannot navigate to step {intent.step_id}")

        if intent.step_id not in self._visible_steps:
            return self._result(intent, False, self.NOT_VISIBLE_REASON)

        self._move_to(intent.step_id)
        return self._result(intent, True)

    def _handle_submit(self, intent: Submit) -> IntentResult:
        if not self._interactive:
            return self._result(intent, False, self.EDIT_MODE_SUBMIT_REASON)

        progression = self._snapshot.progression
        if not progression.can_submit:
            return self._result(intent, False, progression.submit_blocked_reason or self.SUBMIT_BLOCKED_REASON)

        if not self.is_valid:
            return self._result(intent, False, self.VALIDATION_SUBMIT_REASON)

        merged = dict(self._values)
        merged.update(intent.values or {})
        self._fire_submit(merged)
        return self._result(intent, True)

    def _handle_external_action(self, intent: FlowIntent) -> IntentResult:
        attribute, missing_reason = self.MISSING_PAYLOAD_REASONS[type(intent)]
        if not getattr(intent, attribute):
            return self._result(intent, False, missing_reason)

        logger.info(f"External action: {intent.type} {getattr(intent, attribute)}")
        if self.on_external_action is not None:
            self.on_external_action(intent)
        return self._result(intent, True)

    def _result(self, intent: FlowIntent, executed: bool, blocked_reason: Optional[str] = None) -> IntentResult:
        result = IntentResult(executed=executed, intent=intent, blocked_reason=blocked_reason)
        self._last_intent_result = result

        if executed:
            self._last_blocked_reason = None
        else:
            self._last_blocked_reason = blocked_reason
            intent_type = getattr(intent, 'type', type(intent).__name__)
            logger.info(f"Intent rejected: {intent_type} ({blocked_reason})")
            if self.on_intent_rejected is not None:
                self.on_intent_rejected(intent, blocked_reason)

        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _step_ids(self) -> List[str]:
        return [step.id for step in self._steps]

    def _element_ids(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for step in self._steps:
            for element_id in step.element_ids:
                seen.setdefault(element_id, None)
        return tuple(seen)

    def _recompute(self, notify: bool) -> EvaluationSnapshot:
        context = EvaluationContext(
            values=dict(self._values),
            step_ids=tuple(self._step_ids()),
            element_ids=self._element_ids(),
        )
        self._snapshot = evaluate_rules(self._rule_set.rules, context)

        visibility = self._snapshot.visibility.steps
        self._visible_steps = tuple(
            step.id for step in self._steps if visibility.get(step.id) is not False
        )

        self._auto_correct(notify)
        return self._snapshot

    def _auto_correct(self, notify: bool) -> None:
        """
        Move the pointer off a step that just became hidden.

        Searches forward from the current index first, then backward. With
        no visible step at all the pointer is left where it is.
        """
        current = self._current_step_id
        if current is None or current in self._visible_steps:
            return

        step_ids = self._step_ids()
        if current not in step_ids:
            return

        if not self._visible_steps:
            logger.warning(f"No visible steps; pointer left on hidden step '{current}'")
            return

        target = self._nearest_visible_step(step_ids.index(current), 1)

        logger.info(f"Step '{current}' hidden; relocating to '{target}'")
        self._move_to(target, notify=notify)

    def _nearest_visible_step(self, index: int, direction: int) -> Optional[str]:
        """
        Visible step nearest to position `index`, searching in `direction`
        (+1 forward, -1 backward) first and then the other way.
        """
        step_ids = self._step_ids()
        if direction > 0:
            candidates = step_ids[index:] + list(reversed(step_ids[:index]))
        else:
            candidates = list(reversed(step_ids[:index + 1])) + step_ids[index + 1:]

        visible = set(self._visible_steps)
        for step_id in candidates:
            if step_id in visible:
                return step_id
        return None

    def _move_to(self, step_id: str, notify: bool = True) -> None:
        if step_id == self._current_step_id:
            return
        logger.info(f"Step change: {self._current_step_id} -> {step_id}")
        self._current_step_id = step_id
        if notify:
            self._notify_step_change(step_id)

    def _notify_step_change(self, step_id: str) -> None:
        if self.on_step_change is None:
            return
        visible_index = self._visible_steps.index(step_id) if step_id in self._visible_steps else -1
        self.on_step_change(step_id, visible_index)

    def _fire_submit(self, values: Dict[str, Any]) -> None:
        logger.info(f"Submitting flow ({len(values)} values)")
        if self.on_submit is not None:
            self.on_submit(values)
