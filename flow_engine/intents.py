"""
Intent types for FlowOrchestrator control flow.

Intents are the ONLY way for the UI layer to move through a flow.
Buttons and blocks emit intents; they never change the step pointer or
submit values themselves. The orchestrator decides.

Two families:
- Progression intents (NextStep, PrevStep, GoToStep, Submit): gated by
  interactive mode and by the current evaluation snapshot.
- External actions (OpenUrl, ScrollTo, DialPhone, SendEmail, Download):
  side effects outside the engine's jurisdiction, executed in any mode.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union


@dataclass(frozen=True)
class NextStep:
    """
    Advance to the next step.

    On the last step this is treated as an implicit submit.
    """
    type: str = field(default='next-step', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type}


@dataclass(frozen=True)
class PrevStep:
    type: str = field(default='prev-step', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type}


@dataclass(frozen=True)
class GoToStep:
    """Jump directly to `step_id` (must be visible and not blocked)."""
    step_id: str
    type: str = field(default='go-to-step', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type, 'stepId': self.step_id}


@dataclass(frozen=True)
class Submit:
    """
    Submit the flow.

    Attributes:
        values: Extra values merged over the collected values at submit
            time (intent values win on key collisions)
    """
    values: Optional[Mapping[str, Any]] = None
    type: str = field(default='submit', init=False)

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {'type': self.type}
        if self.values is not None:
            data['values'] = dict(self.values)
        return data


@dataclass(frozen=True)
class OpenUrl:
    url: str
    open_new_tab: bool = False
    type: str = field(default='url', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type, 'url': self.url, 'openNewTab': self.open_new_tab}


@dataclass(frozen=True)
class ScrollTo:
    selector: str
    type: str = field(default='scroll', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type, 'selector': self.selector}


@dataclass(frozen=True)
class DialPhone:
    number: str
    type: str = field(default='phone', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type, 'number': self.number}


@dataclass(frozen=True)
class SendEmail:
    address: str
    type: str = field(default='email', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type, 'address': self.address}


@dataclass(frozen=True)
class Download:
    url: str
    type: str = field(default='download', init=False)

    def to_dict(self) -> dict:
        return {'type': self.type, 'url': self.url}


# Intent union type for type hints
ProgressionIntent = Union[NextStep, PrevStep, GoToStep, Submit]
ExternalAction = Union[OpenUrl, ScrollTo, DialPhone, SendEmail, Download]
FlowIntent = Union[ProgressionIntent, ExternalAction]

EXTERNAL_ACTION_TYPES = (OpenUrl, ScrollTo, DialPhone, SendEmail, Download)


def intent_from_dict(data: Mapping[str, Any]) -> Optional[FlowIntent]:
    """
    Parse the wire form of an intent.

    Args:
        data: e.g. {'type': 'go-to-step', 'stepId': 'contact'}

    Returns:
        The intent, or None when the type tag is unknown. Missing payload
        fields become empty strings so the orchestrator can reject them
        with a descriptive reason instead of the parser raising.
    """
    if not isinstance(data, Mapping):
        return None

    intent_type = data.get('type')

    if intent_type == 'next-step':
        return NextStep()
    if intent_type == 'prev-step':
        return PrevStep()
    if intent_type == 'go-to-step':
        return GoToStep(step_id=str(data.get('stepId') or ''))
    if intent_type == 'submit':
        values = data.get('values')
        return Submit(values=dict(values) if isinstance(values, Mapping) else None)
    if intent_type == 'url':
        return OpenUrl(url=str(data.get('url') or ''),
                       open_new_tab=bool(data.get('openNewTab', False)))
    if intent_type == 'scroll':
        return ScrollTo(selector=str(data.get('selector') or ''))
    if intent_type == 'phone':
        return DialPhone(number=str(data.get('number') or ''))
    if intent_type == 'email':
        return SendEmail(address=str(data.get('address') or ''))
    if intent_type == 'download':
        return Download(url=str(data.get('url') or ''))

    return None
