"""
Button action -> intent conversion.

Buttons in the builder carry an action config such as
{'type': 'go-to-step', 'value': 'review'}. Buttons never act on it
themselves: they convert it here and emit the resulting intent.
"""

from typing import Any, Mapping, Optional

from flow_engine.intents import (
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


def button_action_to_intent(action: Optional[Mapping[str, Any]]) -> Optional[FlowIntent]:
    """
    Convert a button's action config to an intent.

    Args:
        action: {'type': ..., 'value': ..., 'openNewTab': ...} or None

    Returns:
        The intent to emit. A button without an action defaults to
        NextStep. None when the action is unknown or lacks the value it
        needs.

    Examples:
        >>> button_action_to_intent(None)
        NextStep(type='next-step')
        >>> button_action_to_intent({'type': 'redirect', 'value': 'https://x.io'})
        OpenUrl(url='https://x.io', open_new_tab=False, type='url')
        >>> button_action_to_intent({'type': 'go-to-step'}) is None
        True
    """
    if not action or not action.get('type'):
        return NextStep()

    action_type = action['type']
    value = action.get('value')

    if action_type == 'next-step':
        return NextStep()
    if action_type == 'prev-step':
        return PrevStep()
    if action_type == 'submit':
        return Submit()

    # Everything below needs a value
    if not value:
        return None

    if action_type == 'go-to-step':
        return GoToStep(step_id=value)
    if action_type in ('url', 'redirect'):
        return OpenUrl(url=value, open_new_tab=bool(action.get('openNewTab', False)))
    if action_type == 'scroll':
        return ScrollTo(selector=value)
    if action_type == 'phone':
        return DialPhone(number=value)
    if action_type == 'email':
        return SendEmail(address=value)
    if action_type == 'download':
        return Download(url=value)

    return None
