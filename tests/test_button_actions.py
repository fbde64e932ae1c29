"""
Test button action -> intent conversion

Run with: python -m pytest tests/test_button_actions.py
"""

import os
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from flow_engine.intents import (
    DialPhone,
    Download,
    GoToStep,
    NextStep,
    OpenUrl,
    PrevStep,
    ScrollTo,
    SendEmail,
    Submit,
    intent_from_dict,
)
from flow_engine.utils.button_actions import button_action_to_intent


@pytest.mark.parametrize("action", [None, {}, {'type': ''}])
def test_button_without_action_goes_next(action):
    assert button_action_to_intent(action) == NextStep()


@pytest.mark.parametrize("action, expected", [
    ({'type': 'next-step'}, NextStep()),
    ({'type': 'prev-step'}, PrevStep()),
    ({'type': 'submit'}, Submit()),
    ({'type': 'go-to-step', 'value': 'review'}, GoToStep('review')),
    ({'type': 'url', 'value': 'https://example.com', 'openNewTab': True}, OpenUrl('https://example.com', True)),
    ({'type': 'redirect', 'value': 'https://example.com'}, OpenUrl('https://example.com')),
    ({'type': 'scroll', 'value': '#faq'}, ScrollTo('#faq')),
    ({'type': 'phone', 'value': '+15551234567'}, DialPhone('+15551234567')),
    ({'type': 'email', 'value': 'hi@example.com'}, SendEmail('hi@example.com')),
    ({'type': 'download', 'value': '/files/guide.pdf'}, Download('/files/guide.pdf')),
])
def test_button_actions_map_to_intents(action, expected):
    assert button_action_to_intent(action) == expected


@pytest.mark.parametrize("action", [
    {'type': 'go-to-step'},
    {'type': 'url', 'value': ''},
    {'type': 'confetti', 'value': 'yes'},
])
def test_unusable_actions_return_none(action):
    assert button_action_to_intent(action) is None


# ========================
# intent_from_dict
# ========================

def test_intent_from_dict_known_types():
    assert intent_from_dict({'type': 'go-to-step', 'stepId': 'b'}) == GoToStep('b')
    assert intent_from_dict({'type': 'submit', 'values': {'x': 1}}) == Submit(values={'x': 1})
    assert intent_from_dict({'type': 'url', 'url': 'https://a.io', 'openNewTab': True}) == OpenUrl('https://a.io', True)


def test_intent_from_dict_missing_payload_is_blank():
    assert intent_from_dict({'type': 'phone'}) == DialPhone('')


def test_intent_from_dict_unknown():
    assert intent_from_dict({'type': 'teleport'}) is None
    assert intent_from_dict('next-step') is None


def test_intent_to_dict():
    assert OpenUrl('https://a.io', True).to_dict() == {'type': 'url', 'url': 'https://a.io', 'openNewTab': True}
    assert NextStep().to_dict() == {'type': 'next-step'}
