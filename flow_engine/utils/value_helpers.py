"""
Value coercion helpers shared by the condition and constraint evaluators.

Form values arrive untyped (whatever the rendering layer collected), so both
evaluators need the same answers to "is this empty?", "what is its text
form?" and "what is its numeric form?". Keeping these in one place means the
emptiness rule used by `is_empty` conditions and `required` constraints can
never drift apart.

Design principles:
- Pure functions (no side effects, no logging)
- Never raise on odd input; coerce or return a sentinel instead
"""

import math
import re
from typing import Any
from urllib.parse import urlparse

# Simplified RFC 5322 shape: something@something.something, no whitespace
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Optional country code, optional parenthesised groups, common separators
PHONE_PATTERN = re.compile(
    r'^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,9}$'
)

NAN = float('nan')

# Numeric text forms accepted by a browser's Number(): decimal with optional
# exponent, 0x / 0o / 0b integers, and the Infinity spellings
DECIMAL_PATTERN = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')
RADIX_PATTERN = re.compile(r'^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$')
INFINITY_TEXT = {'Infinity': math.inf, '+Infinity': math.inf, '-Infinity': -math.inf}


def is_empty(value: Any) -> bool:
    """
    Emptiness rule used across the engine.

    Empty means: None, a blank (whitespace-only) string, or an empty
    list/tuple. Everything else, including 0 and False, is not empty.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def to_text(value: Any) -> str:
    """
    Text form of a form value for string comparisons.

    Examples:
        >>> to_text(None)
        ''
        >>> to_text(True)
        'true'
        >>> to_text(18.0)
        '18'
        >>> to_text(['a', 'b'])
        'a,b'
    """
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ','.join(to_text(item) for item in value)
    return str(value)


def to_number(value: Any) -> float:
    """
    Numeric form of a form value.

    Returns NaN when the value has no numeric reading, so every ordered
    comparison against it is False.

    Examples:
        >>> to_number('42')
        42.0
        >>> to_number('')
        0.0
        >>> math.isnan(to_number('abc'))
        True
        >>> to_number('0x1A')
        26.0
        >>> math.isnan(to_number('1_000'))
        True
    """
    if value is None:
        return NAN
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped == '':
            return 0.0
        if stripped in INFINITY_TEXT:
            return INFINITY_TEXT[stripped]
        if RADIX_PATTERN.match(stripped):
            return float(int(stripped, 0))
        if DECIMAL_PATTERN.match(stripped):
            return float(stripped)
        return NAN
    return NAN


def is_valid_email(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return EMAIL_PATTERN.match(value.strip()) is not None


def is_valid_phone(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    compact = re.sub(r'\s', '', value)
    return PHONE_PATTERN.match(compact) is not None


def is_valid_url(value: Any) -> bool:
    """
    Absolute URL check: a scheme and a network location (or, for schemes
    such as mailto/tel, a non-empty path).
    """
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    if not parsed.scheme or not re.match(r'^[A-Za-z][A-Za-z0-9+.-]*$', parsed.scheme):
        return False
    return bool(parsed.netloc or parsed.path)
