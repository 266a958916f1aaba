"""SQL literal helpers shared by the query builders.

``escape_literal`` renders text for use inside a single-quoted SQL
literal using backslash escapes (MySQL string syntax). It is only used
when a query is built with parameterization switched off; the default
is to bind values as ``?`` parameters.

``create_like_pattern`` turns free search text into a ``LIKE`` pattern.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from numbers import Number
from typing import Any

_SIMPLE_ESCAPES = {
    "\0": "\\0",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
}

_LIKE_SPECIALS = re.compile(r"([\\%_])|(\s+)")


def _is_iso_control(ch: str) -> bool:
    code = ord(ch)
    return code <= 0x1F or 0x7F <= code <= 0x9F


def escape_literal(text: str) -> str:
    """
    Escape ``text`` for a single-quoted SQL literal.

    NUL, backspace, form feed, newline, carriage return, tab, backslash and
    both quote characters get a backslash escape. Other control characters
    and everything outside ISO-8859-1 become ``\\uXXXX`` (UTF-16 units).

    >>> escape_literal("it's")
    "it\\\\'s"
    """
    parts: list[str] = []
    for ch in text:
        escaped = _SIMPLE_ESCAPES.get(ch)
        if escaped is not None:
            parts.append(escaped)
        elif ord(ch) > 0xFF or _is_iso_control(ch):
            encoded = ch.encode("utf-16-be")
            for i in range(0, len(encoded), 2):
                parts.append("\\u%02X%02X" % (encoded[i], encoded[i + 1]))
        else:
            parts.append(ch)
    return "".join(parts)


def is_simple_literal(value: Any) -> bool:
    """Booleans, enum members and numbers are embedded as SQL text, never bound."""
    return isinstance(value, (bool, Enum, Number))


def render_literal(value: Any) -> str:
    """
    Render a non-null value as SQL literal text.

    Numbers are rendered bare and booleans as ``TRUE``/``FALSE``. Enum
    members render as their quoted name. Everything else is converted to
    text and quoted.
    """
    if isinstance(value, Enum):
        return "'" + escape_literal(value.name) + "'"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Number):
        return str(value)
    if isinstance(value, datetime):
        text = value.isoformat(sep=" ")
    elif isinstance(value, (date, time)):
        text = value.isoformat()
    else:
        text = str(value)
    return "'" + escape_literal(text) + "'"


def create_like_pattern(text: str) -> str:
    """
    Create a ``LIKE`` pattern that matches ``text`` anywhere in a value.

    Backslash, ``%`` and ``_`` are escaped; each run of whitespace becomes a
    single ``%``. Quotes are left alone, so bind the result as a parameter.

    >>> create_like_pattern("foo  bar")
    '%foo%bar%'
    >>> create_like_pattern("50%_off")
    '%50\\\\%\\\\_off%'
    """

    def _replace(match: re.Match[str]) -> str:
        if match.group(1) is not None:
            return "\\" + match.group(1)
        return "%"

    return "%" + _LIKE_SPECIALS.sub(_replace, text) + "%"


__all__ = ["escape_literal", "is_simple_literal", "render_literal", "create_like_pattern"]
