"""
Value types stored in single text columns, plus the server-now marker.

Manifesto:
    Some record fields hold structured values that still live in one
    ``VARCHAR``/``TEXT`` column: a set of key/value properties, or a text
    with translations. Both are encoded with the same properties syntax so
    the column stays readable in a SQL console.

Architecture:
    ::

        dict[str, str]  ── properties_to_string ──►  'a=1,b="x y"'
                        ◄─ properties_from_string ──

        LocalizedString ── to_string ──► '=Hello,nl=Hallo'
                        ◄─ parse ───────

        ServerNow.NOW   written as the dialect's current-timestamp expression

Format:
    ``key=value`` pairs separated by ``,`` (or a line break). ``:`` may be
    used instead of ``=``. Keys escape ``=``, ``:``, whitespace and ``\\``
    with a backslash. Values are quoted with ``"`` (or ``'`` when they
    contain ``"`` but no ``'``) when they are empty or contain whitespace,
    ``,``, ``=`` or a quote. Unquoted values are trimmed.

Examples:
    >>> properties_to_string({"b": "two words", "a": "1"})
    'a=1,b="two words"'
    >>> target = {}
    >>> properties_from_string("a=1, b='x'", target)
    True
    >>> target
    {'a': '1', 'b': 'x'}
    >>> LocalizedString.parse("=Hello,nl=Hallo").get("nl_BE")
    'Hallo'

Tags:
    codec, properties, localization, server-now, dbspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from enum import Enum

_SEPARATORS = ",\r\n"
_KEY_SPECIALS = "=:\\"
_VALUE_QUOTE_TRIGGERS = ",="

_ESCAPES = {"\n": "n", "\r": "r", "\t": "t", "\f": "f", "\b": "b", "\0": "0"}
_UNESCAPES = {v: k for k, v in _ESCAPES.items()}


class ServerNow(Enum):
    """Marker for "the database's current timestamp".

    A date/time field holding ``NOW`` is written as the dialect's
    ``now()`` expression instead of a parameter, then read back.
    """

    NOW = "NOW"


NOW = ServerNow.NOW


# ── Properties codec ─────────────────────────────────────────────────────


def _escape_key(key: str) -> str:
    parts = []
    for ch in key:
        if ch in _KEY_SPECIALS or ch.isspace():
            parts.append("\\" + _ESCAPES.get(ch, ch))
        else:
            parts.append(ch)
    return "".join(parts)


def _escape_value(value: str) -> str:
    needs_quotes = (
        not value
        or any(ch.isspace() or ch in _VALUE_QUOTE_TRIGGERS for ch in value)
        or "'" in value
        or '"' in value
    )
    quote = ""
    if needs_quotes:
        quote = "'" if '"' in value and "'" not in value else '"'

    parts = [quote]
    for ch in value:
        if ch == "\\":
            parts.append("\\\\")
        elif ch == quote:
            parts.append("\\" + ch)
        elif ch in _ESCAPES:
            parts.append("\\" + _ESCAPES[ch])
        else:
            parts.append(ch)
    parts.append(quote)
    return "".join(parts)


def properties_to_string(properties: Mapping[str, str] | None) -> str:
    """Encode properties as ``key=value,…`` with keys in sorted order."""
    if not properties:
        return ""
    return ",".join(
        _escape_key(key) + "=" + _escape_value(str(properties[key])) for key in sorted(properties)
    )


def _unescape_until(text: str, pos: int, stops: str) -> tuple[str, int, bool]:
    """Read from ``pos`` up to an unescaped character in ``stops``.

    Returns the unescaped text, the position just past the stop character
    and whether a stop character was found.
    """
    parts = []
    length = len(text)
    while pos < length:
        ch = text[pos]
        pos += 1
        if ch == "\\" and pos < length:
            escaped = text[pos]
            pos += 1
            if escaped == "u" and pos + 4 <= length:
                try:
                    parts.append(chr(int(text[pos:pos + 4], 16)))
                    pos += 4
                    continue
                except ValueError:
                    pass
            parts.append(_UNESCAPES.get(escaped, escaped))
        elif ch in stops:
            return "".join(parts), pos, True
        else:
            parts.append(ch)
    return "".join(parts), pos, False


def properties_from_string(
    text: str | None,
    target: MutableMapping[str, str],
    *,
    allow_empty_names: bool = False,
) -> bool:
    """
    Decode ``text`` into ``target``.

    ``target`` is not cleared first; entries are added or overwritten.
    Returns ``False`` when the text is not in properties format, leaving
    whatever was decoded before the error in ``target``.
    """
    if text is None:
        return False

    length = len(text)
    pos = 0
    while pos < length:
        while pos < length and text[pos].isspace():
            pos += 1
        if pos == length:
            return True

        name_start = pos
        name_parts = []
        while True:
            if pos == length:
                return False
            ch = text[pos]
            if ch == "\\" and pos + 1 < length:
                escaped = text[pos + 1]
                name_parts.append(_UNESCAPES.get(escaped, escaped))
                pos += 2
                continue
            if ch.isspace() or ch in "=:":
                break
            name_parts.append(ch)
            pos += 1

        if pos == name_start and not allow_empty_names:
            return False
        name = "".join(name_parts)

        while pos < length and text[pos].isspace():
            pos += 1
        if pos == length or text[pos] not in "=:":
            return False
        pos += 1

        while pos < length and text[pos].isspace():
            pos += 1
        if pos == length:
            return False

        quote = text[pos]
        if quote in "'\"":
            value, pos, closed = _unescape_until(text, pos + 1, quote)
            if not closed:
                return False
            target[name] = value
            while pos < length and text[pos] in " \t":
                pos += 1
            if pos < length:
                if text[pos] not in _SEPARATORS:
                    return False
                pos += 1
        else:
            value, pos, _ = _unescape_until(text, pos, _SEPARATORS)
            target[name] = value.strip()

    return True


# ── LocalizedString ──────────────────────────────────────────────────────


class LocalizedString:
    """
    Text with per-locale variants.

    The ``""`` locale holds the default text. Locales use the
    ``language[_COUNTRY[_variant]]`` form.
    """

    def __init__(self, default: str | None = None, **translations: str) -> None:
        self._values: dict[str, str] = {}
        if default is not None:
            self._values[""] = default
        self._values.update(translations)

    @classmethod
    def parse(cls, text: str | None) -> LocalizedString:
        """Decode ``to_string()`` output; plain text becomes the default text."""
        result = cls()
        if text is not None and not properties_from_string(text, result._values, allow_empty_names=True):
            result._values.clear()
            result.set(None, text)
        return result

    def get(self, locale: str | None = None, default: str | None = None) -> str | None:
        """
        Text for ``locale``, trying ``nl_NL`` then ``nl`` then the default
        text, then English, then whatever is available.
        """
        key = locale or ""
        while True:
            result = self._values.get(key)
            if result is not None or not key:
                break
            key = key.rpartition("_")[0]

        if result is None:
            result = self._values.get("en")
        if result is None and self._values:
            result = next(iter(self._values.values()))
        return default if result is None else result

    def get_specific(self, locale: str | None) -> str | None:
        return self._values.get(locale or "")

    def set(self, locale: str | None, text: str) -> None:
        self._values[locale or ""] = text

    def update_from(self, other: LocalizedString) -> None:
        """Replace all texts with those of ``other``."""
        if other is not self:
            self._values.clear()
            self._values.update(other._values)

    def remove(self, locale: str | None) -> None:
        self._values.pop(locale or "", None)

    def clear(self) -> None:
        self._values.clear()

    @property
    def locales(self) -> set[str]:
        return set(self._values)

    def to_string(self) -> str:
        return properties_to_string(self._values)

    def to_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LocalizedString):
            return NotImplemented
        return self._values == other._values

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"LocalizedString({self._values!r})"


__all__ = [
    "ServerNow",
    "NOW",
    "LocalizedString",
    "properties_to_string",
    "properties_from_string",
]
