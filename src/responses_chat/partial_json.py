"""
Best-effort decoding of truncated JSON.

Tool-call arguments arrive as an append-only character stream. ``decode`` turns
any prefix of a JSON document into the value seen so far by closing open
strings, objects and arrays at the point of truncation. Values whose final form
cannot be known yet (an object key without a value, a number that runs into the
end of the input) are left out rather than guessed. A bare top-level number is
therefore never decoded: it is reported as incomplete until something follows
it.
"""

import re
from typing import Any, Tuple

from .errors import ArgumentParseError

_WHITESPACE = re.compile(r"[ \t\n\r]*")
_STRING_CHUNK = re.compile(r'[^"\\\x00-\x1f]*')
_NUMBER_RUN = re.compile(r"[-+0-9.eE]+")
_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?\Z")
_NUMBER_PREFIX = re.compile(
    r"-?(?:(?:0|[1-9]\d*)(?:\.\d*|(?:\.\d+)?[eE][+-]?\d*)?)?\Z"
)
_HEX = re.compile(r"[0-9a-fA-F]*\Z")

_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}
_LITERALS = {"t": ("true", True), "f": ("false", False), "n": ("null", None)}

# Marks a value that was cut off before it could be known.
_MISSING = object()


def decode(fragment: str) -> Any:
    """Decode a complete or truncated JSON text.

    Args:
        fragment: JSON text, possibly cut off at any character.

    Returns:
        The decoded value, with open containers and strings closed.

    Raises:
        ArgumentParseError: If the text is empty or is not a prefix of any
            JSON document.
    """
    return _Decoder(fragment).decode()


class _Decoder:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.end = len(text)

    def decode(self) -> Any:
        self._skip_whitespace()
        if self._at_end():
            raise ArgumentParseError("Expecting value", self.pos)
        value, complete = self._value(in_container=False)
        if value is _MISSING:
            raise ArgumentParseError("Incomplete value", self.pos)
        self._skip_whitespace()
        if complete and not self._at_end():
            raise ArgumentParseError("Extra data", self.pos)
        return value

    def _at_end(self) -> bool:
        return self.pos >= self.end

    def _skip_whitespace(self) -> None:
        self.pos = _WHITESPACE.match(self.text, self.pos).end()

    def _value(self, in_container: bool) -> Tuple[Any, bool]:
        char = self.text[self.pos]
        if char == "{":
            return self._object()
        if char == "[":
            return self._array()
        if char == '"':
            return self._string()
        if char in "-0123456789":
            return self._number(in_container)
        if char in _LITERALS:
            return self._literal(*_LITERALS[char])
        raise ArgumentParseError("Expecting value", self.pos)

    def _object(self) -> Tuple[dict, bool]:
        obj = {}
        self.pos += 1
        self._skip_whitespace()
        if self._at_end():
            return obj, False
        if self.text[self.pos] == "}":
            self.pos += 1
            return obj, True

        while True:
            self._skip_whitespace()
            if self._at_end():
                return obj, False
            if self.text[self.pos] != '"':
                raise ArgumentParseError(
                    "Expecting property name enclosed in double quotes", self.pos
                )
            key, complete = self._string()
            if not complete:
                return obj, False

            self._skip_whitespace()
            if self._at_end():
                return obj, False
            if self.text[self.pos] != ":":
                raise ArgumentParseError("Expecting ':' delimiter", self.pos)
            self.pos += 1
            self._skip_whitespace()
            if self._at_end():
                return obj, False

            value, complete = self._value(in_container=True)
            if value is not _MISSING:
                obj[key] = value
            if not complete:
                return obj, False

            self._skip_whitespace()
            if self._at_end():
                return obj, False
            char = self.text[self.pos]
            self.pos += 1
            if char == "}":
                return obj, True
            if char != ",":
                raise ArgumentParseError("Expecting ',' delimiter", self.pos - 1)

    def _array(self) -> Tuple[list, bool]:
        arr = []
        self.pos += 1
        self._skip_whitespace()
        if self._at_end():
            return arr, False
        if self.text[self.pos] == "]":
            self.pos += 1
            return arr, True

        while True:
            self._skip_whitespace()
            if self._at_end():
                return arr, False
            value, complete = self._value(in_container=True)
            if value is not _MISSING:
                arr.append(value)
            if not complete:
                return arr, False

            self._skip_whitespace()
            if self._at_end():
                return arr, False
            char = self.text[self.pos]
            self.pos += 1
            if char == "]":
                return arr, True
            if char != ",":
                raise ArgumentParseError("Expecting ',' delimiter", self.pos - 1)

    def _string(self) -> Tuple[str, bool]:
        chunks = []
        self.pos += 1
        while True:
            match = _STRING_CHUNK.match(self.text, self.pos)
            chunks.append(match.group())
            self.pos = match.end()
            if self._at_end():
                return "".join(chunks), False

            char = self.text[self.pos]
            if char == '"':
                self.pos += 1
                return "".join(chunks), True
            if char != "\\":
                raise ArgumentParseError("Invalid control character", self.pos)

            if self.pos + 1 >= self.end:
                self.pos = self.end
                return "".join(chunks), False
            escape = self.text[self.pos + 1]
            if escape == "u":
                decoded = self._unicode_escape()
                if decoded is None:
                    return "".join(chunks), False
                chunks.append(decoded)
            elif escape in _ESCAPES:
                chunks.append(_ESCAPES[escape])
                self.pos += 2
            else:
                raise ArgumentParseError("Invalid \\escape", self.pos)

    def _unicode_escape(self) -> str | None:
        """Decode ``\\uXXXX`` at the cursor, joining surrogate pairs.

        Returns None when the escape is cut off by the end of the input.
        """
        digits = self.text[self.pos + 2 : self.pos + 6]
        if not _HEX.match(digits):
            raise ArgumentParseError("Invalid \\uXXXX escape", self.pos)
        if len(digits) < 4:
            self.pos = self.end
            return None
        code = int(digits, 16)
        self.pos += 6

        if 0xD800 <= code <= 0xDBFF:
            tail = self.text[self.pos : self.pos + 6]
            if "\\u".startswith(tail[:2]) and len(tail) < 6 and _HEX.match(tail[2:]):
                # the low surrogate has not arrived yet
                self.pos = self.end
                return None
            if tail.startswith("\\u") and _HEX.match(tail[2:]):
                low = int(tail[2:], 16)
                if 0xDC00 <= low <= 0xDFFF:
                    self.pos += 6
                    return chr(0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00))
        return chr(code)

    def _number(self, in_container: bool) -> Tuple[Any, bool]:
        start = self.pos
        match = _NUMBER_RUN.match(self.text, start)
        token = match.group()
        self.pos = match.end()

        if self._at_end():
            # more digits may follow, even after a complete-looking number
            if not _NUMBER_PREFIX.match(token):
                raise ArgumentParseError("Invalid number", start)
            if not in_container:
                raise ArgumentParseError("Incomplete number", start)
            return _MISSING, False

        if not _NUMBER.match(token):
            raise ArgumentParseError("Invalid number", start)
        return _to_number(token), True

    def _literal(self, word: str, value: Any) -> Tuple[Any, bool]:
        start = self.pos
        token = self.text[start : start + len(word)]
        if not word.startswith(token):
            raise ArgumentParseError("Expecting value", start)
        self.pos = start + len(token)
        return value, len(token) == len(word)


def _to_number(token: str) -> Any:
    if any(c in token for c in ".eE"):
        return float(token)
    return int(token)
