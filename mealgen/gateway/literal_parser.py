"""Safe literal parser for JavaScript-object-style model output.

Recursive descent over object / array / string / number / keyword tokens only.
Nothing is ever evaluated: any identifier that is not a literal keyword is a
parse error, and executable-looking keywords (``function``, ``require``,
``import``, ...) are rejected explicitly so the error message says why.

Accepted beyond strict JSON:
  - single-quoted and backtick strings (no ``${}`` interpolation)
  - unquoted identifier keys, numeric keys
  - trailing commas in objects and arrays
  - ``//`` and ``/* */`` comments
  - ``undefined`` / ``NaN`` (→ None), Python-style ``True`` / ``False`` / ``None``
  - hex integers, leading ``+``, leading or trailing decimal point
"""

from __future__ import annotations

import re
from typing import Any

MAX_DEPTH = 100

LITERAL_KEYWORDS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "NaN": None,
    "True": True,
    "False": False,
    "None": None,
}

FORBIDDEN_KEYWORDS = frozenset(
    {
        "function",
        "require",
        "import",
        "export",
        "eval",
        "new",
        "return",
        "class",
        "this",
        "constructor",
        "prototype",
        "__proto__",
        "process",
        "window",
        "globalThis",
        "async",
        "await",
        "yield",
        "delete",
        "typeof",
        "lambda",
        "exec",
    }
)

_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")
_NUMBER = re.compile(r"[+-]?(?:0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}


class LiteralParseError(ValueError):
    """Raised when text is not a pure data literal."""

    def __init__(self, message: str, position: int):
        super().__init__(f"{message} at position {position}")
        self.position = position


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.depth = 0

    # -- helpers -------------------------------------------------------------

    def _error(self, message: str) -> LiteralParseError:
        return LiteralParseError(message, self.pos)

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _skip(self) -> None:
        """Skip whitespace and comments."""
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace():
                self.pos += 1
            elif text.startswith("//", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end == -1 else end + 1
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end == -1:
                    raise self._error("Unterminated comment")
                self.pos = end + 2
            else:
                break

    def _expect(self, ch: str) -> None:
        self._skip()
        if self._peek() != ch:
            raise self._error(f"Expected {ch!r}, found {self._peek()!r}")
        self.pos += 1

    # -- grammar -------------------------------------------------------------

    def parse(self) -> Any:
        value = self._value()
        self._skip()
        if self.pos != len(self.text):
            raise self._error("Unexpected trailing content")
        return value

    def _value(self) -> Any:
        self._skip()
        ch = self._peek()
        if not ch:
            raise self._error("Unexpected end of input")
        if ch == "{":
            return self._nested(self._object)
        if ch == "[":
            return self._nested(self._array)
        if ch in "\"'`":
            return self._string()
        if ch.isdigit() or ch in "+-.":
            return self._number()
        if _IDENTIFIER.match(ch):
            name = self._identifier()
            if name in LITERAL_KEYWORDS:
                return LITERAL_KEYWORDS[name]
            raise self._error(f"Bare identifier {name!r} is not a literal")
        raise self._error(f"Unexpected character {ch!r}")

    def _nested(self, parse_fn) -> Any:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise self._error("Nesting too deep")
        try:
            return parse_fn()
        finally:
            self.depth -= 1

    def _object(self) -> dict[str, Any]:
        self.pos += 1  # {
        result: dict[str, Any] = {}
        while True:
            self._skip()
            if self._peek() == "}":
                self.pos += 1
                return result
            key = self._key()
            self._expect(":")
            result[key] = self._value()
            self._skip()
            ch = self._peek()
            if ch == ",":
                self.pos += 1
            elif ch == "}":
                self.pos += 1
                return result
            else:
                raise self._error(f"Expected ',' or '}}' in object, found {ch!r}")

    def _key(self) -> str:
        ch = self._peek()
        if ch in "\"'`":
            return self._string()
        if ch.isdigit():
            return str(self._number())
        if ch and _IDENTIFIER.match(ch):
            return self._identifier()
        raise self._error(f"Invalid object key start {ch!r}")

    def _array(self) -> list[Any]:
        self.pos += 1  # [
        result: list[Any] = []
        while True:
            self._skip()
            if self._peek() == "]":
                self.pos += 1
                return result
            result.append(self._value())
            self._skip()
            ch = self._peek()
            if ch == ",":
                self.pos += 1
            elif ch == "]":
                self.pos += 1
                return result
            else:
                raise self._error(f"Expected ',' or ']' in array, found {ch!r}")

    def _identifier(self) -> str:
        m = _IDENTIFIER.match(self.text, self.pos)
        if not m:
            raise self._error("Expected identifier")
        name = m.group(0)
        if name in FORBIDDEN_KEYWORDS:
            raise self._error(f"Executable token {name!r} rejected")
        self.pos = m.end()
        return name

    def _number(self) -> int | float:
        m = _NUMBER.match(self.text, self.pos)
        if not m:
            raise self._error("Invalid number")
        token = m.group(0)
        self.pos = m.end()
        unsigned = token.lstrip("+-")
        if unsigned[:2].lower() == "0x":
            value = int(unsigned, 16)
            return -value if token.startswith("-") else value
        if any(c in token for c in ".eE"):
            return float(token)
        return int(token)

    def _string(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        chunks: list[str] = []
        text = self.text
        while True:
            if self.pos >= len(text):
                raise self._error("Unterminated string")
            ch = text[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(chunks)
            if quote == "`" and text.startswith("${", self.pos):
                raise self._error("Template interpolation rejected")
            if ch == "\\":
                chunks.append(self._escape())
                continue
            chunks.append(ch)
            self.pos += 1

    def _escape(self) -> str:
        self.pos += 1  # backslash
        if self.pos >= len(self.text):
            raise self._error("Dangling escape")
        ch = self.text[self.pos]
        self.pos += 1
        if ch in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[ch]
        if ch == "u":
            return self._hex_escape(4)
        if ch == "x":
            return self._hex_escape(2)
        if ch == "\n":
            return ""  # line continuation
        return ch  # \" \' \\ \/ and unknown escapes map to the character

    def _hex_escape(self, width: int) -> str:
        digits = self.text[self.pos : self.pos + width]
        if len(digits) != width or not all(c in "0123456789abcdefABCDEF" for c in digits):
            raise self._error("Invalid hex escape")
        self.pos += width
        return chr(int(digits, 16))


def parse_literal(text: str) -> Any:
    """Parse a data literal; raises ``LiteralParseError`` for anything else."""
    return _Parser(text).parse()
