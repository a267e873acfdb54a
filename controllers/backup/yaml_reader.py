# controllers/backup/yaml_reader.py
from __future__ import annotations

import re
import string
from dataclasses import dataclass
from typing import List, Optional, Tuple

from models.canonical_value import CanonicalValue


class MalformedDocument(ValueError):
    """The text is not a valid backup document. Never accompanied by a partial tree."""

    def __init__(self, detail: str, line: Optional[int] = None):
        self.detail = detail
        self.line = line
        super().__init__(f"line {line}: {detail}" if line is not None else detail)


@dataclass
class _Line:
    number: int
    indent: int
    text: str


_INT_RE = re.compile(r"^-?\d+$")
_DECIMAL_RE = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")
_COMMENT_RE = re.compile(r"\s#")
# "key: value" / "key:" as the content of a compact "- key: value" list item
_MAP_ENTRY_RE = re.compile(r"^[^\s\"'\[\]{}#,\-][^:]*:(\s|$)")

_NULL_WORDS = {"null", "Null", "NULL", "~"}
_TRUE_WORDS = {"true", "True", "TRUE"}
_FALSE_WORDS = {"false", "False", "FALSE"}

_SIMPLE_ESCAPES = {
    '"': '"', "\\": "\\", "/": "/", " ": " ", "\t": "\t",
    "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v",
    "0": "\0", "a": "\a", "e": "\x1b",
    "N": "\x85", "_": "\xa0", "L": "\u2028", "P": "\u2029",
}
_HEX_ESCAPES = {"x": 2, "u": 4, "U": 8}


def _is_dash(text: str) -> bool:
    return text == "-" or text.startswith("- ")


def _hex(digits: str) -> Optional[int]:
    if not digits or any(c not in string.hexdigits for c in digits):
        return None
    return int(digits, 16)


def _read_double_quoted(token: str, line: Optional[int]) -> Tuple[str, int]:
    out: List[str] = []
    i, n = 1, len(token)
    while i < n:
        ch = token[i]
        if ch == '"':
            return "".join(out), i + 1
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        i += 1
        if i >= n:
            break
        esc = token[i]
        if esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
            i += 1
            continue
        width = _HEX_ESCAPES.get(esc)
        if width is None:
            raise MalformedDocument(f"unknown escape '\\{esc}'", line)
        cp = _hex(token[i + 1:i + 1 + width])
        if cp is None or len(token[i + 1:i + 1 + width]) != width:
            raise MalformedDocument(f"bad '\\{esc}' escape", line)
        i += 1 + width
        # JSON-style surrogate pair
        if 0xD800 <= cp <= 0xDBFF and token.startswith("\\u", i):
            low = _hex(token[i + 2:i + 6])
            if low is not None and 0xDC00 <= low <= 0xDFFF:
                cp = 0x10000 + ((cp - 0xD800) << 10) + (low - 0xDC00)
                i += 6
        if cp > 0x10FFFF:
            raise MalformedDocument(f"code point out of range: {cp:#x}", line)
        out.append(chr(cp))
    raise MalformedDocument("unterminated double-quoted string", line)


def _read_single_quoted(token: str, line: Optional[int]) -> Tuple[str, int]:
    out: List[str] = []
    i, n = 1, len(token)
    while i < n:
        ch = token[i]
        if ch == "'":
            if i + 1 < n and token[i + 1] == "'":
                out.append("'")
                i += 2
                continue
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    raise MalformedDocument("unterminated single-quoted string", line)


def parse_scalar(token: str, line: Optional[int] = None) -> CanonicalValue:
    """Type a single inline value: null/bool/number literals, quoted or plain strings."""
    token = token.strip()
    if token[:1] in ('"', "'"):
        reader = _read_double_quoted if token[0] == '"' else _read_single_quoted
        text, end = reader(token, line)
        tail = token[end:].strip()
        if tail and not tail.startswith("#"):
            raise MalformedDocument("unexpected text after quoted string", line)
        return CanonicalValue.text(text)

    m = _COMMENT_RE.search(token)
    if m:
        token = token[:m.start()].rstrip()
    if token in _NULL_WORDS:
        return CanonicalValue.null()
    if token in _TRUE_WORDS:
        return CanonicalValue.boolean(True)
    if token in _FALSE_WORDS:
        return CanonicalValue.boolean(False)
    if _INT_RE.match(token):
        return CanonicalValue.number(int(token))
    if _DECIMAL_RE.match(token):
        return CanonicalValue.number(float(token))
    return CanonicalValue.text(token)


def _inline_value(token: str, line: int) -> CanonicalValue:
    if token == "{}":
        return CanonicalValue.map_()
    if token == "[]":
        return CanonicalValue.list_()
    return parse_scalar(token, line)


def _tokenize(source: str) -> List[_Line]:
    lines: List[_Line] = []
    if source.startswith("\ufeff"):
        source = source[1:]
    for number, raw in enumerate(source.splitlines(), start=1):
        stripped = raw.strip()
        if not stripped or stripped.startswith("#") or stripped in ("---", "..."):
            continue
        body = raw.rstrip()
        content = body.lstrip(" \t")
        lead = body[:len(body) - len(content)]
        if "\t" in lead:
            raise MalformedDocument("tab character in indentation", number)
        lines.append(_Line(number, len(lead), content))
    return lines


def _split_key(text: str, line: int) -> Tuple[str, str]:
    if text[:1] in ('"', "'"):
        reader = _read_double_quoted if text[0] == '"' else _read_single_quoted
        key, end = reader(text, line)
        rest = text[end:].lstrip(" ")
        if not rest.startswith(":"):
            raise MalformedDocument("expected ':' after quoted key", line)
        return key, rest[1:]
    key, sep, rest = text.partition(":")
    key = key.strip()
    if not sep or not key:
        raise MalformedDocument("expected 'key: value'", line)
    return key, rest


class _Parser:
    def __init__(self, lines: List[_Line]):
        self.lines = lines
        self.pos = 0

    def _peek(self) -> Optional[_Line]:
        return self.lines[self.pos] if self.pos < len(self.lines) else None

    def document(self) -> CanonicalValue:
        first = self._peek()
        if first is None:
            return CanonicalValue.null()
        value = self.block(first.indent)
        leftover = self._peek()
        if leftover is not None:
            raise MalformedDocument("indentation does not match any enclosing block", leftover.number)
        return value

    def block(self, indent: int) -> CanonicalValue:
        line = self._peek()
        if line is not None and _is_dash(line.text):
            return self.sequence(indent)
        return self.mapping(indent)

    def sequence(self, indent: int) -> CanonicalValue:
        items: List[CanonicalValue] = []
        while True:
            line = self._peek()
            if line is None or line.indent != indent or not _is_dash(line.text):
                break
            rest = line.text[1:].lstrip(" ")
            if not rest or rest.startswith("#"):
                self.pos += 1
                nxt = self._peek()
                if nxt is None or nxt.indent <= indent:
                    raise MalformedDocument("list entry has no content", line.number)
                items.append(self.block(nxt.indent))
                continue
            if _is_dash(rest) or _MAP_ENTRY_RE.match(rest):
                # compact entry: its first line continues right after the dash
                child_indent = indent + len(line.text) - len(rest)
                self.lines[self.pos] = _Line(line.number, child_indent, rest)
                items.append(self.block(child_indent))
                continue
            self.pos += 1
            items.append(_inline_value(rest, line.number))
        return CanonicalValue.list_(items)

    def mapping(self, indent: int) -> CanonicalValue:
        entries = {}
        while True:
            line = self._peek()
            if line is None or line.indent < indent:
                break
            if line.indent > indent:
                raise MalformedDocument("unexpected indentation", line.number)
            if _is_dash(line.text):
                raise MalformedDocument("list entry inside a mapping", line.number)
            key, rest = _split_key(line.text, line.number)
            if key in entries:
                raise MalformedDocument(f"duplicate key '{key}'", line.number)
            self.pos += 1
            rest = rest.strip()
            if not rest or rest.startswith("#"):
                entries[key] = self._child(indent)
            else:
                entries[key] = _inline_value(rest, line.number)
        return CanonicalValue.map_(entries)

    def _child(self, indent: int) -> CanonicalValue:
        nxt = self._peek()
        if nxt is None:
            return CanonicalValue.null()
        if nxt.indent > indent:
            return self.block(nxt.indent)
        if nxt.indent == indent and _is_dash(nxt.text):
            # indentless sequence, as PyYAML writes lists under a key
            return self.sequence(indent)
        return CanonicalValue.null()


def parse(source: str) -> CanonicalValue:
    """
    Parse a backup document into a CanonicalValue.

    Accepts the block subset written by yaml_writer plus the layouts the
    Meshtastic CLI produces. Raises MalformedDocument on structural errors.
    """
    return _Parser(_tokenize(source)).document()
