# controllers/backup/yaml_writer.py
from __future__ import annotations

import base64
import re
from typing import Iterable, List, Optional

from models.canonical_value import CanonicalValue, Kind
from .field_policy import BASE64_PREFIX

HEADER_COMMENT = "# start of Meshtastic configure yaml"

# Top-level keys in the order the CLI export writes them.
TOP_LEVEL_ORDER = (
    "canned_messages",
    "channel_url",
    "config",
    "location",
    "module_config",
    "owner",
    "owner_short",
    "channels",
)

_NUMERIC_RE = re.compile(
    r"^(?:[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"
    r"|0x[0-9a-fA-F]+|0o[0-7]+"
    r"|[-+]?\.(?:inf|Inf|INF)|\.(?:nan|NaN|NAN))$"
)
_SPECIAL_CHARS_RE = re.compile(r"[:\[\]{}#,]")
_INDICATOR_START = "-?!&*%@`|>'\""
# YAML 1.1 loaders turn these into bools/null
_RESERVED_WORDS = {"true", "false", "null", "~", "yes", "no", "on", "off", "y", "n"}

_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


def is_plain_string(value: str) -> bool:
    """True when a string can be written without quotes and read back unchanged."""
    if not value or value != value.strip():
        return False
    if value.lower() in _RESERVED_WORDS:
        return False
    if _NUMERIC_RE.match(value):
        return False
    if any(ord(ch) < 0x20 or ord(ch) > 0x7E for ch in value):
        return False
    if _SPECIAL_CHARS_RE.search(value):
        return False
    return value[0] not in _INDICATOR_START


def quote_string(value: str) -> str:
    out = ['"']
    for ch in value:
        cp = ord(ch)
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif cp < 0x20 or 0x7F <= cp <= 0xFFFF:
            out.append(f"\\u{cp:04X}")
        elif cp > 0xFFFF:
            out.append(f"\\U{cp:08X}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def _text_scalar(value: str) -> str:
    return value if is_plain_string(value) else quote_string(value)


def _format_number(value: int | float) -> str:
    if isinstance(value, int):
        return str(value)
    text = repr(float(value))
    mantissa, e, exponent = text.partition("e")
    # YAML 1.1 only types an exponent form as float when the mantissa has a dot
    if e and "." not in mantissa:
        return f"{mantissa}.0e{exponent}"
    return text


def render_scalar(value: CanonicalValue, *, quote_byte_fields: bool = True) -> str:
    k = value.kind
    if k is Kind.NULL:
        return "null"
    if k is Kind.BOOL:
        return "true" if value.value else "false"
    if k is Kind.NUMBER:
        return _format_number(value.value)
    if k is Kind.TEXT:
        return _text_scalar(value.value)
    if k is Kind.BYTES:
        payload = base64.b64encode(value.value).decode("ascii")
        if not value.secret:
            return _text_scalar(payload)
        tagged = f"{BASE64_PREFIX}{payload}"
        return quote_string(tagged) if quote_byte_fields else tagged
    raise TypeError(f"{k.value} is not a scalar")


def _prune(value: CanonicalValue) -> Optional[CanonicalValue]:
    """Drop empty mappings (recursively). Lists are kept, even when empty."""
    if value.kind is Kind.MAP:
        kept = {}
        for key, child in value.value.items():
            pruned = _prune(child)
            if pruned is not None:
                kept[key] = pruned
        return CanonicalValue.map_(kept) if kept else None
    if value.kind is Kind.LIST:
        items = []
        for child in value.value:
            pruned = _prune(child)
            items.append(pruned if pruned is not None else CanonicalValue.map_())
        return CanonicalValue.list_(items)
    return value


class _Emitter:
    def __init__(self, indent_width: int, quote_byte_fields: bool):
        if indent_width < 1:
            raise ValueError("indent width must be >= 1")
        self.step = indent_width
        self.quote_byte_fields = quote_byte_fields
        self.lines: List[str] = []

    def scalar(self, value: CanonicalValue) -> str:
        return render_scalar(value, quote_byte_fields=self.quote_byte_fields)

    def emit(self, value: CanonicalValue, indent: int) -> None:
        if value.kind is Kind.MAP:
            self._emit_map(value, indent)
        elif value.kind is Kind.LIST:
            self._emit_list(value, indent)
        else:
            self.lines.append(" " * indent + self.scalar(value))

    def _emit_map(self, value: CanonicalValue, indent: int) -> None:
        pad = " " * indent
        for key, child in value.value.items():
            key = _text_scalar(key)
            if child.is_empty_container():
                self.lines.append(f"{pad}{key}: {'[]' if child.kind is Kind.LIST else '{}'}")
            elif child.is_scalar:
                self.lines.append(f"{pad}{key}: {self.scalar(child)}")
            else:
                self.lines.append(f"{pad}{key}:")
                self.emit(child, indent + self.step)

    def _emit_list(self, value: CanonicalValue, indent: int) -> None:
        pad = " " * indent
        for item in value.value:
            if item.is_empty_container():
                self.lines.append(f"{pad}- {'[]' if item.kind is Kind.LIST else '{}'}")
            elif item.is_scalar:
                self.lines.append(f"{pad}- {self.scalar(item)}")
            else:
                self.lines.append(f"{pad}-")
                self.emit(item, indent + self.step)


def serialize(value: CanonicalValue, indent_width: int = 2, *, quote_byte_fields: bool = True) -> str:
    """Render a canonical tree as block-style text. Empty mappings are omitted."""
    pruned = _prune(value)
    if pruned is None:
        return ""
    em = _Emitter(indent_width, quote_byte_fields)
    em.emit(pruned, 0)
    return "\n".join(em.lines)


def dump_document(
    root: CanonicalValue,
    indent_width: int = 2,
    *,
    quote_byte_fields: bool = True,
    required_keys: Iterable[str] = (),
) -> str:
    """
    Full backup document: header comment, then top-level sections in TOP_LEVEL_ORDER
    (unknown keys follow in their own order). Required keys that prune to nothing are
    written as `{}` so the document stays restorable.
    """
    if root.kind is not Kind.MAP:
        raise TypeError("document root must be a mapping")
    required = set(required_keys)
    ordered = [k for k in TOP_LEVEL_ORDER if k in root.value]
    ordered += [k for k in root.value if k not in TOP_LEVEL_ORDER]

    em = _Emitter(indent_width, quote_byte_fields)
    em.lines.append(HEADER_COMMENT)
    for key in ordered:
        child = _prune(root.value[key])
        if child is None:
            if key in required:
                em.lines.append(f"{key}: {{}}")
            continue
        if child.kind is Kind.NULL:
            continue
        if child.kind is Kind.TEXT and not child.value:
            continue
        em.emit(CanonicalValue.map_({key: child}), 0)
    return "\n".join(em.lines) + "\n"
