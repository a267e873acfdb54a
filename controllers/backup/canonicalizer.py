# controllers/backup/canonicalizer.py
from __future__ import annotations

import base64
import binascii
import datetime as _dt
import logging
import math
import struct
from enum import Enum
from typing import Any, Mapping, Optional

from google.protobuf.descriptor import FieldDescriptor
from google.protobuf.message import Message
from pydantic import BaseModel

from models.canonical_value import CanonicalValue, Kind
from .field_policy import BASE64_PREFIX, policy_for

log = logging.getLogger(__name__)

_INT_TYPES = {
    FieldDescriptor.TYPE_INT32, FieldDescriptor.TYPE_INT64,
    FieldDescriptor.TYPE_UINT32, FieldDescriptor.TYPE_UINT64,
    FieldDescriptor.TYPE_SINT32, FieldDescriptor.TYPE_SINT64,
    FieldDescriptor.TYPE_FIXED32, FieldDescriptor.TYPE_FIXED64,
    FieldDescriptor.TYPE_SFIXED32, FieldDescriptor.TYPE_SFIXED64,
}


def canonicalize(value: Any, *, emit_defaults: bool = False) -> CanonicalValue:
    """
    Convert a protobuf message (or plain Python data) into a CanonicalValue.

    Protobuf messages are walked in schema declaration order; fields at their
    default are pruned unless emit_defaults is set or the field policy says
    otherwise. Enums are written by name, key material bytes are marked secret.
    """
    if isinstance(value, Message):
        return _from_message(value, emit_defaults)
    return _from_python(value, None)


# ---------- protobuf path ----------

def _is_repeated(fd: FieldDescriptor) -> bool:
    return fd.is_repeated


def _has_presence(fd: FieldDescriptor) -> bool:
    return fd.has_presence


def _from_message(msg: Message, emit_defaults: bool) -> CanonicalValue:
    desc = msg.DESCRIPTOR
    present = {fd.name for fd, _ in msg.ListFields()}
    entries = {}
    for fd in desc.fields:
        policy = policy_for(fd.json_name, desc.full_name)
        if fd.name not in present:
            keep = policy.always_emit or (emit_defaults and (_is_repeated(fd) or not _has_presence(fd)))
            if not keep:
                continue
        raw = getattr(msg, fd.name)
        if _is_repeated(fd):
            entries[fd.json_name] = CanonicalValue.list_(
                _field_value(fd, item, policy.prefixed_bytes, emit_defaults) for item in raw
            )
        else:
            entries[fd.json_name] = _field_value(fd, raw, policy.prefixed_bytes, emit_defaults)
    return CanonicalValue.map_(entries)


def _field_value(fd: FieldDescriptor, value: Any, secret: bool, emit_defaults: bool) -> CanonicalValue:
    t = fd.type
    if t in (FieldDescriptor.TYPE_MESSAGE, FieldDescriptor.TYPE_GROUP):
        return _from_message(value, emit_defaults)
    if t == FieldDescriptor.TYPE_ENUM:
        ev = fd.enum_type.values_by_number.get(value)
        return CanonicalValue.text(ev.name) if ev is not None else CanonicalValue.number(int(value))
    if t == FieldDescriptor.TYPE_BYTES:
        return CanonicalValue.bytes_(value, secret=secret)
    if t == FieldDescriptor.TYPE_BOOL:
        return CanonicalValue.boolean(value)
    if t == FieldDescriptor.TYPE_STRING:
        return CanonicalValue.text(value)
    if t == FieldDescriptor.TYPE_FLOAT:
        return _float_value(_shortest_float32(value))
    if t == FieldDescriptor.TYPE_DOUBLE:
        return _float_value(value)
    if t in _INT_TYPES:
        return CanonicalValue.number(int(value))
    log.debug("unsupported field type %s on %s; omitted", t, fd.full_name)
    return CanonicalValue.null()


def _shortest_float32(value: float) -> float:
    if not math.isfinite(value):
        return value
    packed = struct.pack("<f", value)
    for precision in range(6, 10):
        candidate = float(f"{value:.{precision}g}")
        if struct.pack("<f", candidate) == packed:
            return candidate
    return value


def _float_value(value: float) -> CanonicalValue:
    # same spellings as the protobuf JSON mapping
    if math.isnan(value):
        return CanonicalValue.text("NaN")
    if math.isinf(value):
        return CanonicalValue.text("Infinity" if value > 0 else "-Infinity")
    return CanonicalValue.number(value)


# ---------- plain data path ----------

def _from_python(value: Any, key: Optional[str]) -> CanonicalValue:
    if value is None:
        return CanonicalValue.null()
    if isinstance(value, bool):
        return CanonicalValue.boolean(value)
    if isinstance(value, Enum):
        return _from_python(value.name, key)
    if isinstance(value, int):
        return CanonicalValue.number(value)
    if isinstance(value, float):
        return _float_value(value)
    if isinstance(value, str):
        if key is not None and policy_for(key).prefixed_bytes:
            return _key_material_text(value)
        return CanonicalValue.text(value)
    if isinstance(value, (bytes, bytearray)):
        secret = key is not None and policy_for(key).prefixed_bytes
        return CanonicalValue.bytes_(bytes(value), secret=secret)
    if isinstance(value, (_dt.datetime, _dt.date)):
        return CanonicalValue.text(value.isoformat())
    if isinstance(value, Message):
        return _from_message(value, False)
    if isinstance(value, BaseModel):
        return _from_python(value.model_dump(exclude_none=True), key)
    if isinstance(value, Mapping):
        entries = {}
        for k, v in value.items():
            cv = _from_python(v, str(k))
            if cv.kind is Kind.NULL:
                continue
            entries[str(k)] = cv
        return CanonicalValue.map_(entries)
    if isinstance(value, (list, tuple)):
        return CanonicalValue.list_(_from_python(item, key) for item in value)
    log.debug("unrepresentable value of type %s omitted", type(value).__name__)
    return CanonicalValue.null()


def _key_material_text(value: str) -> CanonicalValue:
    """Key material given as base64 text (optionally already prefixed)."""
    payload = value[len(BASE64_PREFIX):] if value.startswith(BASE64_PREFIX) else value
    try:
        return CanonicalValue.bytes_(base64.b64decode(payload, validate=True), secret=True)
    except (binascii.Error, ValueError):
        return CanonicalValue.text(value)
