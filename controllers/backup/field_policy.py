# controllers/backup/field_policy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

BASE64_PREFIX = "base64:"

# Round-trip artifacts some producers leave in exported trees.
MARKER_KEYS: FrozenSet[str] = frozenset({"$typeName", "@type"})


@dataclass(frozen=True)
class FieldPolicy:
    prefixed_bytes: bool = False   # write bytes as "base64:<payload>"
    always_emit: bool = False      # keep even when the value is the schema default
    redact: bool = False           # mask in logs


DEFAULT_POLICY = FieldPolicy()

_KEY_MATERIAL = FieldPolicy(prefixed_bytes=True, redact=True)
_SECRET_TEXT = FieldPolicy(redact=True)

# Rules keyed by field name. Both JSON (camelCase) and proto (snake_case) spellings are listed
# so mappings from either producer resolve the same way.
_BY_NAME: Dict[str, FieldPolicy] = {
    "psk": _KEY_MATERIAL,
    "publicKey": _KEY_MATERIAL,
    "public_key": _KEY_MATERIAL,
    "privateKey": _KEY_MATERIAL,
    "private_key": _KEY_MATERIAL,
    "adminKey": _KEY_MATERIAL,
    "admin_key": _KEY_MATERIAL,
    "password": _SECRET_TEXT,
    "wifiPsk": _SECRET_TEXT,
    "wifi_psk": _SECRET_TEXT,
    "fixedPin": _SECRET_TEXT,
    "fixed_pin": _SECRET_TEXT,
}

# Rules keyed by "<message full name>.<json name>"; checked before _BY_NAME.
_BY_PATH: Dict[str, FieldPolicy] = {
    # index 0 is the proto3 default, but restore needs it on every channel entry
    "meshtastic.protobuf.Channel.index": FieldPolicy(always_emit=True),
}


def policy_for(field_name: str, message_name: Optional[str] = None) -> FieldPolicy:
    if message_name:
        rule = _BY_PATH.get(f"{message_name}.{field_name}")
        if rule is not None:
            return rule
    return _BY_NAME.get(field_name, DEFAULT_POLICY)


def is_key_material(field_name: str) -> bool:
    return policy_for(field_name).prefixed_bytes


def should_redact(field_name: str) -> bool:
    return policy_for(field_name).redact
