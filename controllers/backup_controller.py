# controllers/backup_controller.py
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from google.protobuf.json_format import ParseDict, ParseError
from meshtastic.protobuf import channel_pb2, localonly_pb2
from pydantic import ValidationError

from models.backup_model import (
    SUPPORTED_FORMAT,
    BackupError,
    BackupParseResult,
    ConfigBackupPayload,
    Location,
)
from models.backup_settings import BackupSettings
from models.canonical_value import CanonicalValue, Kind
from .backup.canonicalizer import canonicalize
from .backup.channel_url import InvalidChannelUrl, create_share_url, decode_share_url
from .backup.field_policy import BASE64_PREFIX, MARKER_KEYS, is_key_material
from .backup.yaml_reader import MalformedDocument, parse
from .backup.yaml_writer import dump_document

log = logging.getLogger(__name__)

CANNED_SEPARATOR = "|"

# Top-level keys accepted on import, CLI spelling first.
_MODULE_KEYS = ("module_config", "moduleConfig")
_CHANNEL_URL_KEYS = ("channel_url", "channelUrl")
_OWNER_SHORT_KEYS = ("owner_short", "ownerShort")
_CANNED_KEYS = ("canned_messages", "cannedMessages")
_REQUIRED_KEYS = ("config", "module_config")


class _Reconstruction(Exception):
    """Canonical data looked valid but does not fit the protobuf schema."""


# ---------- export ----------

def build_backup(payload: ConfigBackupPayload, settings: Optional[BackupSettings] = None) -> str:
    """Compose the backup document for a payload."""
    s = settings or BackupSettings()
    cfg = payload.config
    lora = cfg.lora if cfg.HasField("lora") else None

    doc: Dict[str, CanonicalValue] = {}
    if payload.canned_messages:
        doc["canned_messages"] = CanonicalValue.text(CANNED_SEPARATOR.join(payload.canned_messages))
    if payload.channels:
        doc["channel_url"] = CanonicalValue.text(create_share_url(payload.channels, lora, host=s.share_host))
    doc["config"] = canonicalize(cfg, emit_defaults=s.emit_defaults)
    if payload.location is not None and not payload.location.is_unset:
        doc["location"] = CanonicalValue.map_({
            "lat": CanonicalValue.number(payload.location.lat),
            "lon": CanonicalValue.number(payload.location.lon),
        })
    doc["module_config"] = canonicalize(payload.module_config, emit_defaults=s.emit_defaults)
    if payload.owner:
        doc["owner"] = CanonicalValue.text(payload.owner)
    if payload.owner_short:
        doc["owner_short"] = CanonicalValue.text(payload.owner_short)
    if payload.channels and s.include_channel_list:
        ordered = sorted(payload.channels, key=lambda c: c.index)
        doc["channels"] = CanonicalValue.list_(canonicalize(ch, emit_defaults=s.emit_defaults) for ch in ordered)

    text = dump_document(
        CanonicalValue.map_(doc),
        s.indent_width,
        quote_byte_fields=s.quote_byte_fields,
        required_keys=_REQUIRED_KEYS,
    )
    log.info("[backup] built document: %d sections, %d channels", len(doc), len(payload.channels))
    return text


# ---------- import ----------

def _first(root: CanonicalValue, keys) -> Optional[CanonicalValue]:
    for k in keys:
        v = root.get(k)
        if v is not None:
            return v
    return None


def _valid_channel_entry(entry: CanonicalValue) -> bool:
    if not entry.is_map():
        return False
    index = entry.get("index")
    return (
        index is not None
        and index.kind is Kind.NUMBER
        and float(index.value).is_integer()
        and index.value >= 0
    )


def _schema_plain(value: CanonicalValue, key: Optional[str] = None) -> Any:
    """CanonicalValue -> dict for ParseDict: marker keys dropped, base64: prefix removed."""
    k = value.kind
    if k is Kind.MAP:
        return {name: _schema_plain(child, name) for name, child in value.items() if name not in MARKER_KEYS}
    if k is Kind.LIST:
        return [_schema_plain(item, key) for item in value.elements()]
    if k is Kind.TEXT and value.value.startswith(BASE64_PREFIX):
        payload = value.value[len(BASE64_PREFIX):]
        if key is not None and is_key_material(key):
            try:
                base64.b64decode(payload, validate=True)
            except (binascii.Error, ValueError) as e:
                raise _Reconstruction(f"{key}: malformed base64 payload") from e
        return payload
    return value.to_plain()


def _to_message(value: CanonicalValue, message):
    try:
        return ParseDict(_schema_plain(value), message, ignore_unknown_fields=False)
    except (ParseError, TypeError, ValueError) as e:
        raise _Reconstruction(f"{message.DESCRIPTOR.name}: {e}") from e


def _optional_text(value: Optional[CanonicalValue]) -> Optional[str]:
    if value is None or value.kind is Kind.NULL:
        return None
    if value.kind in (Kind.TEXT, Kind.NUMBER, Kind.BOOL):
        return str(value.to_plain())
    raise _Reconstruction(f"expected text, got {value.kind.value}")


def _canned(value: Optional[CanonicalValue]) -> Optional[List[str]]:
    if value is None or value.kind is Kind.NULL:
        return None
    if value.is_list():
        return [str(item.to_plain()) for item in value.elements()]
    text = _optional_text(value)
    return [m for m in text.split(CANNED_SEPARATOR) if m]


def _location(value: Optional[CanonicalValue]) -> Optional[Location]:
    if value is None or value.kind is Kind.NULL:
        return None
    if not value.is_map():
        raise _Reconstruction("location must be a mapping")
    plain = value.to_plain()
    try:
        return Location.from_scaled(plain.get("lat"), plain.get("lon"))
    except (TypeError, ValueError) as e:
        raise _Reconstruction(f"location: {e}") from e


def parse_backup(text: str, settings: Optional[BackupSettings] = None) -> BackupParseResult:
    """
    Parse and validate a backup document.
    Structural problems are collected as BackupError tags; a payload is returned only
    when there are none.
    """
    s = settings or BackupSettings()
    try:
        root = parse(text)
    except MalformedDocument as e:
        log.warning("[backup] not a backup document: %s", e)
        return BackupParseResult(errors=[BackupError.INVALID_FILE])
    if not root.is_map():
        log.warning("[backup] document root is %s, expected a mapping", root.kind.value)
        return BackupParseResult(errors=[BackupError.INVALID_FILE])

    errors: List[BackupError] = []

    marker = root.get("format")
    if marker is not None and (marker.kind is not Kind.TEXT or marker.value != SUPPORTED_FORMAT):
        errors.append(BackupError.UNSUPPORTED_VERSION)

    config = root.get("config")
    if config is None or not config.is_map():
        errors.append(BackupError.MISSING_CONFIG)

    module_config = _first(root, _MODULE_KEYS)
    if module_config is None or not module_config.is_map():
        errors.append(BackupError.MISSING_MODULE_CONFIG)

    channels_node = root.get("channels")
    channels_from_url: List[channel_pb2.Channel] = []
    if channels_node is not None:
        entries = channels_node.elements() if channels_node.is_list() else None
        if entries is None or not all(_valid_channel_entry(e) for e in entries):
            errors.append(BackupError.INVALID_CHANNELS)
        else:
            indexes = [int(e.get("index").value) for e in entries]
            if len(set(indexes)) != len(indexes):
                errors.append(BackupError.INVALID_CHANNELS)
    else:
        url = _first(root, _CHANNEL_URL_KEYS)
        if url is not None and url.kind is Kind.TEXT and url.value:
            try:
                channels_from_url = decode_share_url(url.value, host=s.share_host)
            except InvalidChannelUrl as e:
                log.warning("[backup] channel_url rejected: %s", e)
                errors.append(BackupError.INVALID_CHANNEL_URL)
        elif url is not None and url.kind is not Kind.NULL:
            errors.append(BackupError.INVALID_CHANNEL_URL)

    if errors:
        log.warning("[backup] validation failed: %s", [e.value for e in errors])
        return BackupParseResult(errors=errors)

    try:
        if channels_node is not None:
            channels = [_to_message(e, channel_pb2.Channel()) for e in channels_node.elements()]
        else:
            channels = channels_from_url
        backup = ConfigBackupPayload(
            config=_to_message(config, localonly_pb2.LocalConfig()),
            module_config=_to_message(module_config, localonly_pb2.LocalModuleConfig()),
            channels=channels,
            owner=_optional_text(root.get("owner")),
            owner_short=_optional_text(_first(root, _OWNER_SHORT_KEYS)),
            location=_location(root.get("location")),
            canned_messages=_canned(_first(root, _CANNED_KEYS)),
        )
    except (_Reconstruction, ValidationError) as e:
        log.warning("[backup] reconstruction failed: %s", e)
        return BackupParseResult(errors=[BackupError.INVALID_FILE])

    log.info("[backup] parsed document: %d channels", len(backup.channels))
    return BackupParseResult(backup=backup)
