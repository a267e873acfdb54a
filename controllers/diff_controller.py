# controllers/diff_controller.py
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Tuple

from google.protobuf.message import Message
from meshtastic.protobuf import localonly_pb2

from models.backup_model import ConfigBackupPayload
from models.diff_model import DiffResult, UpdateCommand
from .backup.canonicalizer import canonicalize
from .backup.field_policy import should_redact

log = logging.getLogger(__name__)

CONFIG_SECTIONS: Tuple[str, ...] = (
    "device", "position", "power", "network", "display", "lora", "bluetooth", "security",
)
MODULE_SECTIONS: Tuple[str, ...] = (
    "mqtt", "serial", "externalNotification", "storeForward", "rangeTest", "telemetry",
    "cannedMessage", "audio", "remoteHardware", "neighborInfo", "ambientLighting",
    "detectionSensor", "paxcounter",
)

UpdateSink = Callable[[UpdateCommand], Any]


def _field_names(descriptor) -> Dict[str, str]:
    # json name -> proto field name
    return {fd.json_name: fd.name for fd in descriptor.fields}


_CONFIG_FIELDS = _field_names(localonly_pb2.LocalConfig.DESCRIPTOR)
_MODULE_FIELDS = _field_names(localonly_pb2.LocalModuleConfig.DESCRIPTOR)


def proto_field_name(section: str) -> str:
    """Proto field name for a config/module section json name (e.g. storeForward -> store_forward)."""
    return _CONFIG_FIELDS.get(section) or _MODULE_FIELDS.get(section) or section


def _section(container: Message, json_name: str, fields: Dict[str, str]):
    name = fields.get(json_name)
    if name is None or not container.HasField(name):
        return None
    return getattr(container, name)


def _differs(live: Any, backup: Any) -> bool:
    if live is None:
        return True
    return canonicalize(live) != canonicalize(backup)


def _changed_sections(live: Message, backup: Message, names, fields) -> set:
    changed = set()
    for json_name in names:
        b = _section(backup, json_name, fields)
        if b is None:
            continue  # absent from the backup: leave the device alone
        if _differs(_section(live, json_name, fields), b):
            changed.add(json_name)
    return changed


def _norm_name(v: Any) -> str:
    return v.strip() if isinstance(v, str) else ""


def compute_diff(live: ConfigBackupPayload, backup: ConfigBackupPayload) -> DiffResult:
    """Which sections, channels and owner fields of the backup differ from the live node."""
    live_channels = live.channel_map()
    backup_channels = backup.channel_map()
    changed_channels = set()
    for idx in sorted(set(live_channels) | set(backup_channels)):
        if idx not in backup_channels:
            continue  # channels are never removed implicitly
        if _differs(live_channels.get(idx), backup_channels[idx]):
            changed_channels.add(idx)

    owner = _norm_name(backup.owner)
    owner_short = _norm_name(backup.owner_short)
    owner_changed = bool(
        (owner and owner != _norm_name(live.owner))
        or (owner_short and owner_short != _norm_name(live.owner_short))
    )

    diff = DiffResult(
        changed_config_sections=_changed_sections(live.config, backup.config, CONFIG_SECTIONS, _CONFIG_FIELDS),
        changed_module_sections=_changed_sections(
            live.module_config, backup.module_config, MODULE_SECTIONS, _MODULE_FIELDS
        ),
        changed_channel_indexes=changed_channels,
        owner_changed=owner_changed,
        canned_messages_changed=backup.canned_messages is not None,
    )
    log.info(
        "[diff] config=%s modules=%s channels=%s owner=%s canned=%s",
        sorted(diff.changed_config_sections),
        sorted(diff.changed_module_sections),
        sorted(diff.changed_channel_indexes),
        diff.owner_changed,
        diff.canned_messages_changed,
    )
    return diff


def apply_diff(live: ConfigBackupPayload, backup: ConfigBackupPayload, diff: DiffResult) -> List[UpdateCommand]:
    """
    Discrete update commands for everything flagged in `diff`, in a fixed order:
    config sections, module sections, channels by index, owner, canned messages.
    """
    commands: List[UpdateCommand] = []
    for json_name in CONFIG_SECTIONS:
        if json_name in diff.changed_config_sections:
            value = _section(backup.config, json_name, _CONFIG_FIELDS)
            if value is not None:
                commands.append(UpdateCommand(kind="config", target=json_name, value=value))
    for json_name in MODULE_SECTIONS:
        if json_name in diff.changed_module_sections:
            value = _section(backup.module_config, json_name, _MODULE_FIELDS)
            if value is not None:
                commands.append(UpdateCommand(kind="moduleConfig", target=json_name, value=value))

    backup_channels = backup.channel_map()
    for idx in sorted(diff.changed_channel_indexes):
        if idx in backup_channels:
            commands.append(UpdateCommand(kind="channel", target=str(idx), value=backup_channels[idx]))

    if diff.owner_changed:
        names = {}
        owner, owner_short = _norm_name(backup.owner), _norm_name(backup.owner_short)
        if owner and owner != _norm_name(live.owner):
            names["long_name"] = owner
        if owner_short and owner_short != _norm_name(live.owner_short):
            names["short_name"] = owner_short
        if names:
            commands.append(UpdateCommand(kind="owner", target="owner", value=names))

    if diff.canned_messages_changed and backup.canned_messages is not None:
        commands.append(UpdateCommand(kind="cannedMessages", target="cannedMessages", value=list(backup.canned_messages)))

    log.info("[diff] updates: %s", json.dumps([redact(describe(c)) for c in commands], indent=2, default=str))
    return commands


def apply(live: ConfigBackupPayload, backup: ConfigBackupPayload, diff: DiffResult, sink: UpdateSink) -> List[UpdateCommand]:
    """Forward every flagged item to `sink` once. Returns the commands sent."""
    commands = apply_diff(live, backup, diff)
    for cmd in commands:
        sink(cmd)
    return commands


def describe(cmd: UpdateCommand) -> Dict[str, Any]:
    """Plain-data view of a command, for logs and dry runs."""
    value = cmd.value
    if isinstance(value, Message):
        value = canonicalize(value).to_plain()
    return {"kind": cmd.kind, "target": cmd.target, "value": value}


def redact(obj: Any) -> Any:
    """Recursively mask secret fields and drop empty values."""
    if isinstance(obj, list):
        processed = [redact(item) for item in obj]
        return [item for item in processed if item not in (None, "", [], {})]
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if should_redact(k):
                out[k] = "<redacted>"
                continue
            processed = redact(v)
            if processed not in (None, "", [], {}):
                out[k] = processed
        return out
    return obj
