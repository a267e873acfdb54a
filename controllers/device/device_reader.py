# controllers/device/device_reader.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from meshtastic.protobuf import channel_pb2, localonly_pb2

from ._device_common import DeviceBase, _safe_getattr
from controllers.canned_messages import PubSubCannedMessageSource, fetch_canned_messages
from models.backup_model import ConfigBackupPayload, Location
from models.backup_settings import BackupSettings

log = logging.getLogger(__name__)


class DeviceReader(DeviceBase):
    """
    Read-only ops. Uses the Python API to build a restorable snapshot of the node.
    """

    def identity(self, silent: bool = False) -> Dict[str, str]:
        mi = _safe_getattr(self._iface, "myInfo")
        m = _safe_getattr(self._iface, "metadata")
        out = {
            "deviceId": str(_safe_getattr(mi, "deviceId", "") or ""),
            "hwModel": str(_safe_getattr(m, "hwModel", "") or _safe_getattr(mi, "hwModel", "") or ""),
            "firmwareVersion": str(_safe_getattr(m, "firmwareVersion", "") or ""),
            "port": self._port_path or "",
        }
        if not silent:
            log.info("identity: %s", out)
        return out

    def _get_owner(self, field: str) -> Optional[str]:
        try:
            u = self._iface.getMyUser()
            if isinstance(u, dict):
                return u.get(field)
            # some custom wrappers expose attributes
            return getattr(u, field, None)
        except Exception:
            return None

    def _location(self) -> Optional[Location]:
        try:
            return Location.from_node(self._iface.getMyNodeInfo())
        except Exception:
            log.debug("position unavailable", exc_info=True)
            return None

    def channels(self) -> List[channel_pb2.Channel]:
        out: List[channel_pb2.Channel] = []
        for ch in self.wait_for_channels():
            # Skip channels that are explicitly disabled or have no settings
            if ch.role == channel_pb2.Channel.Role.DISABLED or not ch.HasField("settings"):
                continue
            copy = channel_pb2.Channel()
            copy.CopyFrom(ch)
            out.append(copy)
        return out

    def canned_messages(self, settings: Optional[BackupSettings] = None) -> List[str]:
        s = settings or BackupSettings()
        return fetch_canned_messages(
            PubSubCannedMessageSource(self._iface),
            timeout_s=s.canned_timeout_s,
            retries=s.canned_retries,
        )

    def snapshot(self, with_canned: bool = False, settings: Optional[BackupSettings] = None) -> ConfigBackupPayload:
        iface = self._iface
        if not iface:
            raise RuntimeError("Serial interface not initialized")
        ln = iface.localNode

        config = localonly_pb2.LocalConfig()
        config.CopyFrom(ln.localConfig)
        module_config = localonly_pb2.LocalModuleConfig()
        module_config.CopyFrom(ln.moduleConfig)

        payload = ConfigBackupPayload(
            config=config,
            module_config=module_config,
            channels=self.channels(),
            owner=self._get_owner("longName"),
            owner_short=self._get_owner("shortName"),
            location=self._location(),
            canned_messages=(self.canned_messages(settings) or None) if with_canned else None,
        )
        ident = self.identity(silent=True)
        log.info(
            "snapshot of %s (%s, fw %s): %d channels, owner=%s",
            ident["deviceId"] or ident["port"], ident["hwModel"], ident["firmwareVersion"],
            len(payload.channels), payload.owner,
        )
        return payload
