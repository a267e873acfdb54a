# controllers/device/_device_common.py
from __future__ import annotations

import logging
import time
from typing import Optional

from meshtastic.serial_interface import SerialInterface

log = logging.getLogger(__name__)


def _now() -> float:
    return time.monotonic()


def _safe_getattr(obj, name, default=None):
    try:
        return getattr(obj, name, default)
    except Exception:
        return default


class DeviceBase:
    """
    Shared base: manages SerialInterface lifecycle.
    """

    def __init__(self, port: Optional[str] = None, iface: Optional[SerialInterface] = None):
        if not port and not iface:
            raise ValueError("Device requires either a serial 'port' or an existing 'iface'")
        self._iface = iface or SerialInterface(devPath=port)
        self._owns_iface = iface is None
        self._port_path = _safe_getattr(self._iface, "port") or _safe_getattr(self._iface, "devPath")

        # Initial warm-up (non-fatal if it times out)
        try:
            self._iface.localNode.waitForConfig()
        except Exception:
            log.debug("waitForConfig suppressed", exc_info=True)

    @property
    def iface(self):
        return self._iface

    @property
    def node(self):
        return self._iface.localNode

    def wait_for_channels(self, timeout_s: float = 6.0) -> list:
        """
        Channel list arrives asynchronously after requestChannels(); poll until
        the primary (or any enabled channel) shows up.
        """
        ln = self.node
        ch_list = _safe_getattr(ln, "channels")
        if isinstance(ch_list, list) and ch_list:
            return ch_list
        try:
            log.info("Requesting fresh channel list from device...")
            ln.requestChannels()
        except Exception:
            log.debug("requestChannels suppressed", exc_info=True)

        def _ready(lst) -> bool:
            if not (isinstance(lst, list) and lst):
                return False
            for ch in lst:
                if ch.index == 0 or (ch.role != 0 and ch.HasField("settings")):
                    return True
            return False

        deadline = _now() + timeout_s
        while _now() < deadline:
            ch_list = _safe_getattr(ln, "channels")
            if _ready(ch_list):
                return ch_list
            time.sleep(0.2)
        return _safe_getattr(ln, "channels") or []

    # ------------- lifecycle -------------

    def close(self) -> None:
        try:
            if self._owns_iface and self._iface is not None:
                self._iface.close()
        except Exception:
            log.debug("close suppressed", exc_info=True)
