# controllers/canned_messages.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional, Protocol

from meshtastic.protobuf import admin_pb2, portnums_pb2
from pubsub import pub

log = logging.getLogger(__name__)

ADMIN_TOPIC = "meshtastic.receive.admin"
SEPARATOR = "|"

ResponseCallback = Callable[[str], None]


class CannedMessageSource(Protocol):
    def subscribe(self, callback: ResponseCallback) -> None: ...
    def unsubscribe(self, callback: ResponseCallback) -> None: ...
    def request(self) -> None: ...


def split_canned_messages(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [m for m in text.split(SEPARATOR) if m.strip()]


def _attempt(source: CannedMessageSource, timeout_s: float) -> List[str]:
    done = threading.Event()
    box: dict = {}

    def on_response(text: str) -> None:
        if not done.is_set():
            box["text"] = text
            done.set()

    source.subscribe(on_response)
    try:
        source.request()
        if not done.wait(timeout_s):
            log.info("[canned] no response within %.1fs", timeout_s)
    except Exception as e:
        log.warning("[canned] request failed: %s", e)
    finally:
        source.unsubscribe(on_response)
    return split_canned_messages(box.get("text"))


def fetch_canned_messages(source: CannedMessageSource, timeout_s: float = 3.0, retries: int = 1) -> List[str]:
    """
    Ask the node for its canned messages.
    The listener is registered before the request goes out and removed after every
    attempt. An attempt that times out, fails or returns nothing is retried up to
    `retries` times; the final fallback is an empty list.
    """
    attempts = 1 + max(0, retries)
    for n in range(1, attempts + 1):
        messages = _attempt(source, timeout_s)
        if messages:
            log.info("[canned] received %d messages (attempt %d)", len(messages), n)
            return messages
    log.info("[canned] giving up after %d attempts", attempts)
    return []


def _response_text(packet: dict) -> Optional[str]:
    admin = ((packet or {}).get("decoded") or {}).get("admin") or {}
    raw = admin.get("raw")
    if raw is not None and hasattr(raw, "WhichOneof"):
        if raw.WhichOneof("payload_variant") == "get_canned_message_module_messages_response":
            return raw.get_canned_message_module_messages_response
        return None
    return admin.get("getCannedMessageModuleMessagesResponse")


class PubSubCannedMessageSource:
    """Canned-message exchange over a meshtastic interface, via its pypubsub admin topic."""

    def __init__(self, iface: Any):
        self._iface = iface
        # pypubsub keeps weak references; hold the listeners here
        self._listeners = {}

    def subscribe(self, callback: ResponseCallback) -> None:
        def listener(packet, interface):
            if interface is not self._iface:
                return
            text = _response_text(packet)
            if text is not None:
                callback(text)

        self._listeners[callback] = listener
        pub.subscribe(listener, ADMIN_TOPIC)

    def unsubscribe(self, callback: ResponseCallback) -> None:
        listener = self._listeners.pop(callback, None)
        if listener is not None:
            pub.unsubscribe(listener, ADMIN_TOPIC)

    def request(self) -> None:
        msg = admin_pb2.AdminMessage()
        msg.get_canned_message_module_messages_request = True
        self._iface.sendData(
            msg,
            destinationId=self._iface.localNode.nodeNum,
            portNum=portnums_pb2.PortNum.ADMIN_APP,
            wantResponse=True,
        )
