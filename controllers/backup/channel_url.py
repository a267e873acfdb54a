# controllers/backup/channel_url.py
from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Iterable, List, Mapping, Optional, Union
from urllib.parse import parse_qs, urlsplit

from google.protobuf.message import DecodeError
from meshtastic.protobuf import apponly_pb2, channel_pb2, config_pb2

log = logging.getLogger(__name__)

SHARE_HOST = "meshtastic.org"
SHARE_PATH = "/e/"
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]*$")

ChannelsLike = Union[
    Iterable[channel_pb2.Channel],
    Iterable[channel_pb2.ChannelSettings],
    Mapping[int, channel_pb2.Channel],
]


class InvalidChannelUrl(ValueError):
    """URL is not a https://meshtastic.org/e/#<payload> share link."""


def _shareable_settings(channels: ChannelsLike) -> List[channel_pb2.ChannelSettings]:
    if isinstance(channels, Mapping):
        channels = list(channels.values())
    items = list(channels)
    if all(isinstance(c, channel_pb2.ChannelSettings) for c in items):
        return items
    ordered = sorted(items, key=lambda c: c.index)
    return [c.settings for c in ordered if c.role != channel_pb2.Channel.Role.DISABLED]


def encode_share_token(channels: ChannelsLike, lora_config: Optional[config_pb2.Config.LoRaConfig] = None) -> str:
    """Pack channel settings (+ optional LoRa config) into URL-safe base64 without padding."""
    channel_set = apponly_pb2.ChannelSet()
    channel_set.settings.extend(_shareable_settings(channels))
    if lora_config is not None:
        channel_set.lora_config.CopyFrom(lora_config)
    raw = base64.urlsafe_b64encode(channel_set.SerializeToString()).decode("ascii")
    return raw.rstrip("=")


def create_share_url(
    channels: ChannelsLike,
    lora_config: Optional[config_pb2.Config.LoRaConfig] = None,
    *,
    add: bool = False,
    host: str = SHARE_HOST,
) -> str:
    """Share link for a channel set. `add` asks the consumer to append instead of replace."""
    query = "?add=true" if add else ""
    return f"https://{host}{SHARE_PATH}{query}#{encode_share_token(channels, lora_config)}"


def _split_share_url(url: str, host: str) -> tuple:
    try:
        parts = urlsplit(url.strip())
    except ValueError as e:
        raise InvalidChannelUrl(f"unparseable url: {e}") from e
    if parts.hostname != host or parts.path.rstrip("/") != SHARE_PATH.rstrip("/"):
        raise InvalidChannelUrl(f"not a {host}{SHARE_PATH} share link")
    if not parts.fragment:
        raise InvalidChannelUrl("missing channel payload")
    return parts.query, parts.fragment


def decode_token(token: str) -> Optional[apponly_pb2.ChannelSet]:
    """Reverse encode_share_token. Returns None when the payload cannot be decoded."""
    if not _TOKEN_RE.match(token):
        log.warning("[channel-url] payload has characters outside the url-safe alphabet")
        return None
    padded = token + "=" * ((4 - len(token) % 4) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
        return apponly_pb2.ChannelSet.FromString(raw)
    except (binascii.Error, ValueError, DecodeError) as e:
        log.warning("[channel-url] payload not decodable: %s", e)
        return None


def decode_channel_set(url: str, *, host: str = SHARE_HOST) -> Optional[apponly_pb2.ChannelSet]:
    """
    Validate the share URL and decode its ChannelSet.
    Raises InvalidChannelUrl for a wrong host/path or a missing fragment;
    returns None when the fragment is not a decodable channel set.
    """
    _, fragment = _split_share_url(url, host)
    return decode_token(fragment)


def channel_set_to_channels(channel_set: apponly_pb2.ChannelSet) -> List[channel_pb2.Channel]:
    """Index comes from list position; position 0 is PRIMARY, the rest SECONDARY."""
    out: List[channel_pb2.Channel] = []
    for index, settings in enumerate(channel_set.settings):
        ch = channel_pb2.Channel(
            index=index,
            role=channel_pb2.Channel.Role.PRIMARY if index == 0 else channel_pb2.Channel.Role.SECONDARY,
        )
        ch.settings.CopyFrom(settings)
        out.append(ch)
    return out


def decode_share_url(url: str, *, host: str = SHARE_HOST) -> List[channel_pb2.Channel]:
    """Channels carried by a share URL; empty when the payload is undecodable."""
    channel_set = decode_channel_set(url, host=host)
    if channel_set is None:
        return []
    return channel_set_to_channels(channel_set)


def is_additive_url(url: str, *, host: str = SHARE_HOST) -> bool:
    query, _ = _split_share_url(url, host)
    values = parse_qs(query).get("add") or []
    return any(v.lower() == "true" for v in values)
