from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from meshtastic.protobuf import channel_pb2, localonly_pb2
from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_FORMAT = "meshtastic-web-config-backup-v1"

# scaled-integer coordinates are 1e-7 degrees
INT_DEG = 1e7


def _err(prefix: str, detail: str) -> str:
    return f"{prefix}: {detail}"


class BackupError(str, Enum):
    INVALID_FILE = "invalidFile"
    MISSING_CONFIG = "missingConfig"
    MISSING_MODULE_CONFIG = "missingModuleConfig"
    INVALID_CHANNELS = "invalidChannels"
    INVALID_CHANNEL_URL = "invalidChannelUrl"
    UNSUPPORTED_VERSION = "unsupportedVersion"


def _to_degrees(value: Any) -> float:
    if value is None:
        return 0.0
    v = float(value)
    # values already in degrees pass through unchanged
    return v / INT_DEG if abs(v) > 180 else v


class Location(BaseModel):
    """Node position in decimal degrees."""
    model_config = ConfigDict(extra='ignore')  # alt and friends are not restored
    lat: float = 0.0
    lon: float = 0.0

    @field_validator("lat")
    @classmethod
    def _v_lat(cls, v: float) -> float:
        if not (-90.0 <= v <= 90.0):
            raise ValueError(_err("location.lat", "must be in [-90, 90]"))
        return v

    @field_validator("lon")
    @classmethod
    def _v_lon(cls, v: float) -> float:
        if not (-180.0 <= v <= 180.0):
            raise ValueError(_err("location.lon", "must be in [-180, 180]"))
        return v

    @property
    def is_unset(self) -> bool:
        return self.lat == 0 and self.lon == 0

    @classmethod
    def from_scaled(cls, latitude_i: Optional[int], longitude_i: Optional[int]) -> Optional[Location]:
        """Build from latitudeI/longitudeI. Returns None when both are zero or absent."""
        loc = cls(lat=_to_degrees(latitude_i), lon=_to_degrees(longitude_i))
        return None if loc.is_unset else loc

    @classmethod
    def from_node(cls, node: Optional[Dict[str, Any]]) -> Optional[Location]:
        """Read the position block of a node-info dict (as kept by meshtastic interfaces)."""
        pos = (node or {}).get("position") or {}
        if "latitudeI" in pos or "longitudeI" in pos:
            return cls.from_scaled(pos.get("latitudeI"), pos.get("longitudeI"))
        return cls.from_scaled(pos.get("latitude"), pos.get("longitude"))

    def to_scaled(self) -> Tuple[int, int]:
        return int(round(self.lat * INT_DEG)), int(round(self.lon * INT_DEG))


class ConfigBackupPayload(BaseModel):
    """
    Restorable device configuration.
    config/module_config/channels are the meshtastic protobuf types; the rest is
    optional node metadata that rides along in the document.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: localonly_pb2.LocalConfig = Field(default_factory=localonly_pb2.LocalConfig)
    module_config: localonly_pb2.LocalModuleConfig = Field(default_factory=localonly_pb2.LocalModuleConfig)
    channels: List[channel_pb2.Channel] = Field(default_factory=list)
    owner: Optional[str] = None
    owner_short: Optional[str] = None
    location: Optional[Location] = None
    canned_messages: Optional[List[str]] = None

    @field_validator("channels")
    @classmethod
    def _v_channels(cls, v: List[channel_pb2.Channel]) -> List[channel_pb2.Channel]:
        seen = set()
        for ch in v:
            if ch.index < 0:
                raise ValueError(_err("channels", f"negative index {ch.index}"))
            if ch.index in seen:
                raise ValueError(_err("channels", f"duplicate index {ch.index}"))
            seen.add(ch.index)
        return v

    def channel_map(self) -> Dict[int, channel_pb2.Channel]:
        return {ch.index: ch for ch in self.channels}


class BackupParseResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    backup: Optional[ConfigBackupPayload] = None
    errors: List[BackupError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and self.backup is not None
