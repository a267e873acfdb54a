from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "MESHBACKUP_"


class BackupSettings(BaseModel):
    """Export/import knobs. Every field can be overridden via MESHBACKUP_<FIELD> env vars."""
    model_config = ConfigDict(extra='ignore', frozen=True)

    indent_width: int = Field(default=2, ge=1, le=8)
    share_host: str = "meshtastic.org"
    quote_byte_fields: bool = True       # psk: "base64:..." vs psk: base64:...
    include_channel_list: bool = True    # explicit `channels:` list next to channel_url
    emit_defaults: bool = False
    canned_timeout_s: float = Field(default=3.0, gt=0)
    canned_retries: int = Field(default=1, ge=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> BackupSettings:
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls.model_validate(values)
