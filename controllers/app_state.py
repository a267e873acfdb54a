from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

STATE_DIR_ENV = "MESHBACKUP_STATE_DIR"


class AppState:
    """
    JSON file remembering CLI choices between runs:
    - preferred_port: used when --port is omitted
    - last_backup: most recent document written by export
    Lives in ~/.meshbackup/app_state.json unless MESHBACKUP_STATE_DIR points elsewhere.
    """

    FILENAME = "app_state.json"
    DIR_NAME = ".meshbackup"

    def __init__(self, state_dir: Optional[Path] = None):
        if state_dir is None:
            base = os.getenv(STATE_DIR_ENV)
            state_dir = Path(base) if base else Path.home() / self.DIR_NAME
        self.path = Path(state_dir) / self.FILENAME

    def read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("[app-state] ignoring unreadable %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def update(self, **changes: Any) -> bool:
        """Merge `changes` into the stored state; a None value removes the key."""
        data = self.read()
        for key, value in changes.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as e:
            log.warning("[app-state] cannot write %s: %s", self.path, e)
            return False
        return True

    @property
    def preferred_port(self) -> Optional[str]:
        return self.read().get("preferred_port") or None

    def remember_port(self, port: Optional[str]) -> bool:
        return self.update(preferred_port=port or None)

    @property
    def last_backup(self) -> Optional[Path]:
        value = self.read().get("last_backup")
        return Path(value) if value else None

    def remember_backup(self, path: Path) -> bool:
        return self.update(last_backup=str(Path(path).resolve()))
