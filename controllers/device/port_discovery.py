from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from serial.tools import list_ports

log = logging.getLogger(__name__)


def detect_candidates() -> List[Dict[str, str]]:
    """
    Enumerate serial ports a node could be attached to.
    Returns: [{"path": "...", "description": "..."}]
    """
    out: List[Dict[str, str]] = []
    for p in list_ports.comports():
        desc_parts = [p.description or p.device]
        if p.manufacturer:
            desc_parts.append(p.manufacturer)
        if p.serial_number:
            desc_parts.append(f"SN:{p.serial_number}")
        out.append({"path": p.device, "description": " | ".join(desc_parts)})
    return out


def choose_port(explicit: Optional[str] = None, remembered: Optional[str] = None) -> Tuple[Optional[str], Optional[Dict]]:
    """
    Port to open, in order: explicit, remembered (if still attached), the only attached candidate.
    Returns (port, None) or (None, error) with error codes no_candidates / multiple_candidates.
    """
    if explicit:
        return explicit, None

    cands = detect_candidates()
    paths = [c["path"] for c in cands]
    if remembered and remembered in paths:
        return remembered, None
    if remembered:
        log.info("remembered port %s is not attached", remembered)

    if len(cands) == 1:
        log.info("auto-selected %s (%s)", cands[0]["path"], cands[0]["description"])
        return cands[0]["path"], None
    if not cands:
        return None, {"code": "no_candidates", "detail": "No serial devices found"}
    return None, {"code": "multiple_candidates", "detail": "Multiple serial devices found", "candidates": cands}
