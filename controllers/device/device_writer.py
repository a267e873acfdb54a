# controllers/device/device_writer.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from ._device_common import DeviceBase, _now
from controllers.diff_controller import describe, proto_field_name
from models.diff_model import UpdateCommand

log = logging.getLogger(__name__)


class DeviceWriter(DeviceBase):
    """
    API-backed update sink:
    - Receives UpdateCommands from the diff engine
    - Writes each one through the local Node inside a single settings transaction
    - Returns an apply report
    Callable, so it can be handed to diff_controller.apply() directly.
    """

    def __call__(self, cmd: UpdateCommand) -> Dict[str, Any]:
        return self._exec(cmd)

    def apply_commands(self, commands: Iterable[UpdateCommand]) -> Dict[str, Any]:
        commands = list(commands)
        if not commands:
            log.info("no changes detected; skipping writes")
            return {"status": "no_change", "commands": [], "errors": []}

        report: Dict[str, Any] = {"status": "ok", "commands": [], "errors": []}
        node = self.node
        node.beginSettingsTransaction()
        try:
            for cmd in commands:
                res = self._exec(cmd)
                report["commands"].append(res)
                if res["status"] != "success":
                    report["status"] = "error"
                    report["errors"].append({f"{cmd.kind}:{cmd.target}": res.get("error")})
                    log.warning("aborting after %s:%s; status=%s", cmd.kind, cmd.target, res["status"])
                    break
        finally:
            try:
                node.commitSettingsTransaction()
            except Exception as e:
                report["status"] = "error"
                report["errors"].append({"commit": str(e)})
                log.exception("commitSettingsTransaction failed")
        return report

    def _exec(self, cmd: UpdateCommand) -> Dict[str, Any]:
        handlers = {
            "config": self._exec_config,
            "moduleConfig": self._exec_module,
            "channel": self._exec_channel,
            "owner": self._exec_owner,
            "cannedMessages": self._exec_canned,
        }
        log.info("writing %s:%s", cmd.kind, cmd.target)
        log.debug("payload: %s", describe(cmd))
        start = _now()
        try:
            handlers[cmd.kind](cmd)
            status, error = "success", None
        except Exception as e:
            status, error = "error", str(e)
            log.warning("write %s:%s failed: %s", cmd.kind, cmd.target, e)
        out = {
            "kind": cmd.kind,
            "target": cmd.target,
            "status": status,
            "duration_s": round(_now() - start, 3),
        }
        if error:
            out["error"] = error
        return out

    def _exec_config(self, cmd: UpdateCommand) -> None:
        name = proto_field_name(cmd.target)
        getattr(self.node.localConfig, name).CopyFrom(cmd.value)
        self.node.writeConfig(name)

    def _exec_module(self, cmd: UpdateCommand) -> None:
        name = proto_field_name(cmd.target)
        getattr(self.node.moduleConfig, name).CopyFrom(cmd.value)
        self.node.writeConfig(name)

    def _exec_channel(self, cmd: UpdateCommand) -> None:
        idx = int(cmd.target)
        ch_list: List[Any] = self.node.channels
        if idx < 0 or not isinstance(ch_list, list) or idx >= len(ch_list):
            raise RuntimeError(f"channel slot {idx} not available on device")
        ch_list[idx].CopyFrom(cmd.value)
        self.node.writeChannel(idx)

    def _exec_owner(self, cmd: UpdateCommand) -> None:
        self.node.setOwner(
            long_name=cmd.value.get("long_name"),
            short_name=cmd.value.get("short_name"),
        )

    def _exec_canned(self, cmd: UpdateCommand) -> None:
        self.node.set_canned_message("|".join(cmd.value))
