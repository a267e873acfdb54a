from __future__ import annotations

from typing import Any, Literal, Set

from pydantic import BaseModel, ConfigDict, Field

CommandKind = Literal["config", "moduleConfig", "channel", "owner", "cannedMessages"]


class DiffResult(BaseModel):
    changed_config_sections: Set[str] = Field(default_factory=set)
    changed_module_sections: Set[str] = Field(default_factory=set)
    changed_channel_indexes: Set[int] = Field(default_factory=set)
    owner_changed: bool = False
    canned_messages_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(
            self.changed_config_sections
            or self.changed_module_sections
            or self.changed_channel_indexes
            or self.owner_changed
            or self.canned_messages_changed
        )


class UpdateCommand(BaseModel):
    """
    One discrete write for the device.
    target is the section json name, the channel index, "owner" or "cannedMessages".
    value is the backup's protobuf section/channel, an owner dict or the message list.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kind: CommandKind
    target: str
    value: Any
