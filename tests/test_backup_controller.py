"""Tests for backup document assembly and validation."""

import pytest
import yaml
from pydantic import ValidationError
from meshtastic.protobuf import channel_pb2, config_pb2, localonly_pb2

from controllers.backup.channel_url import create_share_url
from controllers.backup.yaml_writer import HEADER_COMMENT
from controllers.backup_controller import build_backup, parse_backup
from models.backup_model import BackupError, ConfigBackupPayload, Location
from models.backup_settings import BackupSettings

Role = channel_pb2.Channel.Role
LoRa = config_pb2.Config.LoRaConfig


def _payload(**overrides):
    cfg = localonly_pb2.LocalConfig()
    cfg.device.role = config_pb2.Config.DeviceConfig.Role.ROUTER
    cfg.lora.region = LoRa.RegionCode.US
    cfg.lora.modem_preset = LoRa.ModemPreset.MEDIUM_FAST
    cfg.lora.use_preset = True
    cfg.security.private_key = bytes(range(32))
    cfg.network.ntp_server = "pool.ntp.org"

    mod = localonly_pb2.LocalModuleConfig()
    mod.mqtt.enabled = True
    mod.mqtt.address = "mqtt.example.org"
    mod.store_forward.records = 50

    channels = [
        channel_pb2.Channel(
            index=0, role=Role.PRIMARY,
            settings=channel_pb2.ChannelSettings(name="Primary", psk=b"\x01"),
        ),
        channel_pb2.Channel(
            index=1, role=Role.SECONDARY,
            settings=channel_pb2.ChannelSettings(name="Secondary", psk=bytes(range(16)), uplink_enabled=True),
        ),
    ]
    fields = dict(
        config=cfg,
        module_config=mod,
        channels=channels,
        owner="Nicco Pisa Berry \U0001F1EE\U0001F1F9",
        owner_short="NPB",
        location=Location.from_scaled(451234567, 91234567),
        canned_messages=["Hi", "Bye", "On my way"],
    )
    fields.update(overrides)
    return ConfigBackupPayload(**fields)


def _top_level_keys(text):
    return [line.split(":", 1)[0] for line in text.splitlines() if line and line[0] not in " #-"]


class TestBuild:
    """Export path."""

    def test_header_and_section_order(self):
        text = build_backup(_payload())
        assert text.splitlines()[0] == HEADER_COMMENT
        assert _top_level_keys(text) == [
            "canned_messages", "channel_url", "config", "location",
            "module_config", "owner", "owner_short", "channels",
        ]

    def test_deterministic(self):
        assert build_backup(_payload()) == build_backup(_payload())

    def test_key_material_prefixed(self):
        text = build_backup(_payload())
        assert 'psk: "base64:AQ=="' in text
        assert "privateKey: \"base64:" in text

    def test_unquoted_byte_mode(self):
        text = build_backup(_payload(), BackupSettings(quote_byte_fields=False))
        assert "psk: base64:AQ==" in text
        assert parse_backup(text).ok

    def test_flag_emoji_escaped(self):
        assert 'owner: "Nicco Pisa Berry \\U0001F1EE\\U0001F1F9"' in build_backup(_payload())

    def test_coordinates_in_degrees(self):
        text = build_backup(_payload())
        assert "  lat: 45.1234567\n" in text
        assert "  lon: 9.1234567\n" in text

    def test_zero_location_omitted(self):
        text = build_backup(_payload(location=Location.from_scaled(0, 0)))
        assert "location" not in _top_level_keys(text)

    def test_canned_messages_joined(self):
        assert "canned_messages: Hi|Bye|On my way\n" in build_backup(_payload())

    def test_enums_by_name(self):
        text = build_backup(_payload())
        assert "role: ROUTER" in text
        assert "modemPreset: MEDIUM_FAST" in text
        assert "role: PRIMARY" in text

    def test_minimal_payload(self):
        assert build_backup(ConfigBackupPayload()) == f"{HEADER_COMMENT}\nconfig: {{}}\nmodule_config: {{}}\n"

    def test_channel_list_optional(self):
        text = build_backup(_payload(), BackupSettings(include_channel_list=False))
        assert "channels" not in _top_level_keys(text)
        assert "channel_url" in _top_level_keys(text)

    def test_indent_width(self):
        text = build_backup(_payload(), BackupSettings(indent_width=4))
        assert "\n    device:\n        role: ROUTER\n" in text

    def test_loads_in_generic_yaml(self):
        data = yaml.safe_load(build_backup(_payload()))
        assert data["owner"] == "Nicco Pisa Berry \U0001F1EE\U0001F1F9"
        assert data["location"] == {"lat": 45.1234567, "lon": 9.1234567}
        assert data["channels"][0]["settings"]["psk"] == "base64:AQ=="
        assert data["config"]["device"]["role"] == "ROUTER"

    def test_small_float_loads_as_number(self):
        payload = _payload()
        payload.config.lora.frequency_offset = 1e-05
        text = build_backup(payload)
        assert "frequencyOffset: 1.0e-05\n" in text
        value = yaml.safe_load(text)["config"]["lora"]["frequencyOffset"]
        assert isinstance(value, float)
        assert value == pytest.approx(1e-05)
        assert parse_backup(text).backup.config.lora.frequency_offset == pytest.approx(1e-05)


class TestRoundTrip:
    """parse_backup(build_backup(p)) reproduces p."""

    def test_full_payload(self):
        original = _payload()
        result = parse_backup(build_backup(original))

        assert result.errors == []
        backup = result.backup
        assert backup.config == original.config
        assert backup.module_config == original.module_config
        assert backup.channels == original.channels
        assert backup.owner == original.owner
        assert backup.owner_short == "NPB"
        assert backup.location.to_scaled() == (451234567, 91234567)
        assert backup.canned_messages == ["Hi", "Bye", "On my way"]

    def test_channels_from_url_only(self):
        original = _payload()
        result = parse_backup(build_backup(original, BackupSettings(include_channel_list=False)))
        assert result.ok
        assert [c.index for c in result.backup.channels] == [0, 1]
        assert [c.settings for c in result.backup.channels] == [c.settings for c in original.channels]

    def test_minimal_payload(self):
        result = parse_backup(build_backup(ConfigBackupPayload()))
        assert result.ok
        assert result.backup.channels == []
        assert result.backup.canned_messages is None


class TestValidation:
    """Error accumulation on import."""

    def test_not_yaml(self):
        result = parse_backup("not-yaml")
        assert result.errors == [BackupError.INVALID_FILE]
        assert result.backup is None

    def test_root_not_mapping(self):
        assert parse_backup("- a\n- b\n").errors == [BackupError.INVALID_FILE]

    def test_missing_both_sections(self):
        result = parse_backup("owner: x\n")
        assert result.errors == [BackupError.MISSING_CONFIG, BackupError.MISSING_MODULE_CONFIG]
        assert result.backup is None

    def test_config_not_mapping(self):
        assert parse_backup("config: 3\nmodule_config: {}\n").errors == [BackupError.MISSING_CONFIG]

    def test_camel_case_module_config(self):
        assert parse_backup("config: {}\nmoduleConfig: {}\n").ok

    def test_channels_not_list(self):
        result = parse_backup("config: {}\nmodule_config: {}\nchannels: nope\n")
        assert result.errors == [BackupError.INVALID_CHANNELS]

    def test_channel_without_index(self):
        text = "config: {}\nmodule_config: {}\nchannels:\n  -\n    role: PRIMARY\n"
        assert parse_backup(text).errors == [BackupError.INVALID_CHANNELS]

    def test_duplicate_channel_index(self):
        text = "config: {}\nmodule_config: {}\nchannels:\n  -\n    index: 1\n  -\n    index: 1\n"
        assert parse_backup(text).errors == [BackupError.INVALID_CHANNELS]

    def test_negative_channel_index(self):
        text = "config: {}\nmodule_config: {}\nchannels:\n  -\n    index: -1\n    settings:\n      name: evil\n"
        result = parse_backup(text)
        assert result.errors == [BackupError.INVALID_CHANNELS]
        assert result.backup is None

    def test_payload_rejects_negative_index(self):
        with pytest.raises(ValidationError):
            ConfigBackupPayload(channels=[channel_pb2.Channel(index=-1)])

    def test_errors_accumulate(self):
        result = parse_backup("module_config: 1\nchannels: 2\n")
        assert result.errors == [
            BackupError.MISSING_CONFIG, BackupError.MISSING_MODULE_CONFIG, BackupError.INVALID_CHANNELS,
        ]

    def test_bad_channel_url(self):
        text = "channel_url: https://example.com/e/#CgMSAQE\nconfig: {}\nmodule_config: {}\n"
        assert parse_backup(text).errors == [BackupError.INVALID_CHANNEL_URL]

    def test_undecodable_channel_url_means_no_channels(self):
        text = "channel_url: https://meshtastic.org/e/#!!!!\nconfig: {}\nmodule_config: {}\n"
        result = parse_backup(text)
        assert result.ok
        assert result.backup.channels == []

    def test_unsupported_format_marker(self):
        text = "format: something-else\nconfig: {}\nmodule_config: {}\n"
        assert parse_backup(text).errors == [BackupError.UNSUPPORTED_VERSION]

    def test_supported_format_marker(self):
        text = "format: meshtastic-web-config-backup-v1\nconfig: {}\nmodule_config: {}\n"
        assert parse_backup(text).ok

    def test_unknown_field_is_invalid_file(self):
        text = "config:\n  device:\n    bogusField: 1\nmodule_config: {}\n"
        assert parse_backup(text).errors == [BackupError.INVALID_FILE]

    def test_malformed_key_material(self):
        text = (
            "config: {}\nmodule_config: {}\nchannels:\n  -\n    index: 0\n"
            "    settings:\n      psk: \"base64:!!not-base64\"\n"
        )
        assert parse_backup(text).errors == [BackupError.INVALID_FILE]

    def test_out_of_range_location(self):
        text = "config: {}\nlocation:\n  lat: 95\n  lon: 0\nmodule_config: {}\n"
        assert parse_backup(text).errors == [BackupError.INVALID_FILE]


class TestImportTolerance:
    """Documents written by other producers."""

    def test_reference_tool_document(self):
        url = create_share_url([channel_pb2.ChannelSettings(name="LongFast", psk=b"\x01")])
        text = (
            "# start of Meshtastic configure yaml\n"
            "canned_messages: Hi|Bye\n"
            f"channel_url: {url}\n"
            "config:\n"
            "  bluetooth:\n"
            "    enabled: true\n"
            "    fixedPin: 123456\n"
            "  device:\n"
            "    role: CLIENT\n"
            "  lora:\n"
            "    region: US\n"
            "    ignoreIncoming: []\n"
            "  security:\n"
            "    privateKey: base64:AAECAwQFBgcICQoLDA0ODxAREhMUFRYXGBkaGxwdHh8=\n"
            "location:\n"
            "  lat: 45.1234567\n"
            "  lon: 9.1234567\n"
            "module_config:\n"
            "  mqtt:\n"
            "    address: mqtt.meshtastic.org\n"
            "owner: Test Node\n"
            "owner_short: TN\n"
        )
        result = parse_backup(text)
        assert result.errors == []
        backup = result.backup
        assert backup.config.bluetooth.fixed_pin == 123456
        assert backup.config.lora.region == LoRa.RegionCode.US
        assert backup.config.security.private_key == bytes(range(32))
        assert backup.module_config.mqtt.address == "mqtt.meshtastic.org"
        assert [(c.index, c.role, c.settings.name) for c in backup.channels] == [(0, Role.PRIMARY, "LongFast")]
        assert backup.owner == "Test Node"
        assert backup.owner_short == "TN"
        assert backup.location.lat == 45.1234567
        assert backup.canned_messages == ["Hi", "Bye"]

    def test_type_name_markers_stripped(self):
        text = (
            "config:\n"
            "  $typeName: meshtastic.protobuf.LocalConfig\n"
            "  device:\n"
            "    $typeName: meshtastic.protobuf.Config.DeviceConfig\n"
            "    role: ROUTER\n"
            "moduleConfig: {}\n"
        )
        result = parse_backup(text)
        assert result.ok
        assert result.backup.config.device.role == config_pb2.Config.DeviceConfig.Role.ROUTER

    @pytest.mark.parametrize("psk", ['"base64:AQ=="', "base64:AQ==", "AQ=="])
    def test_psk_with_or_without_prefix(self, psk):
        text = (
            "config: {}\nmodule_config: {}\nchannels:\n"
            "- index: 0\n"
            "  role: PRIMARY\n"
            "  settings:\n"
            f"    psk: {psk}\n"
        )
        result = parse_backup(text)
        assert result.ok
        assert result.backup.channels[0].settings.psk == b"\x01"
