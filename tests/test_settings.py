"""Tests for BackupSettings and the persisted app state."""

import pytest
from pydantic import ValidationError

from controllers.app_state import AppState
from models.backup_settings import BackupSettings


class TestBackupSettings:
    """Defaults and environment overrides."""

    def test_defaults(self):
        s = BackupSettings.from_env({})
        assert s.indent_width == 2
        assert s.share_host == "meshtastic.org"
        assert s.quote_byte_fields is True
        assert s.include_channel_list is True
        assert s.canned_timeout_s == 3.0
        assert s.canned_retries == 1

    def test_env_overrides(self):
        s = BackupSettings.from_env({
            "MESHBACKUP_INDENT_WIDTH": "4",
            "MESHBACKUP_QUOTE_BYTE_FIELDS": "false",
            "MESHBACKUP_SHARE_HOST": " mesh.example.net ",
            "MESHBACKUP_CANNED_RETRIES": "0",
            "UNRELATED": "x",
        })
        assert s.indent_width == 4
        assert s.quote_byte_fields is False
        assert s.share_host == "mesh.example.net"
        assert s.canned_retries == 0

    def test_blank_values_ignored(self):
        assert BackupSettings.from_env({"MESHBACKUP_INDENT_WIDTH": "  "}).indent_width == 2

    @pytest.mark.parametrize("env", [
        {"MESHBACKUP_INDENT_WIDTH": "0"},
        {"MESHBACKUP_INDENT_WIDTH": "wide"},
        {"MESHBACKUP_CANNED_TIMEOUT_S": "-1"},
    ])
    def test_invalid_values_rejected(self, env):
        with pytest.raises(ValidationError):
            BackupSettings.from_env(env)

    def test_frozen(self):
        s = BackupSettings()
        with pytest.raises(ValidationError):
            s.indent_width = 4


class TestAppState:
    """State remembered between CLI runs."""

    def test_empty(self, tmp_path):
        state = AppState(tmp_path)
        assert state.read() == {}
        assert state.preferred_port is None
        assert state.last_backup is None

    def test_port_round_trip(self, tmp_path):
        assert AppState(tmp_path).remember_port("/dev/ttyUSB0")
        assert AppState(tmp_path).preferred_port == "/dev/ttyUSB0"
        assert (tmp_path / AppState.FILENAME).exists()

    def test_clearing_port_keeps_other_keys(self, tmp_path):
        state = AppState(tmp_path)
        state.remember_port("COM3")
        state.remember_backup(tmp_path / "node.yaml")
        state.remember_port(None)
        assert state.read() == {"last_backup": str((tmp_path / "node.yaml").resolve())}

    def test_last_backup(self, tmp_path):
        state = AppState(tmp_path)
        state.remember_backup(tmp_path / "node.yaml")
        assert state.last_backup == (tmp_path / "node.yaml").resolve()

    def test_env_directory(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MESHBACKUP_STATE_DIR", str(tmp_path / "nested"))
        state = AppState()
        assert state.path == tmp_path / "nested" / AppState.FILENAME
        assert state.remember_port("COM4")

    def test_corrupt_file(self, tmp_path):
        (tmp_path / AppState.FILENAME).write_text("{not json", encoding="utf-8")
        assert AppState(tmp_path).read() == {}

    def test_non_object_file(self, tmp_path):
        (tmp_path / AppState.FILENAME).write_text("[1, 2]", encoding="utf-8")
        assert AppState(tmp_path).preferred_port is None
