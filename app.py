# app.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from meshtastic.protobuf import channel_pb2, config_pb2

from controllers.app_state import AppState
from controllers.backup.channel_url import (
    InvalidChannelUrl,
    channel_set_to_channels,
    decode_channel_set,
    is_additive_url,
)
from controllers.backup_controller import build_backup, parse_backup
from controllers.device.port_discovery import choose_port, detect_candidates
from controllers.diff_controller import apply_diff, compute_diff, describe, redact
from models.backup_model import BackupParseResult, ConfigBackupPayload
from models.backup_settings import BackupSettings
from models.diff_model import DiffResult

log = logging.getLogger(__name__)

BACKUP_SUFFIXES = (".yaml", ".yml")
_LORA = config_pb2.Config.LoRaConfig

console = Console()
app = typer.Typer(help="Back up, inspect and restore Meshtastic node configuration.")


@app.callback()
def _setup(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    root_logger = logging.getLogger()
    for _h in list(root_logger.handlers):
        root_logger.removeHandler(_h)
    root_logger.addHandler(RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False))
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_error(text: str) -> None:
    console.print(f"✗ {text}", style="red")


def _resolve_port(port: Optional[str]) -> str:
    chosen, error = choose_port(port, AppState().preferred_port)
    if chosen is None:
        print_error(f"{error['detail']}; pass --port")
        for cand in error.get("candidates", []):
            console.print(f"  {cand['path']}  {cand['description']}")
        raise typer.Exit(code=2)
    return chosen


def _load_backup(path: Path) -> BackupParseResult:
    if path.suffix.lower() not in BACKUP_SUFFIXES:
        print_error(f"{path.name}: expected a .yaml or .yml file")
        raise typer.Exit(code=2)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print_error(f"cannot read {path}: {e}")
        raise typer.Exit(code=2)
    return parse_backup(text, BackupSettings.from_env())


def _require_backup(path: Path) -> ConfigBackupPayload:
    result = _load_backup(path)
    if not result.ok:
        print_error(f"{path.name}: " + ", ".join(e.value for e in result.errors))
        raise typer.Exit(code=1)
    return result.backup


def _print_diff(diff: DiffResult) -> None:
    table = Table(title="Changes")
    table.add_column("Kind")
    table.add_column("Items")
    table.add_row("config", ", ".join(sorted(diff.changed_config_sections)) or "-")
    table.add_row("moduleConfig", ", ".join(sorted(diff.changed_module_sections)) or "-")
    table.add_row("channels", ", ".join(str(i) for i in sorted(diff.changed_channel_indexes)) or "-")
    table.add_row("owner", "yes" if diff.owner_changed else "-")
    table.add_row("cannedMessages", "yes" if diff.canned_messages_changed else "-")
    console.print(table)


def _snapshot(port: str, with_canned: bool, settings: BackupSettings) -> ConfigBackupPayload:
    from controllers.device.device_reader import DeviceReader

    reader = DeviceReader(port=port)
    try:
        payload = reader.snapshot(with_canned=with_canned, settings=settings)
    finally:
        reader.close()
    AppState().remember_port(port)
    return payload


@app.command()
def export(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port of the node"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output file (default: stdout)"),
    canned: bool = typer.Option(True, "--canned/--no-canned", help="Fetch canned messages"),
) -> None:
    """Read the node's configuration and write a backup document."""
    settings = BackupSettings.from_env()
    payload = _snapshot(_resolve_port(port), canned, settings)
    text = build_backup(payload, settings)
    if out is None:
        typer.echo(text, nl=False)
        return
    out.write_text(text, encoding="utf-8")
    AppState().remember_backup(out)
    print_success(f"wrote {out}")


@app.command()
def validate(
    file: Optional[Path] = typer.Argument(None, help="Backup document (.yaml/.yml); defaults to the last export"),
) -> None:
    """Check that a backup document can be restored."""
    file = file or AppState().last_backup
    if file is None:
        print_error("No backup given and none exported yet")
        raise typer.Exit(code=2)
    result = _load_backup(file)
    if not result.ok:
        for err in result.errors:
            print_error(err.value)
        raise typer.Exit(code=1)
    backup = result.backup
    print_success(f"{file.name}: valid backup, {len(backup.channels)} channels")


@app.command()
def diff(
    backup: Path = typer.Argument(..., help="Backup document to compare"),
    live: Optional[Path] = typer.Option(None, "--live", help="Compare against another backup document"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Compare against a connected node"),
    as_json: bool = typer.Option(False, "--json", help="Print the update commands as JSON"),
) -> None:
    """Show which sections of a backup differ from the live configuration."""
    wanted = _require_backup(backup)
    if live is not None:
        current = _require_backup(live)
    else:
        current = _snapshot(_resolve_port(port), False, BackupSettings.from_env())
    result = compute_diff(current, wanted)
    if as_json:
        commands = apply_diff(current, wanted, result)
        typer.echo(json.dumps([redact(describe(c)) for c in commands], indent=2, default=str))
        return
    _print_diff(result)
    if not result.has_changes:
        print_success("no changes")


@app.command()
def restore(
    backup: Path = typer.Argument(..., help="Backup document to restore"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port of the node"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list the writes"),
) -> None:
    """Write the changed parts of a backup to the node."""
    from controllers.device.device_reader import DeviceReader
    from controllers.device.device_writer import DeviceWriter

    wanted = _require_backup(backup)
    port = _resolve_port(port)
    reader = DeviceReader(port=port)
    try:
        current = reader.snapshot()
        result = compute_diff(current, wanted)
        commands = apply_diff(current, wanted, result)
        _print_diff(result)
        if dry_run:
            for cmd in commands:
                console.print(redact(describe(cmd)))
            return
        report = DeviceWriter(iface=reader.iface).apply_commands(commands)
    finally:
        reader.close()
    AppState().remember_port(port)
    if report["status"] == "error":
        print_error(f"restore failed: {report['errors']}")
        raise typer.Exit(code=1)
    print_success(f"restore {report['status']}: {len(report['commands'])} writes")


@app.command()
def ports() -> None:
    """List serial ports a node could be attached to."""
    cands = detect_candidates()
    if not cands:
        print_error("No serial devices found")
        raise typer.Exit(code=1)
    remembered = AppState().preferred_port
    table = Table(title="Serial ports")
    table.add_column("Port")
    table.add_column("Description")
    table.add_column("Remembered")
    for cand in cands:
        table.add_row(cand["path"], cand["description"], "yes" if cand["path"] == remembered else "")
    console.print(table)


@app.command("decode-url")
def decode_url(url: str = typer.Argument(..., help="https://meshtastic.org/e/#... share link")) -> None:
    """List the channels carried by a share URL."""
    host = BackupSettings.from_env().share_host
    try:
        channel_set = decode_channel_set(url, host=host)
        additive = is_additive_url(url, host=host)
    except InvalidChannelUrl as e:
        print_error(f"invalidChannelUrl: {e}")
        raise typer.Exit(code=1)
    if channel_set is None:
        print_error("no channels decodable")
        raise typer.Exit(code=1)

    table = Table(title="Channels (add)" if additive else "Channels")
    table.add_column("Index", justify="right")
    table.add_column("Role")
    table.add_column("Name")
    table.add_column("PSK")
    for ch in channel_set_to_channels(channel_set):
        role = channel_pb2.Channel.Role.Name(ch.role)
        table.add_row(str(ch.index), role, ch.settings.name or "(default)", "set" if ch.settings.psk else "-")
    console.print(table)
    if channel_set.HasField("lora_config"):
        lora = channel_set.lora_config
        console.print(f"LoRa: region={_LORA.RegionCode.Name(lora.region)} preset={_LORA.ModemPreset.Name(lora.modem_preset)}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
