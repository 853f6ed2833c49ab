from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from telekinesis import cli
from telekinesis.api import Client
from telekinesis.core.settings import SettingsStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    monkeypatch.setenv("TELEKINESIS_SETTINGS", str(path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return path


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch, backend, settings: SettingsStore):
    monkeypatch.setattr(cli, "Client", lambda: Client(backend, settings=settings))
    return backend


def test_profiles_command() -> None:
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "lovense: Lovense (single motor)" in result.stdout
    assert "vibrate: 2 actuator(s), 20 steps" in result.stdout


def test_devices_command(fake_client) -> None:
    fake_client.add_device("LVS-Lush")
    result = runner.invoke(cli.app, ["devices", "--scan-seconds", "0.5"])
    assert result.exit_code == 0
    assert "Device 'LVS-Lush' discovered" in result.stdout
    assert "LVS-Lush: connected, enabled, capabilities: vibrate, tags: -" in result.stdout
    assert fake_client.closed == 1


def test_devices_command_without_devices(fake_client) -> None:
    result = runner.invoke(cli.app, ["devices", "--scan-seconds", "0"])
    assert result.exit_code == 0
    assert "No devices found" in result.stdout


def test_vibrate_command(fake_client) -> None:
    fake_client.add_device("LVS-Lush")
    result = runner.invoke(cli.app, ["vibrate", "0.5", "--duration", "0.1", "--scan-seconds", "0.5"])
    assert result.exit_code == 0
    assert "Device 'LVS-Lush' vibrating at 50%" in result.stdout
    assert fake_client.sends_to("LVS-Lush")[0] == 0.5
    assert fake_client.sends_to("LVS-Lush")[-1] == 0.0


def test_vibrate_command_without_targets_fails(fake_client) -> None:
    result = runner.invoke(cli.app, ["vibrate", "0.5", "--scan-seconds", "0"])
    assert result.exit_code == 1
    assert "Error: No device accepted the command" in result.stderr
    assert fake_client.closed == 1


def test_backend_unavailable_error_is_clean(fake_client) -> None:
    fake_client.open_error = OSError("No Bluetooth adapters found")
    result = runner.invoke(cli.app, ["stop", "--scan-seconds", "0"])
    assert result.exit_code == 1
    assert "Error: Could not connect to the device backend" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_enable_disable_and_tags_persist(_isolated_config: Path) -> None:
    assert runner.invoke(cli.app, ["disable", "LVS-Lush"]).exit_code == 0
    result = runner.invoke(cli.app, ["tags", "LVS-Lush", "Hit", "kill"])
    assert result.exit_code == 0
    assert "LVS-Lush: hit, kill" in result.stdout

    store = SettingsStore.load(_isolated_config)
    assert store.get_enabled("LVS-Lush") is False
    assert store.get_tags("LVS-Lush") == ("hit", "kill")

    assert runner.invoke(cli.app, ["enable", "LVS-Lush"]).exit_code == 0
    result = runner.invoke(cli.app, ["settings"])
    assert result.exit_code == 0
    assert "  LVS-Lush: enabled, tags: hit, kill" in result.stdout

    result = runner.invoke(cli.app, ["tags", "LVS-Lush", "--clear"])
    assert "LVS-Lush: -" in result.stdout


def test_corrupt_settings_warns(_isolated_config: Path) -> None:
    _isolated_config.write_text("devices: [1, 2]\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["settings"])
    assert result.exit_code == 0
    assert "Warning: Schema validation failed" in result.stderr
    assert "No device settings" in result.stdout
