from __future__ import annotations

from pathlib import Path

import pytest

from telekinesis.api import Client
from telekinesis.core.settings import SettingsStore


@pytest.fixture
def client(backend, settings: SettingsStore):
    client = Client(backend, settings=settings)
    yield client
    client.close()


def _scan(client: Client, wait_for, *names: str) -> None:
    assert client.connect()
    assert client.scan_for_devices()
    assert wait_for(lambda: all(client.get_device_connected(name) for name in names))


def test_operations_return_flags_instead_of_raising(client: Client) -> None:
    assert client.vibrate(0.5, 1.0) is False
    assert client.stop_all() is False
    assert client.stop_scan() is False
    assert client.scan_for_devices() is False
    assert client.close() is True


def test_connect_twice_reports_failure(client: Client) -> None:
    assert client.connect() is True
    assert client.connect() is False


def test_unknown_device_has_no_capabilities(client: Client) -> None:
    assert client.get_device_capabilities("missing") == []
    assert client.get_device_connected("missing") is False


def test_scan_and_vibrate(backend, client: Client, wait_for) -> None:
    backend.add_device("LVS-Lush")
    _scan(client, wait_for, "LVS-Lush")

    assert client.get_devices() == ["LVS-Lush"]
    assert client.get_device_capabilities("LVS-Lush") == ["vibrate"]
    assert client.vibrate(0.25, 0.0) is True
    assert wait_for(lambda: backend.sends_to("LVS-Lush") == [0.25])
    assert wait_for(lambda: "Device 'LVS-Lush' vibrating at 25%" in client.poll_events())


def test_invalid_speed_is_rejected(backend, client: Client, wait_for) -> None:
    backend.add_device("LVS-Lush")
    _scan(client, wait_for, "LVS-Lush")
    assert client.vibrate(-0.5, 1.0) is False
    assert client.start_vibrate(0.5, float("nan")) is None


def test_vibrate_events_uses_device_tags(backend, client: Client, wait_for) -> None:
    backend.add_device("LVS-Lush")
    backend.add_device("LVS-Edge")
    _scan(client, wait_for, "LVS-Lush", "LVS-Edge")
    client.set_events("LVS-Edge", ["Damage"])

    assert client.get_events("LVS-Edge") == ["damage"]
    assert client.vibrate_events(0.8, 0.0, ["damage"]) is True
    assert client.vibrate_events(0.8, 0.0, ["heal"]) is False
    assert wait_for(lambda: backend.sends_to("LVS-Edge") == [0.8])
    assert backend.sends_to("LVS-Lush") == []


def test_start_vibrate_handle_can_be_stopped(backend, client: Client, wait_for) -> None:
    backend.add_device("LVS-Lush")
    _scan(client, wait_for, "LVS-Lush")

    handle = client.start_vibrate(0.4, 0.0)
    assert handle is not None
    assert client.stop(handle) is True
    assert client.stop(handle) is False
    assert wait_for(lambda: backend.sends_to("LVS-Lush") == [0.4, 0.0])


def test_enabled_flag_and_store(client: Client, settings: SettingsStore) -> None:
    assert client.get_enabled("LVS-Lush") is True
    client.set_enabled("LVS-Lush", False)
    assert client.get_enabled("LVS-Lush") is False
    assert client.settings_store() is True
    assert SettingsStore.load(settings.path).get_enabled("LVS-Lush") is False


def test_settings_store_failure_is_a_flag(backend, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    client = Client(backend, settings=SettingsStore(blocker / "settings.yaml"))
    client.set_enabled("LVS-Lush", False)
    assert client.settings_store() is False


def test_scan_while_scanning_reports_failure_and_keeps_devices(backend, client: Client, wait_for) -> None:
    backend.add_device("LVS-Lush")
    backend.hold_scan = True
    _scan(client, wait_for, "LVS-Lush")
    before = client.session.registry.list()

    assert client.scan_for_devices() is False

    assert client.session.registry.list() == before
    assert client.get_devices() == ["LVS-Lush"]
    assert client.stop_scan() is True
