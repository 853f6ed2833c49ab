from __future__ import annotations

import threading

import pytest

from telekinesis.core.errors import DeviceNotFoundError
from telekinesis.core.events import DeviceConnected, DeviceDisconnected, DeviceDiscovered, DeviceError, EventBridge
from telekinesis.core.model import Capability, CapabilityKind, ConnectionState, Device
from telekinesis.core.registry import DeviceRegistry


def _registry() -> tuple[DeviceRegistry, EventBridge]:
    events = EventBridge()
    return DeviceRegistry(events), events


def test_upsert_publishes_only_on_state_change() -> None:
    registry, events = _registry()
    registry.upsert(Device(name="a"))
    registry.upsert(Device(name="a", address="AA:BB"))

    assert events.drain() == [DeviceDiscovered(device="a")]
    assert registry.get("a").address == "AA:BB"
    assert len(registry) == 1


def test_set_state_publishes_transition_and_stamps_last_seen() -> None:
    registry, events = _registry()
    registry.upsert(Device(name="a"))
    events.drain()

    device = registry.set_state("a", ConnectionState.CONNECTED)
    assert device.connected
    assert device.last_seen is not None
    assert events.drain() == [DeviceConnected(device="a")]

    registry.set_state("a", ConnectionState.CONNECTED)
    assert events.drain() == []


def test_repeated_failure_reports_each_reason() -> None:
    registry, events = _registry()
    registry.upsert(Device(name="a"))
    events.drain()

    registry.set_state("a", ConnectionState.FAILED, reason="timeout")
    registry.set_state("a", ConnectionState.FAILED, reason="refused")
    assert events.drain() == [
        DeviceError(device="a", reason="timeout"),
        DeviceError(device="a", reason="refused"),
    ]


def test_unknown_device_raises() -> None:
    registry, _ = _registry()
    with pytest.raises(DeviceNotFoundError):
        registry.require("missing")
    with pytest.raises(DeviceNotFoundError):
        registry.set_state("missing", ConnectionState.CONNECTED)
    with pytest.raises(DeviceNotFoundError):
        registry.capabilities("missing")
    assert registry.get("missing") is None
    assert "missing" not in registry


def test_connected_filters_by_state_and_capabilities_attach() -> None:
    registry, _ = _registry()
    registry.upsert(Device(name="a"))
    registry.upsert(Device(name="b"))
    caps = frozenset({Capability(kind=CapabilityKind.VIBRATE)})
    registry.attach_capabilities("a", caps)
    registry.set_state("a", ConnectionState.CONNECTED)

    assert [device.name for device in registry.connected()] == ["a"]
    assert registry.capabilities("a") == caps
    assert registry.names() == ["a", "b"]


def test_remove_connected_device_publishes_disconnect() -> None:
    registry, events = _registry()
    registry.upsert(Device(name="a", state=ConnectionState.CONNECTED))
    events.drain()

    removed = registry.remove("a")
    assert removed.name == "a"
    assert events.drain() == [DeviceDisconnected(device="a")]
    assert len(registry) == 0


def test_last_published_transition_matches_final_state() -> None:
    registry, events = _registry()
    registry.upsert(Device(name="a"))
    states = (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED)

    def _flip(offset: int) -> None:
        for index in range(200):
            registry.set_state("a", states[(index + offset) % 2])

    threads = [threading.Thread(target=_flip, args=(offset,)) for offset in (0, 1, 0, 1)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    last = [event for event in events.drain() if isinstance(event, (DeviceConnected, DeviceDisconnected))][-1]
    expected = DeviceConnected if registry.get("a").connected else DeviceDisconnected
    assert isinstance(last, expected)
