"""Thread-safe table of known devices and their live state."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace

from telekinesis.core.errors import DeviceNotFoundError
from telekinesis.core.events import (
    DeviceConnected,
    DeviceDisconnected,
    DeviceDiscovered,
    DeviceError,
    Event,
    EventBridge,
)
from telekinesis.core.model import Capability, ConnectionState, Device

LOGGER = logging.getLogger(__name__)


def _transition_event(device: Device, reason: str | None) -> Event:
    if device.state == ConnectionState.DISCOVERED:
        return DeviceDiscovered(device=device.name)
    if device.state == ConnectionState.CONNECTED:
        return DeviceConnected(device=device.name)
    if device.state == ConnectionState.DISCONNECTED:
        return DeviceDisconnected(device=device.name)
    return DeviceError(device=device.name, reason=reason or "connection failed")


class DeviceRegistry:
    """Transition events are published under the registry lock so their order
    matches the order the states were applied in.
    """

    def __init__(self, events: EventBridge) -> None:
        self._events = events
        self._devices: dict[str, Device] = {}
        self._lock = threading.Lock()

    def upsert(self, device: Device, *, reason: str | None = None) -> Device:
        """Insert or replace ``device`` by name, publishing on state change."""
        if device.state == ConnectionState.CONNECTED:
            device = replace(device, last_seen=time.monotonic())
        with self._lock:
            previous = self._devices.get(device.name)
            self._devices[device.name] = device
            if previous is None or previous.state != device.state:
                LOGGER.info("Device '%s' -> %s", device.name, device.state.value)
                self._events.publish(_transition_event(device, reason))
        return device

    def get(self, name: str) -> Device | None:
        with self._lock:
            return self._devices.get(name)

    def require(self, name: str) -> Device:
        device = self.get(name)
        if device is None:
            raise DeviceNotFoundError(f"Unknown device '{name}'")
        return device

    def list(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._devices)

    def connected(self) -> list[Device]:
        return [device for device in self.list() if device.connected]

    def set_state(self, name: str, state: ConnectionState, *, reason: str | None = None) -> Device:
        with self._lock:
            current = self._devices.get(name)
            if current is None:
                raise DeviceNotFoundError(f"Unknown device '{name}'")
            updated = replace(current, state=state)
            if state == ConnectionState.CONNECTED:
                updated = replace(updated, last_seen=time.monotonic())
            self._devices[name] = updated
            if current.state != state:
                LOGGER.info("Device '%s' %s -> %s", name, current.state.value, state.value)
                self._events.publish(_transition_event(updated, reason))
            elif state == ConnectionState.FAILED and reason:
                self._events.publish(DeviceError(device=name, reason=reason))
        return updated

    def attach_capabilities(self, name: str, capabilities: frozenset[Capability]) -> Device:
        with self._lock:
            current = self._devices.get(name)
            if current is None:
                raise DeviceNotFoundError(f"Unknown device '{name}'")
            updated = replace(current, capabilities=frozenset(capabilities))
            self._devices[name] = updated
        return updated

    def touch(self, name: str) -> None:
        with self._lock:
            current = self._devices.get(name)
            if current is not None:
                self._devices[name] = replace(current, last_seen=time.monotonic())

    def capabilities(self, name: str) -> frozenset[Capability]:
        return self.require(name).capabilities

    def remove(self, name: str) -> Device:
        with self._lock:
            removed = self._devices.pop(name, None)
            if removed is not None and removed.connected:
                self._events.publish(DeviceDisconnected(device=name))
        if removed is None:
            raise DeviceNotFoundError(f"Unknown device '{name}'")
        return removed

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)
