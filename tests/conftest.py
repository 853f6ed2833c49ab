from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from telekinesis.core.events import DeviceConnected, Event, ScanFinished
from telekinesis.core.model import Capability, CapabilityKind, DetectedDevice
from telekinesis.core.session import Session
from telekinesis.core.settings import SettingsStore

VIBRATOR = frozenset({Capability(kind=CapabilityKind.VIBRATE)})


class FakeBackend:
    def __init__(self) -> None:
        self.detected: list[DetectedDevice] = []
        self.capabilities: dict[str, frozenset[Capability]] = {}
        self.open_error: Exception | None = None
        self.discover_error: Exception | None = None
        self.connect_failures: dict[str, Exception] = {}
        self.send_failures: dict[str, Exception] = {}
        self.disconnect_failures: dict[str, Exception] = {}
        self.hold_scan = False
        self.connect_delay_s = 0.0
        self.connect_calls: list[str] = []
        self.listener = None
        self.opened = 0
        self.closed = 0
        self.sends: list[tuple[str, float]] = []
        self.disconnected: list[str] = []
        self._lock = threading.Lock()

    def add_device(self, name: str, capabilities: frozenset[Capability] = VIBRATOR) -> None:
        self.detected.append(DetectedDevice(address=f"AA:BB:CC:00:00:{len(self.detected):02X}", name=name))
        self.capabilities[name] = capabilities

    def open(self, listener) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.listener = listener
        self.opened += 1

    def close(self) -> None:
        self.closed += 1

    def discover(self, stop: threading.Event):
        if self.discover_error is not None:
            raise self.discover_error
        for device in self.detected:
            yield device
        while self.hold_scan and not stop.is_set():
            stop.wait(0.01)

    def connect_device(self, device: DetectedDevice, *, timeout_s: float) -> frozenset[Capability]:
        with self._lock:
            self.connect_calls.append(device.name)
        if self.connect_delay_s:
            time.sleep(self.connect_delay_s)
        if device.name in self.connect_failures:
            raise self.connect_failures[device.name]
        return self.capabilities.get(device.name, VIBRATOR)

    def disconnect_device(self, name: str) -> None:
        self.disconnected.append(name)
        if name in self.disconnect_failures:
            raise self.disconnect_failures[name]

    def send_vibrate(self, name: str, speed: float) -> None:
        if name in self.send_failures:
            raise self.send_failures[name]
        with self._lock:
            self.sends.append((name, speed))

    def sends_to(self, name: str) -> list[float]:
        with self._lock:
            return [speed for device, speed in self.sends if device == name]


def _wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    return _wait_for


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.yaml")


@pytest.fixture
def session(backend: FakeBackend, settings: SettingsStore) -> Iterator[Session]:
    session = Session(backend, settings=settings)
    yield session
    session.close()


@pytest.fixture
def scanned_session(session: Session, backend: FakeBackend) -> Session:
    """Connected session whose fake devices have all been scanned and connected."""
    if not backend.detected:
        backend.add_device("LVS-Lush")
    session.connect()
    session.scan_for_devices()
    expected = {device.name for device in backend.detected} - set(backend.connect_failures)
    seen: list[Event] = []

    def _settled() -> bool:
        seen.extend(session.poll_events())
        return ScanFinished() in seen and all(DeviceConnected(device=name) in seen for name in expected)

    assert _wait_for(_settled)
    return session
