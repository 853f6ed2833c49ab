"""Stable public API for hosts driving telekinesis.

:class:`Client` is the supported integration surface for host shims that
poll on a tick and cannot handle exceptions or callbacks: every operation
returns a flag, a list, or a plain value, and failures are logged instead of
raised. Tools that prefer exceptions can use :class:`Session` directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from telekinesis.core.errors import (
    AlreadyConnectedError,
    AlreadyScanningError,
    BackendUnavailableError,
    CommandValidationError,
    DeviceNotFoundError,
    NotConnectedError,
    NotScanningError,
    ParameterOutOfRangeError,
    PersistenceError,
    ProfileLoadError,
    ProfileValidationError,
    SessionStateError,
    SettingsValidationError,
    TelekinesisError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
    UnsupportedCapabilityError,
)
from telekinesis.core.events import Event, EventBridge
from telekinesis.core.model import Capability, CapabilityKind, ConnectionState, Device, EngineConfig, TagMatchRules
from telekinesis.core.session import Session
from telekinesis.core.settings import SettingsStore, load_settings_or_default
from telekinesis.transports.base import Backend
from telekinesis.transports.ble_gatt import BLEGATTBackend

__all__ = [
    "TelekinesisError",
    "DeviceNotFoundError",
    "SessionStateError",
    "AlreadyScanningError",
    "NotScanningError",
    "AlreadyConnectedError",
    "NotConnectedError",
    "BackendUnavailableError",
    "CommandValidationError",
    "UnsupportedCapabilityError",
    "ParameterOutOfRangeError",
    "PersistenceError",
    "SettingsValidationError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "Capability",
    "CapabilityKind",
    "ConnectionState",
    "Device",
    "EngineConfig",
    "TagMatchRules",
    "Event",
    "EventBridge",
    "Backend",
    "BLEGATTBackend",
    "Session",
    "SettingsStore",
    "Client",
]

LOGGER = logging.getLogger(__name__)


class Client:
    """Flag-returning facade over a :class:`Session`.

    Without an explicit backend the BLE backend is used, configured from the
    settings file.
    """

    def __init__(
        self,
        backend: Backend | None = None,
        *,
        settings: SettingsStore | None = None,
    ) -> None:
        warnings: tuple[str, ...] = ()
        if settings is None:
            settings, warnings = load_settings_or_default()
        if backend is None:
            backend = BLEGATTBackend(scan_timeout_s=settings.engine.scan_timeout_s)
            warnings += backend.load_warnings
        self._session = Session(backend, settings=settings)
        self.load_warnings = warnings

    @property
    def session(self) -> Session:
        return self._session

    def _attempt(self, operation: str, action: Callable[[], object]) -> bool:
        try:
            action()
        except TelekinesisError as exc:
            LOGGER.warning("%s failed: %s", operation, exc)
            return False
        return True

    def connect(self) -> bool:
        return self._attempt("connect", self._session.connect)

    def scan_for_devices(self) -> bool:
        return self._attempt("scan_for_devices", self._session.scan_for_devices)

    def stop_scan(self) -> bool:
        return self._attempt("stop_scan", self._session.stop_scan)

    def close(self) -> bool:
        return self._attempt("close", self._session.close)

    def get_devices(self) -> list[str]:
        return self._session.get_devices()

    def get_known_devices(self) -> list[str]:
        return self._session.get_known_devices()

    def get_device_capabilities(self, name: str) -> list[str]:
        try:
            return self._session.get_device_capabilities(name)
        except DeviceNotFoundError:
            LOGGER.debug("Capabilities requested for unknown device '%s'", name)
            return []

    def get_device_connected(self, name: str) -> bool:
        return self._session.get_device_connected(name)

    def vibrate(self, speed: float, duration: float) -> bool:
        try:
            return self._session.vibrate(speed, duration)
        except TelekinesisError as exc:
            LOGGER.warning("vibrate failed: %s", exc)
            return False

    def vibrate_events(self, speed: float, duration: float, tags: Iterable[str]) -> bool:
        try:
            return self._session.vibrate_events(speed, duration, tags)
        except TelekinesisError as exc:
            LOGGER.warning("vibrate_events failed: %s", exc)
            return False

    def start_vibrate(self, speed: float, duration: float, tags: Iterable[str] | None = None) -> int | None:
        try:
            return self._session.start_vibrate(speed, duration, tags)
        except TelekinesisError as exc:
            LOGGER.warning("start_vibrate failed: %s", exc)
            return None

    def stop(self, handle: int) -> bool:
        try:
            return self._session.stop(handle)
        except TelekinesisError as exc:
            LOGGER.warning("stop failed: %s", exc)
            return False

    def stop_all(self) -> bool:
        try:
            return self._session.stop_all()
        except TelekinesisError as exc:
            LOGGER.warning("stop_all failed: %s", exc)
            return False

    def poll_events(self) -> list[str]:
        return [event.describe() for event in self._session.poll_events()]

    def get_enabled(self, name: str) -> bool:
        return self._session.get_enabled(name)

    def set_enabled(self, name: str, enabled: bool) -> None:
        self._session.set_enabled(name, enabled)

    def get_events(self, name: str) -> list[str]:
        return self._session.get_device_tags(name)

    def set_events(self, name: str, tags: Iterable[str]) -> None:
        self._session.set_device_tags(name, tags)

    def settings_store(self) -> bool:
        return self._attempt("settings_store", self._session.settings_store)
