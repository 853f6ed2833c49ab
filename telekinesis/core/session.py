"""Session layer tying backend, registry, scanning, dispatch and settings together."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from telekinesis.core.capabilities import capability_tags
from telekinesis.core.dispatch import CommandDispatcher
from telekinesis.core.errors import (
    AlreadyConnectedError,
    BackendUnavailableError,
    DeviceNotFoundError,
    NotConnectedError,
)
from telekinesis.core.events import DeviceError, Event, EventBridge
from telekinesis.core.model import BackendNotice, ConnectionState
from telekinesis.core.registry import DeviceRegistry
from telekinesis.core.scan import ScanController, ScanState
from telekinesis.core.settings import SettingsStore, load_settings_or_default
from telekinesis.transports.base import Backend

LOGGER = logging.getLogger(__name__)


class Session:
    """One backend session and everything that hangs off it.

    Instances share nothing, so several can coexist (e.g. in tests).
    Scanning and dispatch objects are created on :meth:`connect` and torn
    down on :meth:`close`; the registry, event bridge and settings live as
    long as the session object.
    """

    def __init__(self, backend: Backend, *, settings: SettingsStore | None = None) -> None:
        self.load_warnings: tuple[str, ...] = ()
        if settings is None:
            settings, self.load_warnings = load_settings_or_default()
        self.settings = settings
        self.events = EventBridge(settings.engine.event_capacity)
        self.registry = DeviceRegistry(self.events)
        self._backend = backend
        self._scanner: ScanController | None = None
        self._dispatcher: CommandDispatcher | None = None
        self._lock = threading.Lock()
        self._lifecycle = threading.Lock()

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._dispatcher is not None

    @property
    def scan_state(self) -> ScanState:
        with self._lock:
            scanner = self._scanner
        return scanner.state if scanner is not None else ScanState.IDLE

    def connect(self) -> None:
        with self._lifecycle:
            if self.connected:
                raise AlreadyConnectedError("Session is already connected")
            LOGGER.info("Connecting backend")
            try:
                self._backend.open(self._on_notice)
            except BackendUnavailableError:
                raise
            except Exception as exc:
                raise BackendUnavailableError(f"Backend could not be opened: {exc}") from exc
            scanner = ScanController(self._backend, self.registry, self.events, self.settings.engine)
            dispatcher = CommandDispatcher(self._backend, self.registry, self.settings, self.events)
            with self._lock:
                self._scanner, self._dispatcher = scanner, dispatcher
        LOGGER.info("Backend connected")

    def close(self) -> None:
        """Tear everything down. Safe to call repeatedly or before connect."""
        with self._lifecycle:
            self._close()

    def _close(self) -> None:
        with self._lock:
            scanner, self._scanner = self._scanner, None
            dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is None:
            LOGGER.debug("Close requested on a session that is not connected")
            return

        LOGGER.info("Closing session")
        if scanner is not None:
            scanner.close()
        dispatcher.stop_all()
        dispatcher.shutdown()
        for device in self.registry.connected():
            try:
                self._backend.disconnect_device(device.name)
            except Exception as exc:
                LOGGER.warning("Disconnecting '%s' failed: %s", device.name, exc)
                self.events.publish(DeviceError(device=device.name, reason=str(exc)))
            self.registry.set_state(device.name, ConnectionState.DISCONNECTED)
        try:
            self._backend.close()
        except Exception as exc:
            LOGGER.error("Closing backend failed: %s", exc)
        LOGGER.info("Session closed")

    def _require_scanner(self) -> ScanController:
        with self._lock:
            if self._scanner is None:
                raise NotConnectedError("Session is not connected")
            return self._scanner

    def _require_dispatcher(self) -> CommandDispatcher:
        with self._lock:
            if self._dispatcher is None:
                raise NotConnectedError("Session is not connected")
            return self._dispatcher

    def scan_for_devices(self) -> None:
        self._require_scanner().start_scan()

    def stop_scan(self) -> None:
        self._require_scanner().stop_scan()

    def get_devices(self) -> list[str]:
        return self.registry.names()

    def get_known_devices(self) -> list[str]:
        """Registry devices followed by devices only known from settings."""
        names = self.registry.names()
        seen = set(names)
        return names + [name for name in self.settings.devices() if name not in seen]

    def get_device_capabilities(self, name: str) -> list[str]:
        return capability_tags(self.registry.capabilities(name))

    def get_device_connected(self, name: str) -> bool:
        device = self.registry.get(name)
        return device is not None and device.connected

    def start_vibrate(self, speed: float, duration: float, tags: Iterable[str] | None = None) -> int | None:
        return self._require_dispatcher().vibrate(speed, duration, tags)

    def vibrate(self, speed: float, duration: float) -> bool:
        return self.start_vibrate(speed, duration) is not None

    def vibrate_events(self, speed: float, duration: float, tags: Iterable[str]) -> bool:
        return self.start_vibrate(speed, duration, list(tags)) is not None

    def stop(self, handle: int) -> bool:
        return self._require_dispatcher().stop(handle)

    def stop_all(self) -> bool:
        return self._require_dispatcher().stop_all()

    def poll_events(self) -> list[Event]:
        events = self.events.drain()
        if events:
            LOGGER.debug("Polled %d event(s)", len(events))
        return events

    def get_enabled(self, name: str) -> bool:
        return self.settings.get_enabled(name)

    def set_enabled(self, name: str, enabled: bool) -> None:
        self.settings.set_enabled(name, enabled)

    def get_device_tags(self, name: str) -> list[str]:
        return list(self.settings.get_tags(name))

    def set_device_tags(self, name: str, tags: Iterable[str]) -> list[str]:
        return list(self.settings.set_tags(name, list(tags)))

    def settings_store(self) -> None:
        self.settings.store()

    def _on_notice(self, notice: BackendNotice) -> None:
        LOGGER.info("Backend notice for '%s': %s %s", notice.device, notice.kind, notice.reason)
        try:
            if notice.kind == "disconnected":
                self.registry.set_state(notice.device, ConnectionState.DISCONNECTED)
            else:
                self.registry.set_state(notice.device, ConnectionState.FAILED, reason=notice.reason)
        except DeviceNotFoundError:
            self.events.publish(DeviceError(device=notice.device, reason=notice.reason or notice.kind))

    def __enter__(self) -> Session:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
