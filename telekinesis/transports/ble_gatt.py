"""BLE GATT backend built on bleak.

bleak is asyncio-only while the engine is thread-based, so the backend owns
one event loop running on a daemon thread and every public method submits a
coroutine to it and waits for the result with a bounded timeout.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import queue
import threading
import time
from collections.abc import Coroutine, Generator
from typing import Any, TypeVar

from telekinesis.core.device_match import best_profile_for_device
from telekinesis.core.errors import (
    BackendUnavailableError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from telekinesis.core.model import BackendNotice, Capability, CapabilityKind, DetectedDevice, Profile
from telekinesis.core.profile_loader import encode_command, load_profiles
from telekinesis.transports.base import NoticeListener

LOGGER = logging.getLogger(__name__)
_T = TypeVar("_T")
_PROBE_TIMEOUT_S = 5.0
_POLL_INTERVAL_S = 0.25


class BLEGATTBackend:
    def __init__(
        self,
        profiles: dict[str, Profile] | None = None,
        *,
        scan_timeout_s: float = 30.0,
        io_timeout_s: float = 5.0,
    ) -> None:
        self.load_warnings: tuple[str, ...] = ()
        if profiles is None:
            loaded = load_profiles()
            profiles = loaded.profiles
            self.load_warnings = loaded.warnings
        self.profiles = profiles
        self.scan_timeout_s = scan_timeout_s
        self.io_timeout_s = io_timeout_s
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._listener: NoticeListener | None = None
        self._seen: dict[str, tuple[Any, Profile]] = {}
        self._clients: dict[str, tuple[Any, Profile]] = {}
        self._closing: set[str] = set()
        self._lock = threading.Lock()

    def open(self, listener: NoticeListener) -> None:
        try:
            import bleak  # type: ignore  # noqa: F401
        except Exception as exc:  # pragma: no cover - import failure path
            raise BackendUnavailableError(
                "BLE backend requires 'bleak'. Install dependency and retry."
            ) from exc

        self._listener = listener
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="telekinesis-ble",
            daemon=True,
        )
        self._thread.start()
        try:
            self._call(self._probe(), timeout_s=_PROBE_TIMEOUT_S, error=BackendUnavailableError)
        except TransportError as exc:
            self._stop_loop()
            raise BackendUnavailableError(f"Bluetooth adapter unavailable: {exc}") from exc
        except BackendUnavailableError:
            self._stop_loop()
            raise
        LOGGER.info("BLE backend ready with %d profile(s)", len(self.profiles))

    def close(self) -> None:
        with self._lock:
            names = list(self._clients)
        for name in names:
            try:
                self.disconnect_device(name)
            except TransportError as exc:
                LOGGER.warning("Disconnecting '%s' on close failed: %s", name, exc)
        self._stop_loop()

    def discover(self, stop: threading.Event) -> Generator[DetectedDevice, None, None]:
        found: queue.Queue[DetectedDevice] = queue.Queue()

        def _on_detect(device: Any, advertisement: Any) -> None:
            name = getattr(advertisement, "local_name", None) or device.name
            if not name:
                return
            detected = DetectedDevice(address=device.address, name=name)
            profile = best_profile_for_device(detected, self.profiles)
            if profile is None:
                return
            with self._lock:
                if name in self._seen:
                    return
                self._seen[name] = (device, profile)
            LOGGER.debug("Detected '%s' (%s) as %s", name, device.address, profile.id)
            found.put(detected)

        with self._lock:
            self._seen.clear()
        scanner = self._call(self._start_scanner(_on_detect), error=TransportConnectError)
        deadline = time.monotonic() + self.scan_timeout_s
        try:
            while not stop.is_set() and time.monotonic() < deadline:
                try:
                    yield found.get(timeout=_POLL_INTERVAL_S)
                except queue.Empty:
                    continue
        finally:
            try:
                self._call(scanner.stop(), error=TransportConnectError)
            except TransportError as exc:
                LOGGER.warning("Stopping BLE scanner failed: %s", exc)

    def connect_device(self, device: DetectedDevice, *, timeout_s: float) -> frozenset[Capability]:
        with self._lock:
            seen = self._seen.get(device.name)
        if seen is not None:
            ble_device, profile = seen
        else:
            profile = best_profile_for_device(device, self.profiles)
            if profile is None:
                raise TransportConnectError(f"No device profile matches '{device.name}'")
            ble_device = device.address

        client = self._call(
            self._connect(ble_device, device.name, timeout_s),
            timeout_s=timeout_s + 1.0,
            error=TransportConnectError,
        )
        with self._lock:
            self._clients[device.name] = (client, profile)
            self._closing.discard(device.name)
        LOGGER.info("Connected '%s' using profile %s", device.name, profile.id)
        return profile.capabilities()

    def disconnect_device(self, name: str) -> None:
        with self._lock:
            entry = self._clients.pop(name, None)
            if entry is not None:
                self._closing.add(name)
        if entry is None:
            return
        client, _ = entry
        self._call(client.disconnect(), error=TransportConnectError)

    def send_vibrate(self, name: str, speed: float) -> None:
        with self._lock:
            entry = self._clients.get(name)
        if entry is None:
            raise TransportSendError(f"Device '{name}' is not connected")
        client, profile = entry
        spec = profile.actuators.get(CapabilityKind.VIBRATE)
        if spec is None:
            if speed == 0.0:
                return
            raise TransportSendError(f"Profile '{profile.id}' has no vibrate actuator")

        level = round(speed * spec.steps)
        for index in range(1, spec.actuators + 1):
            payload = encode_command(spec, level=level, index=index)
            self._call(
                client.write_gatt_char(
                    profile.transport.write_char_uuid,
                    payload,
                    response=profile.transport.write_with_response,
                ),
                timeout_s=profile.transport.timeout_s,
                error=TransportSendError,
            )

    async def _probe(self) -> None:
        from bleak import BleakScanner  # type: ignore

        scanner = BleakScanner()
        await scanner.start()
        await scanner.stop()

    async def _start_scanner(self, callback: Any) -> Any:
        from bleak import BleakScanner  # type: ignore

        scanner = BleakScanner(detection_callback=callback)
        await scanner.start()
        return scanner

    async def _connect(self, ble_device: Any, name: str, timeout_s: float) -> Any:
        from bleak import BleakClient  # type: ignore

        client = BleakClient(
            ble_device,
            timeout=timeout_s,
            disconnected_callback=lambda _: self._on_disconnected(name),
        )
        await client.connect()
        if not client.is_connected:
            raise TransportConnectError(f"BLE connect failed for '{name}'")
        return client

    def _on_disconnected(self, name: str) -> None:
        with self._lock:
            if name in self._closing:
                self._closing.discard(name)
                return
            self._clients.pop(name, None)
        LOGGER.warning("Device '%s' dropped its BLE link", name)
        if self._listener is not None:
            self._listener(BackendNotice(device=name, kind="disconnected", reason="link lost"))

    def _call(
        self,
        coro: Coroutine[Any, Any, _T],
        *,
        timeout_s: float | None = None,
        error: type[Exception] = TransportSendError,
    ) -> _T:
        loop = self._loop
        if loop is None or not loop.is_running():
            coro.close()
            raise BackendUnavailableError("BLE backend is not open")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        timeout = timeout_s if timeout_s is not None else self.io_timeout_s
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise TransportTimeoutError(f"BLE operation timed out after {timeout:.1f}s") from exc
        except (TransportError, BackendUnavailableError):
            raise
        except Exception as exc:
            raise error(f"BLE operation failed: {exc}") from exc

    def _stop_loop(self) -> None:
        loop, thread = self._loop, self._thread
        self._loop, self._thread = None, None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=self.io_timeout_s)
        if not loop.is_running():
            loop.close()
