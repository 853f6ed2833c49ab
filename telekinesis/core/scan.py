"""Discovery state machine driving the backend and filling the registry.

A scan runs discovery on its own thread. Every device found is recorded as
discovered and handed to a connection pool, so one slow or failing device
never holds up discovery of the others. Cancellation is cooperative: the
backend's discovery iterator sees the stop flag between round-trips.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import StrEnum

from telekinesis.core.errors import AlreadyScanningError, NotScanningError, SessionStateError
from telekinesis.core.events import EventBridge, ScanFailed, ScanFinished, ScanStarted
from telekinesis.core.model import ConnectionState, DetectedDevice, Device, EngineConfig
from telekinesis.core.registry import DeviceRegistry
from telekinesis.transports.base import Backend

LOGGER = logging.getLogger(__name__)


class ScanState(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    FAILED = "failed"


class ScanController:
    def __init__(
        self,
        backend: Backend,
        registry: DeviceRegistry,
        events: EventBridge,
        config: EngineConfig | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._events = events
        self._config = config or EngineConfig()
        self._state = ScanState.IDLE
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._connecting: set[str] = set()
        self._pool = ThreadPoolExecutor(
            max_workers=self._config.connect_workers,
            thread_name_prefix="telekinesis-connect",
        )
        self._closed = False
        self._lock = threading.Lock()
        self.last_failure: str | None = None

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    @property
    def scanning(self) -> bool:
        return self.state == ScanState.SCANNING

    def start_scan(self) -> None:
        with self._lock:
            if self._closed:
                raise SessionStateError("Scan controller is closed")
            if self._state != ScanState.IDLE:
                raise AlreadyScanningError("A scan is already running")
            self._state = ScanState.SCANNING
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop,),
                name="telekinesis-scan",
                daemon=True,
            )
            thread = self._thread
        LOGGER.info("Scan started")
        self._events.publish(ScanStarted())
        thread.start()

    def stop_scan(self) -> None:
        with self._lock:
            if self._state == ScanState.IDLE:
                raise NotScanningError("No scan is running")
            stop, thread = self._stop, self._thread
        LOGGER.info("Stopping scan")
        stop.set()
        self._join(thread)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            stop, thread = self._stop, self._thread
        stop.set()
        self._join(thread)
        self._pool.shutdown(wait=True, cancel_futures=True)

    def _join(self, thread: threading.Thread | None) -> None:
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=self._config.stop_timeout_s)
        if thread.is_alive():
            LOGGER.warning(
                "Discovery did not acknowledge cancellation within %.1fs", self._config.stop_timeout_s
            )

    def _run(self, stop: threading.Event) -> None:
        try:
            with contextlib.closing(self._backend.discover(stop)) as discovered:
                for detected in discovered:
                    if stop.is_set():
                        break
                    self._on_detected(detected)
        except Exception as exc:
            LOGGER.exception("Scan failed")
            self._finish(str(exc) or exc.__class__.__name__)
            return
        self._finish(None)

    def _finish(self, failure: str | None) -> None:
        if failure is not None:
            with self._lock:
                self._state = ScanState.FAILED
                self.last_failure = failure
            self._events.publish(ScanFailed(reason=failure))
        with self._lock:
            self._state = ScanState.IDLE
            self._thread = None
        if failure is None:
            LOGGER.info("Scan finished")
            self._events.publish(ScanFinished())

    def _on_detected(self, detected: DetectedDevice) -> None:
        existing = self._registry.get(detected.name)
        if existing is not None and existing.connected:
            LOGGER.debug("Device '%s' already connected, skipping", detected.name)
            return
        with self._lock:
            if self._closed or detected.name in self._connecting:
                return
            # An attempt from an earlier scan may have finished since the first look.
            existing = self._registry.get(detected.name)
            if existing is not None and existing.connected:
                return
            self._connecting.add(detected.name)

        self._registry.upsert(
            Device(
                name=detected.name,
                state=ConnectionState.DISCOVERED,
                capabilities=existing.capabilities if existing else frozenset(),
                address=detected.address,
                last_seen=existing.last_seen if existing else None,
            )
        )
        try:
            future: Future[None] = self._pool.submit(self._connect, detected)
        except RuntimeError:
            with self._lock:
                self._connecting.discard(detected.name)
            return
        future.add_done_callback(lambda _: self._release(detected.name))

    def _release(self, name: str) -> None:
        with self._lock:
            self._connecting.discard(name)

    def _connect(self, detected: DetectedDevice) -> None:
        LOGGER.info("Connecting device '%s' (%s)", detected.name, detected.address)
        try:
            capabilities = self._backend.connect_device(
                detected,
                timeout_s=self._config.connect_timeout_s,
            )
        except Exception as exc:
            LOGGER.warning("Connecting '%s' failed: %s", detected.name, exc)
            self._registry.set_state(
                detected.name,
                ConnectionState.FAILED,
                reason=str(exc) or exc.__class__.__name__,
            )
            return
        self._registry.attach_capabilities(detected.name, capabilities)
        self._registry.set_state(detected.name, ConnectionState.CONNECTED)
