"""Events and the bounded queue that hands them to a polling host.

Producers (scan thread, connection workers, dispatch worker, backend
callbacks) call :meth:`EventBridge.publish`; the host drains on its own tick
with :meth:`EventBridge.drain`. Neither side ever blocks on the other.

When the queue is full the oldest event is dropped. The first drop of an
episode arms an :class:`Overflow` marker which is returned at the head of
the next drain, carrying the number of events lost since the previous drain.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import ClassVar

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 128


@dataclass(frozen=True)
class Event:
    kind: ClassVar[str] = "event"

    def describe(self) -> str:
        return self.kind

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class DeviceEvent(Event):
    device: str


@dataclass(frozen=True)
class DeviceDiscovered(DeviceEvent):
    kind: ClassVar[str] = "device_discovered"

    def describe(self) -> str:
        return f"Device '{self.device}' discovered"


@dataclass(frozen=True)
class DeviceConnected(DeviceEvent):
    kind: ClassVar[str] = "device_connected"

    def describe(self) -> str:
        return f"Device '{self.device}' connected"


@dataclass(frozen=True)
class DeviceDisconnected(DeviceEvent):
    kind: ClassVar[str] = "device_disconnected"

    def describe(self) -> str:
        return f"Device '{self.device}' disconnected"


@dataclass(frozen=True)
class DeviceError(DeviceEvent):
    kind: ClassVar[str] = "device_error"
    reason: str = ""

    def describe(self) -> str:
        return f"Device '{self.device}' error: {self.reason}"


@dataclass(frozen=True)
class DeviceVibrated(DeviceEvent):
    kind: ClassVar[str] = "device_vibrated"
    speed: float = 0.0

    def describe(self) -> str:
        return f"Device '{self.device}' vibrating at {round(self.speed * 100)}%"


@dataclass(frozen=True)
class DeviceStopped(DeviceEvent):
    kind: ClassVar[str] = "device_stopped"

    def describe(self) -> str:
        return f"Device '{self.device}' stopped"


@dataclass(frozen=True)
class ScanStarted(Event):
    kind: ClassVar[str] = "scan_started"

    def describe(self) -> str:
        return "Scan started"


@dataclass(frozen=True)
class ScanFinished(Event):
    kind: ClassVar[str] = "scan_finished"

    def describe(self) -> str:
        return "Scan finished"


@dataclass(frozen=True)
class ScanFailed(Event):
    kind: ClassVar[str] = "scan_failed"
    reason: str = ""

    def describe(self) -> str:
        return f"Scan failed: {self.reason}"


@dataclass(frozen=True)
class Overflow(Event):
    kind: ClassVar[str] = "overflow"
    dropped: int = 0

    def describe(self) -> str:
        return f"Event queue overflow, {self.dropped} event(s) dropped"


class EventBridge:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Event bridge capacity must be at least 1")
        self.capacity = capacity
        self._queue: deque[Event] = deque()
        self._dropped = 0
        self._lock = threading.Lock()

    def publish(self, event: Event) -> None:
        with self._lock:
            if len(self._queue) >= self.capacity:
                self._queue.popleft()
                self._dropped += 1
            self._queue.append(event)
            dropped = self._dropped
        if dropped == 1:
            LOGGER.warning("Event queue full (capacity %d), dropping oldest events", self.capacity)
        LOGGER.debug("Published %s", event)

    def drain(self) -> list[Event]:
        with self._lock:
            events: list[Event] = list(self._queue)
            self._queue.clear()
            dropped, self._dropped = self._dropped, 0
        if dropped:
            events.insert(0, Overflow(dropped=dropped))
        return events

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)
