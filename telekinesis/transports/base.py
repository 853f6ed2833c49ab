"""Backend interface consumed by the session engine."""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from typing import Protocol

from telekinesis.core.model import BackendNotice, Capability, DetectedDevice

NoticeListener = Callable[[BackendNotice], None]


class Backend(Protocol):
    def open(self, listener: NoticeListener) -> None:
        """Establish the backend session. Raise BackendUnavailableError if unreachable."""

    def close(self) -> None:
        """Tear down the backend session."""

    def discover(self, stop: threading.Event) -> Generator[DetectedDevice, None, None]:
        """Yield devices as they are found until exhausted or ``stop`` is set."""

    def connect_device(self, device: DetectedDevice, *, timeout_s: float) -> frozenset[Capability]:
        """Connect one device and return its capabilities. Raise TransportError on failure."""

    def disconnect_device(self, name: str) -> None:
        """Disconnect one device."""

    def send_vibrate(self, name: str, speed: float) -> None:
        """Send a vibrate at ``speed`` in [0, 1] to every vibrate actuator of ``name``."""
