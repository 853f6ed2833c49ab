"""Translate vibrate/stop requests into per-device backend sends.

Sends go through a single worker so the order of commands to one device is
preserved, and the caller only ever waits for the submission. Outcomes come
back as events.

Commands overlapping on one device stack: the newest live command decides
the speed. When a timed command expires (or is stopped by handle) the device
falls back to the newest command still live, or stops when none is left.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from telekinesis.core import capabilities
from telekinesis.core.errors import CommandValidationError
from telekinesis.core.events import DeviceError, DeviceStopped, DeviceVibrated, EventBridge
from telekinesis.core.model import CapabilityKind, Command, CommandKind, Device
from telekinesis.core.registry import DeviceRegistry
from telekinesis.core.settings import SettingsStore
from telekinesis.core.tag_match import device_matches_tags, normalize_tags
from telekinesis.transports.base import Backend

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Active:
    handle: int
    speed: float


class CommandDispatcher:
    def __init__(
        self,
        backend: Backend,
        registry: DeviceRegistry,
        settings: SettingsStore,
        events: EventBridge,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._settings = settings
        self._events = events
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telekinesis-dispatch")
        self._handles = itertools.count(1)
        self._schedules: dict[str, list[_Active]] = {}
        self._targets: dict[int, list[str]] = {}
        self._timers: dict[int, threading.Timer] = {}
        self._lock = threading.Lock()

    def resolve_targets(self, tags: Iterable[str] = ()) -> list[Device]:
        """Connected, enabled vibrators, narrowed to ``tags`` when any are given."""
        rules = self._settings.tag_rules
        wanted = normalize_tags(tags, rules)
        targets: list[Device] = []
        for device in self._registry.connected():
            if not device.has_capability(CapabilityKind.VIBRATE):
                continue
            if not self._settings.get_enabled(device.name):
                LOGGER.debug("Skipping disabled device '%s'", device.name)
                continue
            if wanted and not device_matches_tags(
                device.name, self._settings.get_tags(device.name), wanted, rules
            ):
                continue
            targets.append(device)
        return targets

    def vibrate(self, speed: float, duration: float, tags: Iterable[str] | None = None) -> int | None:
        """Start a vibrate on every resolved device.

        Returns a handle usable with :meth:`stop`, or None when no device
        accepted the command. Raises ParameterOutOfRangeError for negative or
        non-finite parameters.
        """
        speed, duration = capabilities.normalize_parameters(speed, duration)
        command = Command(
            kind=CommandKind.VIBRATE,
            speed=speed,
            duration=duration,
            tags=normalize_tags(tags or (), self._settings.tag_rules),
        )
        targets = self.resolve_targets(command.tags)
        if not targets:
            LOGGER.info("Vibrate %s: no matching devices", list(command.tags) or "all")
            return None

        handle = next(self._handles)
        with self._lock:
            self._targets[handle] = []
        for device in targets:
            try:
                validated = capabilities.validate(device, command)
            except CommandValidationError as exc:
                self._events.publish(DeviceError(device=device.name, reason=str(exc)))
                continue
            with self._lock:
                self._schedules.setdefault(device.name, []).append(_Active(handle, validated.speed))
                self._targets[handle].append(device.name)
            if not self._submit(device.name, validated.speed):
                self._forget(handle, device.name)

        with self._lock:
            accepted = self._targets.get(handle, [])
            if not accepted:
                self._targets.pop(handle, None)
                return None
        LOGGER.info(
            "Vibrate #%d at %.2f for %s on %s",
            handle,
            command.speed,
            "until stopped" if command.until_stopped else f"{command.duration:.2f}s",
            ", ".join(accepted),
        )
        if not command.until_stopped:
            timer = threading.Timer(command.duration, self._release, args=(handle,))
            timer.daemon = True
            with self._lock:
                self._timers[handle] = timer
            timer.start()
        return handle

    def stop(self, handle: int) -> bool:
        """End one command early. False if the handle is unknown or already done."""
        return self._release(handle)

    def stop_all(self) -> bool:
        """Send speed 0 to every connected device, ignoring enabled/tag state."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._targets.clear()
            self._schedules.clear()
        for timer in timers:
            timer.cancel()

        submitted = False
        for device in self._registry.connected():
            submitted = self._submit(device.name, 0.0) or submitted
        LOGGER.info("Stop all submitted=%s", submitted)
        return submitted

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._targets.clear()
            self._schedules.clear()
        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=True)

    def active_handles(self) -> list[int]:
        with self._lock:
            return list(self._targets)

    def _forget(self, handle: int, name: str) -> None:
        with self._lock:
            schedule = self._schedules.get(name, [])
            schedule[:] = [active for active in schedule if active.handle != handle]
            if not schedule:
                self._schedules.pop(name, None)
            names = self._targets.get(handle)
            if names and name in names:
                names.remove(name)

    def _release(self, handle: int) -> bool:
        fallbacks: list[tuple[str, float]] = []
        with self._lock:
            names = self._targets.pop(handle, None)
            timer = self._timers.pop(handle, None)
            if names is None:
                return False
            for name in names:
                schedule = self._schedules.get(name, [])
                was_current = bool(schedule) and schedule[-1].handle == handle
                schedule[:] = [active for active in schedule if active.handle != handle]
                if not schedule:
                    self._schedules.pop(name, None)
                if was_current:
                    fallbacks.append((name, schedule[-1].speed if schedule else 0.0))
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()
        LOGGER.debug("Command #%d ended", handle)
        for name, speed in fallbacks:
            if speed and not self._settings.get_enabled(name):
                LOGGER.debug("Device '%s' was disabled, stopping instead of falling back", name)
                speed = 0.0
            self._submit(name, speed)
        return True

    def _submit(self, name: str, speed: float) -> bool:
        try:
            self._executor.submit(self._send, name, speed)
        except RuntimeError:
            LOGGER.warning("Dispatcher is shut down, dropping command for '%s'", name)
            return False
        return True

    def _send(self, name: str, speed: float) -> None:
        device = self._registry.get(name)
        if device is None or not device.connected:
            LOGGER.debug("Device '%s' no longer connected, skipping send", name)
            return
        if speed and not self._settings.get_enabled(name):
            LOGGER.debug("Device '%s' is disabled, skipping send", name)
            return
        try:
            self._backend.send_vibrate(name, speed)
        except Exception as exc:
            LOGGER.warning("Send to '%s' failed: %s", name, exc)
            self._events.publish(DeviceError(device=name, reason=str(exc) or exc.__class__.__name__))
            return
        self._registry.touch(name)
        if speed == 0.0:
            self._events.publish(DeviceStopped(device=name))
        else:
            self._events.publish(DeviceVibrated(device=name, speed=speed))
