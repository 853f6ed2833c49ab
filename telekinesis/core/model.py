"""Core data models used across registry, dispatcher, loaders, and CLI."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum


class ConnectionState(StrEnum):
    DISCOVERED = "discovered"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class CapabilityKind(StrEnum):
    VIBRATE = "vibrate"
    ROTATE = "rotate"
    LINEAR = "linear"
    OSCILLATE = "oscillate"
    CONSTRICT = "constrict"
    INFLATE = "inflate"


class CommandKind(StrEnum):
    VIBRATE = "vibrate"


@dataclass(frozen=True)
class Capability:
    kind: CapabilityKind
    minimum: float = 0.0
    maximum: float = 1.0
    steps: int = 20
    actuators: int = 1


@dataclass(frozen=True)
class Device:
    """Snapshot of one registry entry. The registry replaces, never mutates."""

    name: str
    state: ConnectionState = ConnectionState.DISCOVERED
    capabilities: frozenset[Capability] = frozenset()
    address: str | None = None
    last_seen: float | None = None

    def capability(self, kind: CapabilityKind) -> Capability | None:
        for capability in self.capabilities:
            if capability.kind == kind:
                return capability
        return None

    def has_capability(self, kind: CapabilityKind) -> bool:
        return self.capability(kind) is not None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    speed: float
    duration: float = 0.0
    tags: tuple[str, ...] = ()
    issued_at: float = field(default_factory=time.monotonic)

    @property
    def until_stopped(self) -> bool:
        return self.duration == 0.0


@dataclass(frozen=True)
class DetectedDevice:
    address: str
    name: str


@dataclass(frozen=True)
class BackendNotice:
    """Unsolicited notification raised by a backend (e.g. link loss)."""

    device: str
    kind: str
    reason: str = ""


@dataclass(frozen=True)
class TagMatchRules:
    match: str = "exact"
    case_sensitive: bool = False
    match_device_name: bool = False


@dataclass(frozen=True)
class EngineConfig:
    event_capacity: int = 128
    connect_timeout_s: float = 10.0
    scan_timeout_s: float = 30.0
    stop_timeout_s: float = 2.0
    connect_workers: int = 4


@dataclass(frozen=True)
class MatchRules:
    name_contains: tuple[str, ...]
    address_prefix: tuple[str, ...]


@dataclass(frozen=True)
class TransportSpec:
    service_uuid: str
    write_char_uuid: str
    write_with_response: bool = False
    timeout_s: float = 10.0


@dataclass(frozen=True)
class ActuatorSpec:
    kind: CapabilityKind
    command: str
    encoding: str = "ascii"
    steps: int = 20
    actuators: int = 1

    def capability(self) -> Capability:
        return Capability(kind=self.kind, steps=self.steps, actuators=self.actuators)


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    match: MatchRules
    transport: TransportSpec
    actuators: dict[CapabilityKind, ActuatorSpec]

    def capabilities(self) -> frozenset[Capability]:
        return frozenset(spec.capability() for spec in self.actuators.values())
