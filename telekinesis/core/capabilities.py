"""Command validation against a device's capability set."""

from __future__ import annotations

import math
from dataclasses import replace

from telekinesis.core.errors import ParameterOutOfRangeError, UnsupportedCapabilityError
from telekinesis.core.model import Capability, CapabilityKind, Command, CommandKind, Device

COMMAND_REQUIREMENTS: dict[CommandKind, CapabilityKind] = {
    CommandKind.VIBRATE: CapabilityKind.VIBRATE,
}


def required_capability(kind: CommandKind) -> CapabilityKind:
    try:
        return COMMAND_REQUIREMENTS[kind]
    except KeyError as exc:
        raise UnsupportedCapabilityError(f"No capability is defined for command '{kind}'") from exc


def _check_non_negative(value: float, *, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ParameterOutOfRangeError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(number) or number < 0.0:
        raise ParameterOutOfRangeError(f"{name} must be a non-negative finite number, got {value!r}")
    return number


def normalize_parameters(speed: float, duration: float) -> tuple[float, float]:
    """Reject negative/non-finite values and clamp speed to [0, 1].

    Duration is not clamped; 0 means the command runs until stopped.
    """
    speed = _check_non_negative(speed, name="speed")
    duration = _check_non_negative(duration, name="duration")
    return min(speed, 1.0), duration


def clamp_to(capability: Capability, value: float) -> float:
    return max(capability.minimum, min(capability.maximum, value))


def validate(device: Device, command: Command) -> Command:
    """Return ``command`` normalized for ``device`` or raise why it cannot run."""
    kind = required_capability(command.kind)
    capability = device.capability(kind)
    if capability is None:
        raise UnsupportedCapabilityError(f"Device '{device.name}' does not support '{kind}'")
    speed, duration = normalize_parameters(command.speed, command.duration)
    return replace(command, speed=clamp_to(capability, speed), duration=duration)


def capability_tags(capabilities: frozenset[Capability]) -> list[str]:
    return sorted(capability.kind.value for capability in capabilities)
