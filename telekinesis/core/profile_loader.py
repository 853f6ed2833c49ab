"""Loading and validation of YAML device profiles for the BLE backend."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

from telekinesis.core.documents import read_yaml, validate_document
from telekinesis.core.errors import ProfileLoadError, ProfileValidationError
from telekinesis.core.model import ActuatorSpec, CapabilityKind, MatchRules, Profile, TransportSpec

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_MAX_PAYLOAD_BYTES = 512
PROFILE_SCHEMA = "profile.schema.json"
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "telekinesis/profiles", xdg_data / "telekinesis/profiles"


def encode_command(spec: ActuatorSpec, *, level: int, index: int = 1) -> bytes:
    """Render the actuator command template for one actuator at ``level``."""
    rendered = spec.command.format(level=level, index=index)
    if spec.encoding == "hex":
        return bytes.fromhex(rendered.replace(" ", ""))
    return rendered.encode("ascii")


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _build_actuator(kind: str, doc: dict[str, Any], *, context: str) -> ActuatorSpec:
    spec = ActuatorSpec(
        kind=CapabilityKind(kind),
        command=doc["command"],
        encoding=doc.get("encoding", "ascii"),
        steps=int(doc.get("steps", 20)),
        actuators=int(doc.get("actuators", 1)),
    )
    # Render the extremes once so a broken template fails at load, not mid-session.
    for level in (0, spec.steps):
        try:
            payload = encode_command(spec, level=level, index=spec.actuators)
        except (KeyError, IndexError, ValueError, UnicodeEncodeError) as exc:
            raise ProfileValidationError(f"{context}.command cannot be rendered: {exc}") from exc
        if not payload or len(payload) > _MAX_PAYLOAD_BYTES:
            raise ProfileValidationError(
                f"{context}.command must render to 1..{_MAX_PAYLOAD_BYTES} bytes"
            )
    return spec


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> Profile:
    validate_document(doc, PROFILE_SCHEMA, source, invalid_error=ProfileValidationError)

    actuators = {
        CapabilityKind(kind): _build_actuator(kind, actuator_doc, context=f"{doc['id']}.actuators.{kind}")
        for kind, actuator_doc in doc["actuators"].items()
    }
    transport_doc = doc["transport"]
    transport = TransportSpec(
        service_uuid=_normalize_uuid(
            transport_doc["service_uuid"],
            context=f"{doc['id']}.transport.service_uuid",
        ),
        write_char_uuid=_normalize_uuid(
            transport_doc["write_char_uuid"],
            context=f"{doc['id']}.transport.write_char_uuid",
        ),
        write_with_response=_normalize_bool(
            transport_doc.get("write_with_response", False),
            context=f"{doc['id']}.transport.write_with_response",
        ),
        timeout_s=float(transport_doc.get("timeout_s", 10.0)),
    )

    return Profile(
        id=doc["id"],
        name=doc["name"],
        match=MatchRules(
            name_contains=tuple(doc["match"].get("name_contains", [])),
            address_prefix=tuple(p.strip().upper() for p in doc["match"].get("address_prefix", [])),
        ),
        transport=transport,
        actuators=actuators,
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("telekinesis.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def _load_one(path: Path | Traversable) -> Profile:
    doc = read_yaml(path, load_error=ProfileLoadError, invalid_error=ProfileValidationError)
    return _build_profile(doc, path)


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        profile = _load_one(path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        profile = _load_one(path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    LOGGER.debug("Loaded %d device profile(s)", len(profiles))
    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
