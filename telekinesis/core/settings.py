"""Per-device settings (enabled flag, tags) with atomic YAML persistence."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from telekinesis.core.documents import read_yaml, validate_document
from telekinesis.core.errors import PersistenceError, SettingsValidationError
from telekinesis.core.model import EngineConfig, TagMatchRules
from telekinesis.core.tag_match import normalize_tags

SETTINGS_VERSION = 1
SETTINGS_SCHEMA = "settings.schema.json"
LOGGER = logging.getLogger(__name__)


def default_settings_path() -> Path:
    override = os.environ.get("TELEKINESIS_SETTINGS")
    if override:
        return Path(override)
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "telekinesis/settings.yaml"


@dataclass
class DeviceSetting:
    enabled: bool = True
    tags: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def to_doc(self) -> dict[str, Any]:
        doc = dict(self.extra)
        doc["enabled"] = self.enabled
        doc["tags"] = list(self.tags)
        return doc


def _known_fields(cls: type) -> set[str]:
    return {f.name for f in fields(cls)}


class SettingsStore:
    """In-memory device settings; written to disk only by :meth:`store`."""

    def __init__(
        self,
        path: Path | None = None,
        *,
        tag_rules: TagMatchRules | None = None,
        engine: EngineConfig | None = None,
    ) -> None:
        self.path = path or default_settings_path()
        self.tag_rules = tag_rules or TagMatchRules()
        self.engine = engine or EngineConfig()
        self._devices: dict[str, DeviceSetting] = {}
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path | None = None) -> SettingsStore:
        path = path or default_settings_path()
        if not path.exists():
            LOGGER.debug("No settings file at %s, using defaults", path)
            return cls(path)

        doc = read_yaml(path, load_error=SettingsValidationError, invalid_error=SettingsValidationError)
        validate_document(doc, SETTINGS_SCHEMA, path, invalid_error=SettingsValidationError)

        tag_doc = doc.get("tags", {})
        engine_doc = doc.get("engine", {})
        store = cls(
            path,
            tag_rules=TagMatchRules(**{k: v for k, v in tag_doc.items() if k in _known_fields(TagMatchRules)}),
            engine=EngineConfig(**{k: v for k, v in engine_doc.items() if k in _known_fields(EngineConfig)}),
        )
        for name, entry in doc.get("devices", {}).items():
            entry = entry or {}
            store._devices[str(name)] = DeviceSetting(
                enabled=bool(entry.get("enabled", True)),
                tags=normalize_tags(entry.get("tags", []), store.tag_rules),
                extra={k: v for k, v in entry.items() if k not in ("enabled", "tags")},
            )
        LOGGER.info("Loaded settings for %d device(s) from %s", len(store._devices), path)
        return store

    def _entry(self, name: str) -> DeviceSetting:
        setting = self._devices.get(name)
        if setting is None:
            setting = DeviceSetting()
            self._devices[name] = setting
        return setting

    def get_enabled(self, name: str) -> bool:
        with self._lock:
            setting = self._devices.get(name)
            return True if setting is None else setting.enabled

    def set_enabled(self, name: str, enabled: bool) -> None:
        LOGGER.info("Setting '%s'.enabled=%s", name, enabled)
        with self._lock:
            self._entry(name).enabled = bool(enabled)

    def get_tags(self, name: str) -> tuple[str, ...]:
        with self._lock:
            setting = self._devices.get(name)
            return () if setting is None else setting.tags

    def set_tags(self, name: str, tags: list[str] | tuple[str, ...]) -> tuple[str, ...]:
        normalized = normalize_tags(tags, self.tag_rules)
        LOGGER.info("Setting '%s'.tags=%s", name, list(normalized))
        with self._lock:
            self._entry(name).tags = normalized
        return normalized

    def devices(self) -> list[str]:
        with self._lock:
            return list(self._devices)

    def to_doc(self) -> dict[str, Any]:
        with self._lock:
            devices = {name: setting.to_doc() for name, setting in self._devices.items()}
        return {
            "version": SETTINGS_VERSION,
            "tags": asdict(self.tag_rules),
            "engine": asdict(self.engine),
            "devices": devices,
        }

    def store(self) -> None:
        """Atomically replace the settings file with the current mapping.

        Raises PersistenceError; on failure the previous file is untouched.
        """
        content = yaml.safe_dump(self.to_doc(), sort_keys=False, allow_unicode=True)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceError(f"Could not write settings to {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    LOGGER.debug("Could not remove temporary settings file %s", tmp_name)
        LOGGER.info("Stored settings for %d device(s) to %s", len(self._devices), self.path)


def load_settings_or_default(path: Path | None = None) -> tuple[SettingsStore, tuple[str, ...]]:
    """Load settings, falling back to defaults when the file is unusable."""
    try:
        return SettingsStore.load(path), ()
    except SettingsValidationError as exc:
        LOGGER.warning("Ignoring unreadable settings: %s", exc)
        return SettingsStore(path), (str(exc),)
