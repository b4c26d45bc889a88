"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "Settings",
    "SettingsStore",
    "LAYOUT_CHOICES",
    "MIN_REFRESH_INTERVAL",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".d2preview"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "D2PREVIEW_D2_PATH": "d2_path",
    "D2PREVIEW_LAYOUT": "layout",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "D2PREVIEW_SKETCH": "sketch",
    "D2PREVIEW_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "D2PREVIEW_REFRESH_INTERVAL": "refresh_interval",
    "D2PREVIEW_TIMEOUT": "conversion_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "D2PREVIEW_THEME": "theme_id",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
LAYOUT_CHOICES: tuple[str, ...] = ("dagre", "elk", "tala")
MIN_REFRESH_INTERVAL = 0.1


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    d2_path: str = "d2"
    layout: str = "dagre"
    theme_id: int = 0
    sketch: bool = False
    refresh_interval: float = 1.5
    conversion_timeout: float = 30.0
    debug_logging: bool = False
    window_geometry: str | None = None


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s: %s", self._path, sorted(data))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return _normalize(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def _normalize(settings: Settings) -> Settings:
    updates: Dict[str, Any] = {}
    layout = str(settings.layout or "").strip().lower()
    if layout not in LAYOUT_CHOICES:
        LOGGER.warning("Unknown layout engine %r; falling back to dagre", settings.layout)
        layout = "dagre"
    if layout != settings.layout:
        updates["layout"] = layout
    if settings.refresh_interval < MIN_REFRESH_INTERVAL:
        updates["refresh_interval"] = MIN_REFRESH_INTERVAL
    if settings.conversion_timeout <= 0:
        updates["conversion_timeout"] = Settings().conversion_timeout
    if not str(settings.d2_path or "").strip():
        updates["d2_path"] = "d2"
    return replace(settings, **updates) if updates else settings
