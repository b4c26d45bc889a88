"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from d2preview.services.settings import MIN_REFRESH_INTERVAL, Settings, SettingsStore


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")

    assert store.load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    original = Settings(
        d2_path="/opt/d2/bin/d2",
        layout="elk",
        theme_id=200,
        sketch=True,
        refresh_interval=0.75,
        conversion_timeout=12.0,
        window_geometry="1200x800",
    )

    SettingsStore(path).save(original)
    payload = json.loads(path.read_text(encoding="utf-8"))
    reloaded = SettingsStore(path).load()

    assert payload["version"] == 1
    assert reloaded == original


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"layout": "elk", "legacy_flag": True}), encoding="utf-8")

    settings = SettingsStore(path).load()

    assert settings.layout == "elk"


def test_environment_overrides_apply(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("D2PREVIEW_D2_PATH", "/custom/d2")
    monkeypatch.setenv("D2PREVIEW_SKETCH", "yes")
    monkeypatch.setenv("D2PREVIEW_THEME", "3")
    monkeypatch.setenv("D2PREVIEW_REFRESH_INTERVAL", "2.5")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.d2_path == "/custom/d2"
    assert settings.sketch is True
    assert settings.theme_id == 3
    assert settings.refresh_interval == 2.5


def test_invalid_numeric_environment_override_is_ignored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("D2PREVIEW_THEME", "dark")
    monkeypatch.setenv("D2PREVIEW_TIMEOUT", "soon")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.theme_id == 0
    assert settings.conversion_timeout == Settings().conversion_timeout


def test_cli_overrides_win_over_file_and_lose_to_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"layout": "elk", "theme_id": 1}), encoding="utf-8")
    monkeypatch.setenv("D2PREVIEW_THEME", "5")

    settings = SettingsStore(path).load(overrides={"layout": "dagre", "theme_id": 4})

    assert settings.layout == "dagre"
    assert settings.theme_id == 5


def test_values_are_normalized(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"layout": "Circo", "refresh_interval": 0.0, "conversion_timeout": -1, "d2_path": " "}),
        encoding="utf-8",
    )

    settings = SettingsStore(path).load()

    assert settings.layout == "dagre"
    assert settings.refresh_interval == MIN_REFRESH_INTERVAL
    assert settings.conversion_timeout == Settings().conversion_timeout
    assert settings.d2_path == "d2"
