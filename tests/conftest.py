"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from tests.helpers import RegistryHarness

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


@pytest.fixture
def harness() -> RegistryHarness:
    return RegistryHarness()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("D2PREVIEW_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("D2PREVIEW_LOG_DIR", str(tmp_path / "logs"))
