"""Document-to-preview tracking, refresh timer and preview window."""

from importlib import import_module
from typing import Any

from .refresh_timer import DebounceTimer, RefreshTimer
from .tracking import PreviewSink, PreviewState, TrackingRecord, TrackingRegistry

__all__ = [
    "DebounceTimer",
    "RefreshTimer",
    "PreviewSink",
    "PreviewState",
    "TrackingRecord",
    "TrackingRegistry",
]


def __getattr__(name: str) -> Any:
    if name == "preview_window":
        module = import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
