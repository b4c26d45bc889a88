"""Service layer helpers (conversion, diagnostics, settings)."""

from .conversion import (
    ConversionError,
    ConversionOptions,
    ConversionTaskRunner,
    D2PreviewError,
    D2TaskRunner,
    ToolNotFoundError,
)
from .diagnostics import (
    LoggingNotifier,
    Notifier,
    OutputChannel,
    QtNotifier,
    show_error_tools_not_found,
)
from .settings import Settings, SettingsStore

__all__ = [
    "ConversionError",
    "ConversionOptions",
    "ConversionTaskRunner",
    "D2PreviewError",
    "D2TaskRunner",
    "ToolNotFoundError",
    "LoggingNotifier",
    "Notifier",
    "OutputChannel",
    "QtNotifier",
    "show_error_tools_not_found",
    "Settings",
    "SettingsStore",
]
