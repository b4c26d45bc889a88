"""Output channel and user notification surfaces shared by the preview pipeline."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

try:  # pragma: no cover - optional Qt dependency
    from PySide6.QtWidgets import QApplication, QMessageBox

    _QT_AVAILABLE = True
except Exception:  # pragma: no cover - headless fallback
    QApplication = None  # type: ignore[assignment]
    QMessageBox = None  # type: ignore[assignment]
    _QT_AVAILABLE = False

__all__ = [
    "OutputLine",
    "OutputChannel",
    "Notifier",
    "LoggingNotifier",
    "QtNotifier",
    "TOOLS_NOT_FOUND_BORDER",
    "tools_not_found_lines",
    "show_error_tools_not_found",
]

LOGGER = logging.getLogger(__name__)

TOOLS_NOT_FOUND_BORDER = "*" * 60
_TOOLS_NOT_FOUND_GUIDANCE: tuple[str, ...] = (
    "D2 executable not found.",
    "Make sure the D2 executable is installed and on system PATH.",
    "https://d2lang.com/tour/install",
)


@dataclass(slots=True, frozen=True)
class OutputLine:
    level: str
    message: str


class OutputChannel:
    """Append-only diagnostics channel mirrored into the logging stack.

    Lines are kept in a bounded ring buffer so the UI (or a test) can replay
    what the user would have seen in the output pane.
    """

    def __init__(self, name: str = "d2preview.output", *, capacity: int = 500) -> None:
        self._logger = logging.getLogger(name)
        self._capacity = max(10, capacity)
        self._buffer: deque[OutputLine] = deque(maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append_info(self, line: str) -> None:
        self._buffer.append(OutputLine("info", line))
        self._logger.info(line)

    def append_error(self, line: str) -> None:
        self._buffer.append(OutputLine("error", line))
        self._logger.error(line)

    def lines(self, level: str | None = None) -> list[OutputLine]:
        if level is None:
            return list(self._buffer)
        return [entry for entry in self._buffer if entry.level == level]

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)


class Notifier(Protocol):
    """Blocking-style user notification surface."""

    def show_error(self, message: str) -> None:  # pragma: no cover - protocol stub
        ...


class LoggingNotifier:
    """Headless notifier that records messages and logs them."""

    def __init__(self) -> None:
        self.messages: list[str] = []

    def show_error(self, message: str) -> None:
        self.messages.append(message)
        LOGGER.error("Notification: %s", message.replace("\n", " | "))


class QtNotifier:
    """Notifier that pops a critical ``QMessageBox``."""

    def __init__(self, parent: Any = None, *, title: str = "D2 Preview") -> None:
        self._parent = parent
        self._title = title

    def show_error(self, message: str) -> None:
        if not _QT_AVAILABLE or QMessageBox is None or QApplication is None:
            LOGGER.error("Notification (Qt unavailable): %s", message.replace("\n", " | "))
            return
        if QApplication.instance() is None:
            LOGGER.error("Notification (no QApplication): %s", message.replace("\n", " | "))
            return
        QMessageBox.critical(self._parent, self._title, message)


def tools_not_found_lines(msg: str) -> Sequence[str]:
    """Return the guidance lines shown when the ``d2`` executable is missing."""

    return (*_TOOLS_NOT_FOUND_GUIDANCE, f"{msg}")


def show_error_tools_not_found(msg: str, *, channel: OutputChannel, notifier: Notifier) -> None:
    """Report a missing ``d2`` executable in the output channel and as a popup."""

    lines = tools_not_found_lines(msg)
    channel.append_error(TOOLS_NOT_FOUND_BORDER)
    for line in lines:
        channel.append_error(line)
    channel.append_error(TOOLS_NOT_FOUND_BORDER)

    notifier.show_error("\n".join(lines))
