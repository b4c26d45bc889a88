"""Preview window (with headless fallback) displaying the rendered SVG."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from .tracking import TrackingRecord

try:  # pragma: no cover - optional Qt dependency
    from PySide6.QtCore import QByteArray, Qt
    from PySide6.QtSvgWidgets import QSvgWidget
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget

    _QT_AVAILABLE = True
except Exception:  # pragma: no cover - headless fallback
    QByteArray = None  # type: ignore[assignment]
    Qt = None  # type: ignore[assignment]
    QSvgWidget = None  # type: ignore[assignment]
    QApplication = None  # type: ignore[assignment]
    QLabel = None  # type: ignore[assignment]
    QVBoxLayout = None  # type: ignore[assignment]
    QWidget = None  # type: ignore[assignment]
    _QT_AVAILABLE = False

__all__ = ["PreviewWindow"]

LOGGER = logging.getLogger(__name__)

_PREVIEW_STYLESHEET = """
#d2-preview-status {
    color: #7c8191;
    font-size: 11px;
    padding: 2px 6px;
}
"""


class PreviewWindow:
    """Displays the SVG rendered for one tracked document.

    The Qt widgets are only built when PySide6 is importable, a
    ``QApplication`` exists and ``enable_qt`` is set; otherwise the window is
    headless and simply remembers the latest SVG.
    """

    def __init__(
        self,
        record: TrackingRecord,
        *,
        enable_qt: bool = True,
        on_closed: Callable[[TrackingRecord], None] | None = None,
        geometry: tuple[int, int] = (900, 700),
    ) -> None:
        self._record = record
        self._on_closed = on_closed
        self._svg = ""
        self._updates = 0
        self._qt_enabled = bool(
            enable_qt and _QT_AVAILABLE and QApplication is not None and QApplication.instance() is not None
        )
        self._widget: Any = None
        self._svg_widget: Any = None
        self._status_label: Any = None
        if self._qt_enabled:
            self._build_widget(geometry)

    @property
    def record(self) -> TrackingRecord:
        return self._record

    @property
    def svg(self) -> str:
        return self._svg

    @property
    def updates(self) -> int:
        return self._updates

    @property
    def title(self) -> str:
        name = Path(self._record.file_name).name or "untitled"
        return f"Preview: {name}"

    @property
    def qt_enabled(self) -> bool:
        return self._qt_enabled

    @property
    def widget(self) -> Any:
        return self._widget

    def set_svg(self, data: str) -> None:
        self._svg = data
        self._updates += 1
        if not self._qt_enabled or self._svg_widget is None:
            return
        self._svg_widget.load(QByteArray(data.encode("utf-8")))
        renderer = self._svg_widget.renderer()
        if renderer is not None and renderer.isValid():
            size = renderer.defaultSize()
            self._set_status(f"{size.width()}×{size.height()} · update #{self._updates}")
        else:
            self._set_status("Unable to display the rendered SVG")
        if not self._widget.isVisible():
            self._widget.show()

    def close(self) -> None:
        if self._widget is not None:
            self._widget.close()
            return
        self._notify_closed()

    # ------------------------------------------------------------------
    # Qt helpers
    # ------------------------------------------------------------------
    def _build_widget(self, geometry: tuple[int, int]) -> None:
        widget = QWidget()
        widget.setObjectName("d2-preview-window")
        widget.setWindowTitle(self.title)
        widget.setAttribute(Qt.WidgetAttribute.WA_DeleteOnClose, True)
        widget.setStyleSheet(_PREVIEW_STYLESHEET)
        layout = QVBoxLayout(widget)
        layout.setContentsMargins(0, 0, 0, 0)
        svg_widget = QSvgWidget(widget)
        layout.addWidget(svg_widget, 1)
        status = QLabel("Waiting for first render…", widget)
        status.setObjectName("d2-preview-status")
        layout.addWidget(status)
        widget.resize(*geometry)
        widget.destroyed.connect(lambda *_: self._handle_destroyed())
        self._widget = widget
        self._svg_widget = svg_widget
        self._status_label = status
        widget.show()

    def _set_status(self, text: str) -> None:
        if self._status_label is not None:
            self._status_label.setText(text)

    def _handle_destroyed(self) -> None:
        self._widget = None
        self._svg_widget = None
        self._status_label = None
        self._notify_closed()

    def _notify_closed(self) -> None:
        callback = self._on_closed
        self._on_closed = None
        if callback is None:
            return
        try:
            callback(self._record)
        except Exception:
            LOGGER.warning(
                "Preview close callback failed for %s",
                self._record.file_name or "<untitled>",
                exc_info=True,
            )
