"""Tracks the connection between a D2 document and its preview window.

The :class:`TrackingRegistry` keeps one :class:`TrackingRecord` per open
document, keyed by the document's opaque ``document_id``. Each record owns a
refresh timer; while a preview exists, every tick re-renders the document in
the background and pushes the SVG into the record's preview sink.

All methods run on the asyncio loop thread. Conversions complete out of
order, so each dispatch carries a sequence number and completions older than
the last applied one are dropped.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

from ..editor.document_model import SourceDocument
from ..services.conversion import ConversionTaskRunner
from ..services.diagnostics import LoggingNotifier, Notifier, OutputChannel, show_error_tools_not_found
from .refresh_timer import DEFAULT_REFRESH_INTERVAL, DebounceTimer, RefreshTimer

__all__ = [
    "PreviewSink",
    "PreviewState",
    "TrackingRecord",
    "TrackingRegistry",
    "SinkFactory",
    "TimerFactory",
]

LOGGER = logging.getLogger(__name__)


class PreviewSink(Protocol):
    """Destination that displays the rendered SVG for one document."""

    def set_svg(self, data: str) -> None:  # pragma: no cover - protocol stub
        ...


class PreviewState(enum.Enum):
    REGISTERED = "registered"
    PREVIEWING = "previewing"
    DELETED = "deleted"


@dataclass(slots=True, eq=False)
class TrackingRecord:
    """Per-document state shared by the refresh timer and :meth:`TrackingRegistry.generate`."""

    handle: str
    input_document: Optional[SourceDocument] = None
    preview_sink: Optional[PreviewSink] = None
    timer: Optional[DebounceTimer] = None
    state: PreviewState = PreviewState.REGISTERED
    dispatch_seq: int = 0
    applied_seq: int = 0

    @property
    def has_preview(self) -> bool:
        return self.preview_sink is not None

    @property
    def file_name(self) -> str:
        document = self.input_document
        return document.file_name if document is not None else ""


SinkFactory = Callable[[TrackingRecord], PreviewSink]
TimerFactory = Callable[[Callable[[], None]], DebounceTimer]


class TrackingRegistry:
    """Keeper of the document → :class:`TrackingRecord` map."""

    def __init__(
        self,
        *,
        task_runner: ConversionTaskRunner,
        channel: OutputChannel,
        sink_factory: SinkFactory,
        notifier: Notifier | None = None,
        timer_factory: TimerFactory | None = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self._task_runner = task_runner
        self._channel = channel
        self._sink_factory = sink_factory
        self._notifier = notifier or LoggingNotifier()
        self._refresh_interval = refresh_interval
        self._timer_factory = timer_factory or self._default_timer
        self._records: dict[str, TrackingRecord] = {}

    @property
    def channel(self) -> OutputChannel:
        return self._channel

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, document: object) -> bool:
        handle = getattr(document, "document_id", None)
        return handle is not None and handle in self._records

    def records(self) -> list[TrackingRecord]:
        return list(self._records.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create_object_to_track(self, document: SourceDocument) -> TrackingRecord:
        """Start tracking ``document`` and start its refresh timer.

        The timer only regenerates once a preview exists; the first preview
        must be requested explicitly through :meth:`generate`.
        """

        handle = document.document_id
        record = TrackingRecord(handle=handle, input_document=document)

        previous = self._records.get(handle)
        if previous is not None:
            LOGGER.warning("Document %s was already tracked; replacing its record", handle)
            self._retire(previous)
        self._records[handle] = record

        def _on_tick() -> None:
            if record.preview_sink is not None:
                self.generate(document)

        record.timer = self._timer_factory(_on_tick)
        record.timer.start(False)
        LOGGER.debug("Tracking %s (%s)", handle, document.file_name)
        return record

    def delete_object_to_track(self, document: SourceDocument) -> None:
        record = self._records.pop(document.document_id, None)
        if record is None:
            return
        self._retire(record)
        LOGGER.debug("Stopped tracking %s", record.handle)

    def get_track_object(self, document: SourceDocument) -> TrackingRecord | None:
        return self._records.get(document.document_id)

    def close(self) -> None:
        """Stop tracking every document."""

        for record in list(self._records.values()):
            self._retire(record)
        self._records.clear()

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------
    def generate(self, document: SourceDocument) -> None:
        record = self.get_track_object(document)
        if record is None:
            return
        if record.input_document is None:
            return

        text = record.input_document.get_text()
        if not text:
            # Empty buffer: keep whatever is already on screen.
            return

        record.dispatch_seq += 1
        seq = record.dispatch_seq
        file_name = record.input_document.file_name

        def _on_complete(data: str) -> None:
            self._apply_result(record, seq, data)

        self._task_runner.gen_task(file_name, text, _on_complete)

    def show_error_tools_not_found(self, msg: str) -> None:
        show_error_tools_not_found(msg, channel=self._channel, notifier=self._notifier)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _apply_result(self, record: TrackingRecord, seq: int, data: str) -> None:
        if self._records.get(record.handle) is not record:
            LOGGER.debug("Dropping conversion result for untracked record %s", record.handle)
            return
        if seq <= record.applied_seq:
            LOGGER.debug(
                "Dropping stale conversion result %s for %s (applied=%s)",
                seq,
                record.handle,
                record.applied_seq,
            )
            return
        record.applied_seq = seq

        if record.preview_sink is None:
            record.preview_sink = self._sink_factory(record)
            record.state = PreviewState.PREVIEWING

        if not data:
            return

        record.preview_sink.set_svg(data)
        base = Path(record.file_name).name
        self._channel.append_info(f"Preview for {base} updated.")

    def _retire(self, record: TrackingRecord) -> None:
        if record.timer is not None:
            record.timer.stop()
        record.state = PreviewState.DELETED

    def _default_timer(self, callback: Callable[[], None]) -> DebounceTimer:
        return RefreshTimer(callback, interval=self._refresh_interval)
