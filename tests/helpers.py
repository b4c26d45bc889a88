"""Shared test helpers and stub collaborators.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from d2preview.editor.document_model import DocumentMetadata, DocumentState
from d2preview.preview.tracking import TrackingRecord, TrackingRegistry
from d2preview.services.diagnostics import LoggingNotifier, OutputChannel


class FakeTimer:
    """Timer stub that only fires when a test calls :meth:`fire`."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.running = False
        self.start_calls: list[bool] = []
        self.stop_calls = 0

    def start(self, fire_immediately: bool) -> None:
        self.running = True
        self.start_calls.append(fire_immediately)

    def stop(self) -> None:
        self.running = False
        self.stop_calls += 1

    def fire(self) -> None:
        self.callback()


class FakeRunner:
    """Task runner stub that records dispatches and completes them on demand."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Callable[[str], None]]] = []

    def gen_task(self, file_name: str, source_text: str, on_complete: Callable[[str], None]) -> None:
        self.calls.append((file_name, source_text, on_complete))

    def complete(self, index: int, data: str) -> None:
        self.calls[index][2](data)

    def complete_last(self, data: str) -> None:
        self.complete(len(self.calls) - 1, data)


class FakeSink:
    """Preview sink stub keeping every SVG it was given."""

    def __init__(self, record: TrackingRecord) -> None:
        self.record = record
        self.history: list[str] = []

    @property
    def svg(self) -> str | None:
        return self.history[-1] if self.history else None

    def set_svg(self, data: str) -> None:
        self.history.append(data)


class RegistryHarness:
    """Bundles a registry with the fakes wired into it."""

    def __init__(self) -> None:
        self.runner = FakeRunner()
        self.channel = OutputChannel(capacity=50)
        self.notifier = LoggingNotifier()
        self.timers: list[FakeTimer] = []
        self.sinks: list[FakeSink] = []
        self.registry = TrackingRegistry(
            task_runner=self.runner,  # type: ignore[arg-type]
            channel=self.channel,
            sink_factory=self._make_sink,
            notifier=self.notifier,
            timer_factory=self._make_timer,
        )

    def _make_sink(self, record: TrackingRecord) -> FakeSink:
        sink = FakeSink(record)
        self.sinks.append(sink)
        return sink

    def _make_timer(self, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(callback)
        self.timers.append(timer)
        return timer


def make_document(text: str = "a -> b", path: str | None = "/a/b/diagram.d2") -> DocumentState:
    metadata = DocumentMetadata(path=Path(path) if path else None)
    return DocumentState(text=text, metadata=metadata)
