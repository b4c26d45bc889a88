"""Periodic refresh timer driving debounced preview regeneration."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

__all__ = ["DebounceTimer", "RefreshTimer", "DEFAULT_REFRESH_INTERVAL"]

LOGGER = logging.getLogger(__name__)
DEFAULT_REFRESH_INTERVAL = 1.5


class DebounceTimer(Protocol):
    """Contract the tracking registry relies on."""

    def start(self, fire_immediately: bool) -> None:  # pragma: no cover - protocol stub
        ...

    def stop(self) -> None:  # pragma: no cover - protocol stub
        ...

    @property
    def running(self) -> bool:  # pragma: no cover - protocol stub
        ...


class RefreshTimer:
    """Invokes ``callback`` every ``interval`` seconds on an asyncio loop.

    Each tick is scheduled with ``loop.call_later`` once the previous one has
    run, so a slow callback delays the next tick instead of piling up calls.
    Exceptions raised by the callback are logged and do not stop the timer.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        interval: float = DEFAULT_REFRESH_INTERVAL,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self._interval = float(interval)
        self._loop = loop
        self._handle: asyncio.TimerHandle | asyncio.Handle | None = None
        self._running = False
        self._ticks = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self, fire_immediately: bool = False) -> None:
        if self._running:
            return
        if self._loop is None:
            self._loop = _current_loop()
        self._running = True
        if fire_immediately:
            self._handle = self._loop.call_soon(self._fire)
        else:
            self._handle = self._loop.call_later(self._interval, self._fire)

    def stop(self) -> None:
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if not self._running:
            return
        self._ticks += 1
        try:
            self._callback()
        except Exception:  # pragma: no cover
            LOGGER.exception("Refresh timer callback failed")
        if self._running and self._loop is not None and self._handle is None:
            self._handle = self._loop.call_later(self._interval, self._fire)


def _current_loop() -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        # Started before the qasync loop runs; use the loop installed on the policy.
        return asyncio.get_event_loop_policy().get_event_loop()
