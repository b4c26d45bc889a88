"""Asynchronous D2 → SVG conversion through the external ``d2`` executable."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence, runtime_checkable

from .diagnostics import LoggingNotifier, Notifier, OutputChannel, show_error_tools_not_found
from .settings import Settings

__all__ = [
    "D2PreviewError",
    "ToolNotFoundError",
    "ConversionError",
    "ConversionOptions",
    "ConversionTaskRunner",
    "D2TaskRunner",
    "OnComplete",
]

LOGGER = logging.getLogger(__name__)

OnComplete = Callable[[str], None]


class D2PreviewError(RuntimeError):
    """Base class for errors raised by the preview services."""


class ToolNotFoundError(D2PreviewError):
    """Raised when the ``d2`` executable cannot be located or started."""


class ConversionError(D2PreviewError):
    """Raised when ``d2`` ran but produced no usable SVG."""

    def __init__(self, details: Sequence[str]) -> None:
        self.details: tuple[str, ...] = tuple(details) or ("D2 conversion failed.",)
        super().__init__("\n".join(self.details))


@runtime_checkable
class ConversionTaskRunner(Protocol):
    """Asynchronous conversion engine used by the registry."""

    def gen_task(
        self, file_name: str, source_text: str, on_complete: OnComplete
    ) -> asyncio.Task[None]:  # pragma: no cover - protocol stub
        ...


@dataclass(slots=True, frozen=True)
class ConversionOptions:
    """Command-line options forwarded to ``d2``."""

    d2_path: str = "d2"
    layout: str = "dagre"
    theme_id: int = 0
    sketch: bool = False
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConversionOptions":
        return cls(
            d2_path=settings.d2_path,
            layout=settings.layout,
            theme_id=settings.theme_id,
            sketch=settings.sketch,
            timeout=settings.conversion_timeout,
        )

    def command(self, executable: str) -> list[str]:
        args = [executable, f"--layout={self.layout}", f"--theme={self.theme_id}"]
        if self.sketch:
            args.append("--sketch")
        # stdin in, stdout out
        args.extend(["-", "-"])
        return args


class D2TaskRunner:
    """Runs ``d2`` as a subprocess on the asyncio loop and reports failures.

    ``gen_task`` never raises: a missing executable is surfaced through
    :func:`show_error_tools_not_found`, compiler errors are copied line by line
    into the output channel, and in both cases ``on_complete`` receives an
    empty string. A missing executable is reported once; the report is armed
    again by a run that gets past spawning ``d2`` or by a new ``d2_path``.
    Any other failure is logged and still completes with ``""``. Callers that
    prefer exceptions await :meth:`render`.
    """

    def __init__(
        self,
        *,
        channel: OutputChannel,
        notifier: Notifier | None = None,
        options: ConversionOptions | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._channel = channel
        self._notifier = notifier or LoggingNotifier()
        self._options = options or ConversionOptions()
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self._missing_reported = False

    @property
    def options(self) -> ConversionOptions:
        return self._options

    @options.setter
    def options(self, value: ConversionOptions) -> None:
        if value.d2_path != self._options.d2_path:
            self._missing_reported = False
        self._options = value

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def gen_task(self, file_name: str, source_text: str, on_complete: OnComplete) -> asyncio.Task[None]:
        if self._closed:
            raise D2PreviewError("Task runner has been closed")
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._run_task(file_name, source_text, on_complete))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def render(self, file_name: str, source_text: str) -> str:
        """Convert ``source_text`` and return the SVG markup."""

        executable = self._resolve_executable()
        command = self._options.command(executable)
        label = Path(file_name).name if file_name else "<untitled>"
        cwd = _working_directory(file_name)
        LOGGER.debug("Running %s for %s (cwd=%s)", command, label, cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            raise ToolNotFoundError(f"Unable to start '{executable}': {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(source_text.encode("utf-8")),
                timeout=self._options.timeout,
            )
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            with contextlib.suppress(Exception):
                await process.wait()
            raise ConversionError(
                [f"{label}: d2 timed out after {self._options.timeout:g}s"]
            ) from None
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            raise

        if process.returncode != 0:
            details = _extract_error_lines(stderr.decode("utf-8", errors="replace"))
            if not details:
                details = [f"{label}: d2 exited with status {process.returncode}"]
            raise ConversionError(details)

        svg = stdout.decode("utf-8", errors="replace").strip()
        if "<svg" not in svg.casefold():
            raise ConversionError([f"{label}: d2 did not return SVG output"])
        return svg

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _run_task(self, file_name: str, source_text: str, on_complete: OnComplete) -> None:
        data = ""
        try:
            data = await self.render(file_name, source_text)
        except ToolNotFoundError as exc:
            if self._missing_reported:
                LOGGER.debug("d2 still unavailable: %s", exc)
            else:
                self._missing_reported = True
                show_error_tools_not_found(str(exc), channel=self._channel, notifier=self._notifier)
        except ConversionError as exc:
            self._missing_reported = False
            for line in exc.details:
                self._channel.append_error(line)
        except Exception as exc:
            LOGGER.exception("Unexpected failure converting %s", file_name or "<untitled>")
            self._channel.append_error(f"d2 conversion failed: {exc}")
        else:
            self._missing_reported = False
        on_complete(data)

    def _resolve_executable(self) -> str:
        candidate = str(self._options.d2_path or "d2").strip()
        resolved = shutil.which(str(Path(candidate).expanduser()))
        if resolved is None:
            raise ToolNotFoundError(f"Unable to locate '{candidate}' on PATH.")
        return resolved

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Conversion task failed", exc_info=exc)


def _working_directory(file_name: str) -> str | None:
    if not file_name:
        return None
    parent = Path(file_name).expanduser().parent
    return str(parent) if parent.is_dir() else None


def _extract_error_lines(stderr: str) -> list[str]:
    return [line.rstrip() for line in stderr.splitlines() if line.strip()]
