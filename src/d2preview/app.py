"""Application bootstrap helpers for the d2preview desktop viewer."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, cast, get_args, get_origin, get_type_hints

from .editor.document_model import FileDocument, SourceDocument
from .preview.tracking import TrackingRecord, TrackingRegistry
from .services.conversion import ConversionError, ConversionOptions, D2TaskRunner, ToolNotFoundError
from .services.diagnostics import LoggingNotifier, Notifier, OutputChannel, QtNotifier, show_error_tools_not_found
from .services.settings import Settings, SettingsStore
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


@dataclass(slots=True)
class PreviewSession:
    """Collaborators wired together for one preview run."""

    registry: TrackingRegistry
    runner: D2TaskRunner
    channel: OutputChannel
    notifier: Notifier


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    paths = logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging to %s (level=%s)", paths.main, logging.getLevelName(level))
    _install_qt_message_handler()


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_session(
    settings: Settings,
    *,
    sink_factory: Callable[[TrackingRecord], Any],
    notifier: Notifier | None = None,
    channel: OutputChannel | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> PreviewSession:
    """Wire the output channel, task runner and tracking registry together."""

    active_channel = channel or OutputChannel()
    active_notifier = notifier or LoggingNotifier()
    runner = D2TaskRunner(
        channel=active_channel,
        notifier=active_notifier,
        options=ConversionOptions.from_settings(settings),
        loop=loop,
    )
    registry = TrackingRegistry(
        task_runner=runner,
        channel=active_channel,
        sink_factory=sink_factory,
        notifier=active_notifier,
        refresh_interval=settings.refresh_interval,
    )
    return PreviewSession(registry=registry, runner=runner, channel=active_channel, notifier=active_notifier)


def create_qapp(settings: Settings) -> QtRuntime:
    """Create a qasync-powered QApplication instance."""

    try:  # Local import to avoid mandatory PySide6 dependency at import time.
        from PySide6.QtWidgets import QApplication
    except ImportError as exc:  # pragma: no cover - depends on desktop stack
        raise RuntimeError("PySide6 must be installed to open the preview window.") from exc

    try:
        from qasync import QEventLoop
    except ImportError as exc:  # pragma: no cover - depends on env setup
        raise RuntimeError("qasync is required to run the async Qt event loop.") from exc

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv))
    app.setApplicationName("d2preview")
    app.setApplicationDisplayName("D2 Preview")
    app.setQuitOnLastWindowClosed(True)

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    try:
        app.aboutToQuit.connect(loop.stop)  # type: ignore[attr-defined]
    except AttributeError:  # pragma: no cover - in case of mock QApplication
        pass
    return QtRuntime(app=app, loop=loop)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `d2preview` console script."""

    args, passthrough = _parse_cli_args(argv)
    _rewrite_sys_argv(passthrough)

    debug = _env_flag("D2PREVIEW_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("D2PREVIEW_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    overrides_mapping: Dict[str, Any] | None = cli_overrides or None
    settings = load_settings(resolved_path, store=settings_store, overrides=overrides_mapping)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        logging_utils.set_level(logging.DEBUG)

    if args.file is None:
        print("A D2 file is required unless --dump-settings is given.", file=sys.stderr)
        return 2

    source = Path(args.file).expanduser()
    if args.render is not None:
        return render_once(settings, source, args.render)
    return run_preview(settings, source)


def render_once(
    settings: Settings,
    source: Path,
    output: str,
    *,
    channel: OutputChannel | None = None,
    notifier: Notifier | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Render ``source`` once without a window and write the SVG to ``output``."""

    active_channel = channel or OutputChannel()
    active_notifier = notifier or LoggingNotifier()
    document = FileDocument(source)
    text = document.get_text()
    if not text:
        active_channel.append_error(f"{source.name} is empty or unreadable.")
        return 1

    async def _render() -> str:
        runner = D2TaskRunner(
            channel=active_channel,
            notifier=active_notifier,
            options=ConversionOptions.from_settings(settings),
        )
        try:
            return await runner.render(document.file_name, text)
        finally:
            await runner.aclose()

    try:
        svg = asyncio.run(_render())
    except ToolNotFoundError as exc:
        show_error_tools_not_found(str(exc), channel=active_channel, notifier=active_notifier)
        return 1
    except ConversionError as exc:
        for line in exc.details:
            active_channel.append_error(line)
        return 1

    if output == "-":
        destination = stdout or sys.stdout
        destination.write(svg)
        destination.write("\n")
    else:
        target = Path(output).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(svg, encoding="utf-8")
    active_channel.append_info(f"Rendered {source.name}.")
    return 0


def run_preview(settings: Settings, source: Path) -> int:
    """Open the preview window for ``source`` and refresh it until closed."""

    from .preview.preview_window import PreviewWindow

    runtime = create_qapp(settings)
    loop = runtime.loop
    document = FileDocument(source)
    windows: list[PreviewWindow] = []
    geometry = _parse_geometry(settings.window_geometry)

    def _on_closed(record: TrackingRecord) -> None:
        if record.input_document is not None:
            session.registry.delete_object_to_track(record.input_document)
        if not len(session.registry):
            loop.stop()

    def _sink_factory(record: TrackingRecord) -> PreviewWindow:
        window = PreviewWindow(record, on_closed=_on_closed, geometry=geometry)
        windows.append(window)
        return window

    session = build_session(settings, sink_factory=_sink_factory, notifier=QtNotifier(), loop=loop)
    track(session.registry, document, loop=loop)

    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        session.registry.close()
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(session.runner.aclose())
        _drain_event_loop(loop)
        loop.close()
    return 0


def track(registry: TrackingRegistry, document: SourceDocument, *, loop: asyncio.AbstractEventLoop) -> TrackingRecord:
    """Track ``document`` and schedule its first explicit generation."""

    record = registry.create_object_to_track(document)
    loop.call_soon(registry.generate, document)
    return record


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_geometry(value: str | None) -> tuple[int, int]:
    default = (900, 700)
    if not value:
        return default
    width, sep, height = value.lower().partition("x")
    if not sep:
        return default
    try:
        return (max(200, int(width)), max(150, int(height)))
    except ValueError:
        _LOGGER.warning("Ignoring invalid window geometry %r", value)
        return default


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel outstanding tasks and shutdown async machinery before closing."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current_task = None
        with contextlib.suppress(RuntimeError):
            current_task = asyncio.current_task(loop=loop)

        tasks = [
            task
            for task in asyncio.all_tasks(loop)
            if not task.done() and task is not current_task
        ]
        if tasks:
            _LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        shutdown_steps = [
            getattr(loop, "shutdown_asyncgens", None),
            getattr(loop, "shutdown_default_executor", None),
        ]
        for step in shutdown_steps:
            if step is None:
                continue
            with contextlib.suppress(RuntimeError, NotImplementedError):
                await step()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:  # pragma: no cover
        _LOGGER.debug("Unable to drain asyncio loop: %s", exc)


def _install_qt_message_handler() -> None:
    """Redirect Qt warnings to the Python logging stack when available."""

    try:
        from PySide6.QtCore import QtMsgType, qInstallMessageHandler
    except Exception:  # pragma: no cover - PySide6 optional during tests
        return

    level_map = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(mode, context, message):  # type: ignore[no-untyped-def]
        del context
        level = level_map.get(mode, logging.INFO)
        logging.getLogger("PySide6").log(level, message)

    qInstallMessageHandler(_handler)


def _parse_cli_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="d2preview",
        add_help=True,
        description="Preview a D2 diagram and keep it fresh while the file changes.",
    )
    parser.add_argument("file", nargs="?", help="D2 source file to preview.")
    parser.add_argument(
        "--render",
        metavar="OUT",
        help="Render once to OUT ('-' for stdout) instead of opening a window.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.d2preview/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    return parser.parse_known_args(argv)


def _rewrite_sys_argv(passthrough: Sequence[str]) -> None:
    program = sys.argv[0] if sys.argv else "d2preview"
    sys.argv = [program, *passthrough]


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is type(None) or normalized.lower() in {"none", "null"}:
        return None
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": asdict(settings), "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("D2PREVIEW_"))
