"""Logging setup for the preview process.

Everything goes to ``d2preview.log``. Lines written to the output channel
(logger ``d2preview.output``: compiler errors, "Preview for X updated.")
are additionally kept in ``output.log`` so a d2 failure can be read back
without the debug noise of the main log.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path

__all__ = ["LogPaths", "setup_logging", "set_level", "get_log_paths"]

_DEFAULT_LOG_DIR = Path.home() / ".d2preview" / "logs"
_OUTPUT_LOGGER = "d2preview.output"
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "qasync")
_MAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_OUTPUT_FORMAT = "%(asctime)s %(levelname)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True, frozen=True)
class LogPaths:
    main: Path
    output: Path | None = None


_ACTIVE: LogPaths | None = None
_OUTPUT_HANDLER: logging.Handler | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    output_log: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> LogPaths:
    """Install the rotating file handlers (and a console handler) on the root logger.

    Calling it again is a no-op unless ``force`` is set; use :func:`set_level`
    to change verbosity after settings are loaded.
    """

    global _ACTIVE, _OUTPUT_HANDLER
    if _ACTIVE is not None and not force:
        return _ACTIVE

    target_dir = Path(log_dir or os.environ.get("D2PREVIEW_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    main_path = target_dir / "d2preview.log"

    handlers: list[logging.Handler] = [
        _rotating(main_path, _MAIN_FORMAT, max_bytes=max_bytes, backup_count=backup_count)
    ]
    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(_MAIN_FORMAT, _DATE_FORMAT))
        handlers.append(stream)
    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    output_logger = logging.getLogger(_OUTPUT_LOGGER)
    if _OUTPUT_HANDLER is not None:
        output_logger.removeHandler(_OUTPUT_HANDLER)
        _OUTPUT_HANDLER.close()
        _OUTPUT_HANDLER = None
    output_path: Path | None = None
    if output_log:
        output_path = target_dir / "output.log"
        _OUTPUT_HANDLER = _rotating(output_path, _OUTPUT_FORMAT, max_bytes=max_bytes, backup_count=backup_count)
        output_logger.addHandler(_OUTPUT_HANDLER)

    set_level(level)
    _ACTIVE = LogPaths(main=main_path, output=output_path)
    return _ACTIVE


def set_level(level: int) -> None:
    """Change the root level; asyncio and qasync stay at WARNING or above."""

    logging.getLogger().setLevel(level)
    quiet = max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def get_log_paths() -> LogPaths | None:
    return _ACTIVE


def _rotating(path: Path, fmt: str, *, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(fmt, _DATE_FORMAT))
    return handler
