"""Tests for the logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

from d2preview.services.diagnostics import OutputChannel
from d2preview.utils import logging as logging_utils


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()
    for handler in logging.getLogger("d2preview.output").handlers:
        handler.flush()


def test_setup_logging_writes_main_and_output_logs(tmp_path: Path) -> None:
    paths = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    logging.getLogger("d2preview.preview.tracking").debug("internal detail")
    OutputChannel().append_error("err: failed to compile diagram.d2")
    _flush()

    assert paths.main == tmp_path / "d2preview.log"
    assert paths.output == tmp_path / "output.log"
    assert logging_utils.get_log_paths() == paths
    main_text = paths.main.read_text(encoding="utf-8")
    output_text = paths.output.read_text(encoding="utf-8")
    assert "internal detail" in main_text
    assert "err: failed to compile diagram.d2" in main_text
    assert "err: failed to compile diagram.d2" in output_text
    assert "internal detail" not in output_text


def test_output_log_can_be_disabled(tmp_path: Path) -> None:
    paths = logging_utils.setup_logging(log_dir=tmp_path, console=False, output_log=False, force=True)

    assert paths.output is None
    assert logging.getLogger("d2preview.output").handlers == []


def test_setup_logging_is_idempotent_without_force(tmp_path: Path) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False, force=True)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert first == second
    assert len(logging.getLogger("d2preview.output").handlers) == 1


def test_set_level_keeps_event_loop_loggers_quiet(tmp_path: Path) -> None:
    logging_utils.setup_logging(logging.INFO, log_dir=tmp_path, console=False, force=True)

    logging_utils.set_level(logging.DEBUG)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("asyncio").level == logging.WARNING
    assert logging.getLogger("qasync").level == logging.WARNING
