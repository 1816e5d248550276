"""Tests for logging configuration helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from actionflow.orchestration.controller import ExecutionController
from actionflow.utils import logging as logging_utils

from helpers import ScriptedProvider


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    logging_utils._state["log_path"] = None


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


# =============================================================================
# setup_logging
# =============================================================================


def test_setup_logging_writes_rotating_file(tmp_path: Path) -> None:
    path = logging_utils.setup_logging("debug", log_dir=tmp_path, console=False, force=True)

    logging.getLogger("actionflow.test").debug("hello from the test")
    _flush()

    assert path == tmp_path / "actionflow.log"
    assert logging_utils.get_log_path() == path
    text = path.read_text(encoding="utf-8")
    assert "hello from the test" in text
    assert "run=- |" in text
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_is_idempotent(tmp_path: Path) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False, force=True)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert first == second


def test_console_handler_level(tmp_path: Path) -> None:
    logging_utils.setup_logging("debug", log_dir=tmp_path, console_level="error", force=True)

    levels = {type(handler).__name__: handler.level for handler in logging.getLogger().handlers}

    assert levels["RotatingFileHandler"] == logging.DEBUG
    assert levels["StreamHandler"] == logging.ERROR


def test_log_dir_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACTIONFLOW_LOG_DIR", str(tmp_path / "env"))

    path = logging_utils.setup_logging(console=False, force=True)

    assert path.parent == tmp_path / "env"


@pytest.mark.parametrize(("level", "expected"), [(logging.ERROR, logging.ERROR), ("warning", logging.WARNING), ("nope", logging.INFO)])
def test_resolve_level(level, expected) -> None:
    assert logging_utils.resolve_level(level) == expected


# =============================================================================
# Run context
# =============================================================================


def test_bind_run_scopes_the_run_id() -> None:
    assert logging_utils.current_run_id() == logging_utils.NO_RUN

    with logging_utils.bind_run("abc123") as run_id:
        assert run_id == "abc123"
        assert logging_utils.current_run_id() == "abc123"

    assert logging_utils.current_run_id() == logging_utils.NO_RUN


def test_filter_keeps_explicit_run_id() -> None:
    record = logging.LogRecord("actionflow", logging.INFO, __file__, 1, "msg", None, None)
    record.run_id = "explicit"

    with logging_utils.bind_run("ambient"):
        assert logging_utils.RunContextFilter().filter(record)

    assert record.run_id == "explicit"


@pytest.mark.asyncio
async def test_controller_runs_are_tagged(tmp_path: Path) -> None:
    path = logging_utils.setup_logging("debug", log_dir=tmp_path, console=False, force=True)
    controller = ExecutionController(ScriptedProvider(["Hello!"]))

    await controller.run("hi", mode="single-shot")
    _flush()

    lines = [line for line in path.read_text(encoding="utf-8").splitlines() if "Starting run" in line]
    assert len(lines) == 1
    run_id = lines[0].split("Starting run ")[1].split()[0]
    assert f"run={run_id} |" in lines[0]
