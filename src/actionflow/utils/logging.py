"""Logging helpers for applications embedding actionflow.

Every record passing through the handlers installed by :func:`setup_logging`
carries a ``run_id`` attribute. Inside ``ExecutionController.run`` it is the
id of the active run (tool calls dispatched with ``asyncio.gather`` inherit
it); elsewhere it is ``"-"``.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator

__all__ = [
    "RunContextFilter",
    "bind_run",
    "current_run_id",
    "get_log_path",
    "get_logger",
    "resolve_level",
    "setup_logging",
]

LOG_FILE_NAME = "actionflow.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | run=%(run_id)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
NO_RUN = "-"

_DEFAULT_LOG_DIR = Path.home() / ".actionflow" / "logs"
# Client libraries that log every request at INFO/DEBUG.
_CHATTY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_run_id: ContextVar[str] = ContextVar("actionflow_run_id", default=NO_RUN)
_state: dict[str, Path | None] = {"log_path": None}


class RunContextFilter(logging.Filter):
    """Stamp records with the id of the run being executed."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = _run_id.get()
        return True


@contextmanager
def bind_run(run_id: str) -> Iterator[str]:
    """Attach ``run_id`` to log records emitted inside the block."""
    token = _run_id.set(run_id)
    try:
        yield run_id
    finally:
        _run_id.reset(token)


def current_run_id() -> str:
    return _run_id.get()


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    console_level: int | str | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install a rotating log file (and optionally a console stream) on the root logger.

    Args:
        level: Root and file level, numeric or a name such as ``"debug"``.
        log_dir: Target directory; ``ACTIONFLOW_LOG_DIR`` or ``~/.actionflow/logs``
            when omitted.
        console: Also log to stderr.
        console_level: Level for the console stream; ``level`` when None.
        max_bytes: Rotation threshold of the log file.
        backup_count: Rotated files kept next to the active one.
        force: Reconfigure even when logging was already set up.

    Returns:
        Path of the active log file.
    """

    configured = _state["log_path"]
    if configured is not None and not force:
        return configured

    root_level = resolve_level(level)
    directory = _log_directory(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    stream_level: int | None = None
    if console:
        stream_level = resolve_level(console_level) if console_level is not None else root_level
    handlers = _build_handlers(
        log_path,
        file_level=root_level,
        console_level=stream_level,
        max_bytes=max_bytes,
        backup_count=backup_count,
    )
    logging.basicConfig(level=root_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_client_loggers(root_level)

    _state["log_path"] = log_path
    logging.getLogger(__name__).debug("Logging to %s at %s", log_path, logging.getLevelName(root_level))
    return log_path


def resolve_level(level: int | str) -> int:
    """Accept numeric levels or names such as ``"debug"`` (as stored in settings)."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the log file configured by :func:`setup_logging`, if any."""

    return _state["log_path"]


def _build_handlers(
    log_path: Path,
    *,
    file_level: int,
    console_level: int | None,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    run_filter = RunContextFilter()

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers: list[logging.Handler] = [file_handler]
    file_handler.setLevel(file_level)
    if console_level is not None:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(console_level)
        handlers.append(stream_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(run_filter)
    return handlers


def _log_directory(log_dir: Path | str | None) -> Path:
    if log_dir:
        return Path(log_dir).expanduser()
    return Path(os.environ.get("ACTIONFLOW_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def _quiet_client_loggers(root_level: int) -> None:
    floor = max(root_level, logging.WARNING)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(floor)
