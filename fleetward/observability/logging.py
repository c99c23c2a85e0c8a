"""Logging configuration for fleetward.

Logging is silent by default (library behavior). Callers opt in:

    from fleetward.observability.logging import LogConfig, setup_logging, teardown_logging

    handlers = setup_logging(LogConfig(level="DEBUG", console=True))
    try:
        report = reconciler.run(inputs)
    finally:
        teardown_logging(handlers)
"""

from __future__ import annotations

import logging
import logging.handlers
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

from fleetward.observability.logger import ROOT_NAME, TRACE

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_CONTEXT_KEYS = ("component", "provider", "machine", "vm", "operation", "phase")

FILE_FORMAT = (
    "%(asctime)s.%(msecs)03d | %(levelname)-8s | "
    "%(name)s:%(funcName)s:%(lineno)d%(ctx)s - %(message)s"
)


class _ContextFilter(logging.Filter):
    """Renders bound context as `` [machine=10.0.0.5 operation=start]``."""

    def filter(self, record: logging.LogRecord) -> bool:
        extras = getattr(record, "extras", {})
        parts = [f"{k}={extras[k]}" for k in _CONTEXT_KEYS if k in extras]
        record.ctx = f" [{' '.join(parts)}]" if parts else ""
        return True


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum level for the console sink.
        file: Log file path; None disables file output. The file always
            records DEBUG and above.
        console: Whether to log to stderr through rich.
        max_bytes: Rotate the file once it reaches this size.
        backups: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = ".fleetward/fleetward.log"
    console: bool = False
    max_bytes: int = 50 * 1024 * 1024
    backups: int = 10


def _level(name: str) -> int:
    if name.upper() == "TRACE":
        return TRACE
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def _console_handler(level: int, console: Console | None) -> logging.Handler:
    handler = RichHandler(
        level=level,
        console=console or Console(stderr=True),
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s%(ctx)s"))
    return handler


def _file_handler(config: LogConfig, path: str) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=config.max_bytes, backupCount=config.backups, encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(
    config: LogConfig,
    *,
    console: Console | None = None,
) -> list[logging.Handler]:
    """Install handlers on the ``fleetward`` logger.

    Args:
        config: Logging configuration.
        console: Rich console to render to; defaults to stderr.

    Returns:
        The handlers that were added, for ``teardown_logging``.
    """
    root = logging.getLogger(ROOT_NAME)
    handlers: list[logging.Handler] = []

    if config.console:
        handlers.append(_console_handler(_level(config.level), console))
    if config.file:
        handlers.append(_file_handler(config, config.file))

    for handler in handlers:
        handler.addFilter(_ContextFilter())
        root.addHandler(handler)
    return handlers


def teardown_logging(handlers: list[logging.Handler]) -> None:
    root = logging.getLogger(ROOT_NAME)
    for handler in handlers:
        root.removeHandler(handler)
        handler.close()
