"""Loguru-style bound logger on top of stdlib logging.

Usage::

    from fleetward.observability.logger import logger

    log = logger.bind(component="reconciler")
    log.info("Dispatching {op} to {n} machines", op="start", n=3)

Records go to the ``fleetward`` logger hierarchy under the caller's module
name. Bound context is attached to each record as attributes and as
``record.extras``. Nothing is emitted until handlers are installed, see
``fleetward.observability.logging.setup_logging``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_NAME = "fleetward"

_root = logging.getLogger(ROOT_NAME)


def _render(message: str, args: tuple[object, ...], kwargs: dict[str, object]) -> str:
    if kwargs:
        return message.format(**kwargs)
    if args:
        return message.format(*args)
    return message


class BoundLogger:
    __slots__ = ("_extras",)

    def __init__(self, extras: dict[str, object] | None = None) -> None:
        self._extras = extras or {}

    @property
    def extras(self) -> dict[str, object]:
        return dict(self._extras)

    def bind(self, **kwargs: object) -> BoundLogger:
        return BoundLogger({**self._extras, **kwargs})

    def _log(self, level: int, message: str, /, *args: object, **kwargs: object) -> None:
        exc_info = bool(kwargs.pop("exc_info", False))
        caller = sys._getframe(2)
        module = caller.f_globals.get("__name__", ROOT_NAME)
        target = logging.getLogger(module if module.startswith(ROOT_NAME) else ROOT_NAME)
        if not target.isEnabledFor(level):
            return
        record = target.makeRecord(
            target.name,
            level,
            caller.f_code.co_filename,
            caller.f_lineno,
            _render(message, args, kwargs),
            (),
            sys.exc_info() if exc_info else None,
            func=caller.f_code.co_name,
            extra={**self._extras, "extras": self._extras},
        )
        target.handle(record)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(TRACE, message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, message, *args, **kwargs)


def context_of(record: Any) -> dict[str, object]:
    """Bound context carried by a record emitted through BoundLogger."""
    return dict(getattr(record, "extras", {}))


logger = BoundLogger()

_root.setLevel(TRACE)
_root.propagate = False
_root.addHandler(logging.NullHandler())
