"""Logging and report rendering."""

from fleetward.observability.logger import BoundLogger, logger
from fleetward.observability.logging import LogConfig, setup_logging, teardown_logging

__all__ = [
    "BoundLogger",
    "LogConfig",
    "logger",
    "setup_logging",
    "teardown_logging",
]
