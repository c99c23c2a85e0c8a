"""Multipass backend: lifecycle operations and observed-state discovery."""

from fleetward.providers.multipass.cli import CommandError
from fleetward.providers.multipass.config import Multipass
from fleetward.providers.multipass.discovery import MultipassDiscovery
from fleetward.providers.multipass.executor import MultipassExecutor

__all__ = ["CommandError", "Multipass", "MultipassDiscovery", "MultipassExecutor"]
