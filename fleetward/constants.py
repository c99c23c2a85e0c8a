"""Centralized constants for fleetward.

Config paths, multipass defaults and reconciliation defaults live here so
the config layer and the providers agree on them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Final

# =============================================================================
# Configuration Files
# =============================================================================

GLOBAL_CONFIG_PATH: Final = Path.home() / ".fleetward" / "defaults.toml"
PROJECT_CONFIG_NAME: Final = "fleetward.toml"


# =============================================================================
# Multipass
# =============================================================================

DEFAULT_MULTIPASS_BINARY: Final = "multipass"
DEFAULT_NAME_PREFIX: Final = "vm"

# Timeouts (in seconds)
DEFAULT_COMMAND_TIMEOUT: Final = 600.0
DEFAULT_SETTLE_TIMEOUT: Final = 120.0
DEFAULT_SETTLE_INTERVAL: Final = 2.0


# =============================================================================
# Reconciliation
# =============================================================================

DEFAULT_MAX_WORKERS: Final = 8
DEFAULT_PASS_INTERVAL: Final = 2.0
