"""fleetward - converge a declared fleet of virtual machines.

Example:

    import asyncio

    from fleetward import (
        Multipass,
        MultipassDiscovery,
        MultipassExecutor,
        Reconciler,
        converge,
        resolve_fleet,
        resolve_settings,
    )

    fleet = resolve_fleet()
    settings = resolve_settings()
    reconciler = Reconciler(
        MultipassExecutor(settings.multipass),
        max_workers=settings.max_workers,
    )

    reports = asyncio.run(
        converge(fleet, MultipassDiscovery(settings.multipass), reconciler)
    )
"""

from fleetward.api import (
    CreationParams,
    DesiredState,
    ExecutionError,
    ExecutorAdapter,
    InvalidState,
    MachineId,
    MachineSpec,
    NetworkAttachment,
    ObservedState,
    Operation,
    PolicyViolation,
    StateDiscovery,
    TransitionInput,
)
from fleetward.config import Settings, load_config, resolve_fleet, resolve_settings
from fleetward.converge import converge
from fleetward.observability import LogConfig, setup_logging, teardown_logging
from fleetward.observability.report import print_report, render_report
from fleetward.policy import RULES, decide, plan
from fleetward.providers.multipass import Multipass, MultipassDiscovery, MultipassExecutor
from fleetward.reconciler import (
    Cancelled,
    Changed,
    Failed,
    Outcome,
    Reconciler,
    Rejected,
    Report,
    Unchanged,
    WouldChange,
    snapshot,
)

__all__ = [
    # State model
    "CreationParams",
    "DesiredState",
    "MachineId",
    "MachineSpec",
    "NetworkAttachment",
    "ObservedState",
    "Operation",
    "TransitionInput",
    # Errors
    "ExecutionError",
    "InvalidState",
    "PolicyViolation",
    # Policy
    "RULES",
    "decide",
    "plan",
    # Engine
    "Cancelled",
    "Changed",
    "Failed",
    "Outcome",
    "Reconciler",
    "Rejected",
    "Report",
    "Unchanged",
    "WouldChange",
    "converge",
    "snapshot",
    # Collaborators
    "ExecutorAdapter",
    "Multipass",
    "MultipassDiscovery",
    "MultipassExecutor",
    "StateDiscovery",
    # Config & observability
    "LogConfig",
    "Settings",
    "load_config",
    "print_report",
    "render_report",
    "resolve_fleet",
    "resolve_settings",
    "setup_logging",
    "teardown_logging",
]
