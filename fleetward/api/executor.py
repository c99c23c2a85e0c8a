from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from fleetward.api.model import MachineId, MachineSpec, ObservedState, Operation


@runtime_checkable
class ExecutorAdapter(Protocol):
    """Boundary to the control plane that actually runs lifecycle operations.

    Implementations own their call timeout and must surface a failure
    rather than block forever. The reconciler never retries.
    """

    async def execute(self, machine: MachineSpec, operation: Operation) -> str:
        """Run one operation against one machine.

        Parameters
        ----------
        machine
            The declared machine. Launch reads its creation parameters;
            every operation addresses the host-side VM by ``machine.name``.
        operation
            The lifecycle operation to apply.

        Returns
        -------
        str
            Command output, kept for the report.

        Raises
        ------
        ExecutionError
            The control plane reported failure or the call timed out.
        """
        ...


@runtime_checkable
class StateDiscovery(Protocol):
    """Source of the observed-state snapshot consumed by a pass."""

    async def observe(
        self, fleet: Mapping[MachineId, MachineSpec],
    ) -> dict[MachineId, ObservedState]:
        """Return the observed state of every fleet member, keyed by machine id."""
        ...
