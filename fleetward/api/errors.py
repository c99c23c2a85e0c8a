"""Error taxonomy for a reconciliation pass.

- InvalidState: malformed input record, rejected before any dispatch.
- ExecutionError: the executor reported failure for a dispatched operation.
- PolicyViolation: the rule table matched more than one rule for a machine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fleetward.api.model import MachineId, Operation


class InvalidState(ValueError):
    """Input record cannot be reconciled."""

    def __init__(self, message: str, *, machine_id: MachineId | None = None) -> None:
        self.machine_id = machine_id
        prefix = f"{machine_id}: " if machine_id else ""
        super().__init__(f"{prefix}{message}")


class ExecutionError(RuntimeError):
    """An operation was dispatched and did not succeed."""

    def __init__(
        self,
        machine_id: MachineId,
        operation: Operation,
        details: str,
        *,
        returncode: int | None = None,
    ) -> None:
        self.machine_id = machine_id
        self.operation = operation
        self.details = details
        self.returncode = returncode
        code = f" (exit {returncode})" if returncode is not None else ""
        super().__init__(f"{operation} {machine_id} failed{code}: {details}")


class PolicyViolation(RuntimeError):
    """More than one transition rule matched a single machine."""
