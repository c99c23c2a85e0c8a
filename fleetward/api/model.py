"""State model: the vocabulary every other module speaks.

Desired and observed states are read-only snapshots taken before a pass;
nothing here carries behavior beyond construction and validation.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, Self

from fleetward.api.errors import InvalidState
from fleetward.constants import DEFAULT_NAME_PREFIX

type MachineId = str
type NetworkMode = Literal["auto", "manual"]

_NETWORK_MODES: frozenset[str] = frozenset({"auto", "manual"})
_VM_NAME = re.compile(r"^[A-Za-z](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")
_SIZE = re.compile(r"^\d+(?:\.\d+)?(?:[KMGT]i?B?|B)?$", re.IGNORECASE)


class _ParsableState(StrEnum):
    @classmethod
    def parse(cls, value: str | Self, *, machine_id: MachineId | None = None) -> Self:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidState(
                f"{cls.__name__} must be a string, got {type(value).__name__}",
                machine_id=machine_id,
            )
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidState(
                f"unknown {cls.__name__} '{value}'. Valid: {valid}",
                machine_id=machine_id,
            ) from None


class DesiredState(_ParsableState):
    """Declared target lifecycle state."""

    RUNNING = "running"
    SUSPENDED = "suspended"
    STOPPED = "stopped"
    DELETED = "deleted"


class ObservedState(_ParsableState):
    """Current lifecycle state as reported by discovery.

    NOT_EXIST means the machine was never created. DELETED means the
    platform still retains it and it can be recovered until purged.
    """

    NOT_EXIST = "not_exist"
    DELETED = "deleted"
    STOPPED = "stopped"
    SUSPENDED = "suspended"
    RUNNING = "running"


class Operation(StrEnum):
    """Lifecycle operations, declared in dispatch phase order."""

    LAUNCH = "launch"
    RECOVER = "recover"
    START = "start"
    SUSPEND = "suspend"
    STOP = "stop"
    DELETE = "delete"

    @property
    def phase(self) -> int:
        return _PHASES[self]


_PHASES: dict[Operation, int] = {op: i for i, op in enumerate(Operation)}


@dataclass(frozen=True, slots=True)
class NetworkAttachment:
    """A network the machine is attached to at launch."""

    name: str
    mode: NetworkMode = "auto"

    def __post_init__(self) -> None:
        name = self.name.strip() if isinstance(self.name, str) else ""
        if not name:
            raise InvalidState("network name must be a non-empty string")
        mode = str(self.mode).strip().lower()
        if mode not in _NETWORK_MODES:
            raise InvalidState(f"network mode must be auto or manual, got '{self.mode}'")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "mode", mode)

    def as_arg(self) -> str:
        return f"name={self.name},mode={self.mode}"


@dataclass(frozen=True, slots=True)
class CreationParams:
    """Launch-time template for a machine. Immutable once the machine exists.

    Args:
        vcpu: Number of virtual CPUs.
        disk: Disk size, e.g. "10G".
        mem: Memory size, e.g. "2G".
        networks: Extra network attachments.
        cloud_init: Optional cloud-init payload (YAML text).
    """

    vcpu: int
    disk: str
    mem: str
    networks: tuple[NetworkAttachment, ...] = ()
    cloud_init: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.vcpu, bool) or not isinstance(self.vcpu, int) or self.vcpu < 1:
            raise InvalidState(f"vcpu must be a positive integer, got {self.vcpu!r}")
        for attr in ("disk", "mem"):
            value = str(getattr(self, attr)).strip()
            if not _SIZE.match(value):
                raise InvalidState(f"{attr} must be a size like '10G', got {value!r}")
            object.__setattr__(self, attr, value)
        object.__setattr__(self, "networks", networks_from(self.networks))


@dataclass(frozen=True, slots=True)
class MachineSpec:
    """One declared fleet member.

    The name is what the VM is called on the host; when omitted it is
    derived from the machine id, so ``10.0.0.5`` becomes ``vm-10-0-0-5``.
    """

    id: MachineId
    state: DesiredState
    params: CreationParams | None = None
    name: str = ""
    name_prefix: str = field(default=DEFAULT_NAME_PREFIX, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise InvalidState("machine id must be a non-empty string")
        object.__setattr__(self, "state", DesiredState.parse(self.state, machine_id=self.id))
        name = self.name or _derive_name(self.name_prefix, self.id)
        if not _VM_NAME.match(name):
            raise InvalidState(f"'{name}' is not a valid instance name", machine_id=self.id)
        object.__setattr__(self, "name", name)


def _derive_name(prefix: str, machine_id: MachineId) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", machine_id).strip("-")
    return f"{prefix}-{slug}" if prefix else slug


@dataclass(frozen=True, slots=True)
class TransitionInput:
    """A machine's declaration paired with its observed state for one pass."""

    machine: MachineSpec
    observed: ObservedState

    def __post_init__(self) -> None:
        observed = ObservedState.parse(self.observed, machine_id=self.machine.id)
        object.__setattr__(self, "observed", observed)
        if (
            observed is ObservedState.NOT_EXIST
            and self.machine.state is not DesiredState.DELETED
            and self.machine.params is None
        ):
            raise InvalidState(
                "creation parameters are required to launch a missing machine",
                machine_id=self.machine.id,
            )

    @property
    def id(self) -> MachineId:
        return self.machine.id

    @property
    def desired(self) -> DesiredState:
        return self.machine.state


def networks_from(raw: Sequence[NetworkAttachment | dict[str, str]]) -> tuple[NetworkAttachment, ...]:
    result: list[NetworkAttachment] = []
    for entry in raw:
        match entry:
            case NetworkAttachment():
                result.append(entry)
            case {"name": str() as name, **rest}:
                result.append(NetworkAttachment(name=name, mode=rest.get("mode", "auto")))
            case _:
                raise InvalidState(f"network attachment needs a name, got {entry!r}")
    return tuple(result)


def shared_names(machines: Iterable[MachineSpec]) -> dict[str, list[MachineId]]:
    """Instance names claimed by more than one machine, with the ids claiming them.

    Derived names are lossy (``10.0.0.5`` and ``10-0-0-5`` both become
    ``vm-10-0-0-5``), so uniqueness of ids does not imply uniqueness of names.
    """
    by_name: dict[str, list[MachineId]] = {}
    for machine in machines:
        by_name.setdefault(machine.name, []).append(machine.id)
    return {name: ids for name, ids in by_name.items() if len(ids) > 1}
