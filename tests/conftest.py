from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping

import pytest

from fleetward.api.errors import ExecutionError
from fleetward.api.model import (
    CreationParams,
    DesiredState,
    MachineId,
    MachineSpec,
    ObservedState,
    Operation,
    TransitionInput,
)
from fleetward.policy import SETTLES_IN

PARAMS = CreationParams(vcpu=1, disk="5G", mem="1G")


class RecordingExecutor:
    """Executor double: records calls, tracks concurrency, fails on demand."""

    def __init__(
        self,
        *,
        fail: Iterable[MachineId] = (),
        crash: Iterable[MachineId] = (),
        delay: float = 0.0,
    ) -> None:
        self.fail = set(fail)
        self.crash = set(crash)
        self.delay = delay
        self.calls: list[tuple[MachineId, Operation]] = []
        self.timeline: list[tuple[str, MachineId, Operation]] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, machine: MachineSpec, operation: Operation) -> str:
        self.calls.append((machine.id, operation))
        self.timeline.append(("start", machine.id, operation))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.timeline.append(("end", machine.id, operation))
        if machine.id in self.crash:
            raise ConnectionResetError("control plane went away")
        if machine.id in self.fail:
            raise ExecutionError(machine.id, operation, "boom", returncode=2)
        return f"{operation} {machine.name}: ok"


class FakeHost:
    """In-memory platform: executes operations and reports the resulting states."""

    def __init__(
        self,
        states: Mapping[MachineId, ObservedState],
        *,
        fail_once: Iterable[MachineId] = (),
    ) -> None:
        self.states = dict(states)
        self.fail_once = set(fail_once)
        self.calls: list[tuple[MachineId, Operation]] = []
        self.observations = 0

    async def execute(self, machine: MachineSpec, operation: Operation) -> str:
        self.calls.append((machine.id, operation))
        if machine.id in self.fail_once:
            self.fail_once.discard(machine.id)
            raise ExecutionError(machine.id, operation, "transient failure", returncode=1)
        self.states[machine.id] = SETTLES_IN[operation]
        return ""

    async def observe(self, fleet: Mapping[MachineId, MachineSpec]) -> dict[MachineId, ObservedState]:
        self.observations += 1
        return {mid: self.states.get(mid, ObservedState.NOT_EXIST) for mid in fleet}


@pytest.fixture
def machine() -> Callable[..., MachineSpec]:
    def _make(
        mid: str = "10.0.0.1",
        state: DesiredState | str = DesiredState.RUNNING,
        params: CreationParams | None = PARAMS,
        name: str = "",
    ) -> MachineSpec:
        return MachineSpec(id=mid, state=state, params=params, name=name)

    return _make


@pytest.fixture
def transition(machine: Callable[..., MachineSpec]) -> Callable[..., TransitionInput]:
    def _make(
        mid: str,
        desired: DesiredState | str,
        observed: ObservedState | str,
        params: CreationParams | None = PARAMS,
    ) -> TransitionInput:
        return TransitionInput(machine=machine(mid, desired, params), observed=observed)

    return _make


@pytest.fixture
def make_executor() -> type[RecordingExecutor]:
    return RecordingExecutor


@pytest.fixture
def make_host() -> type[FakeHost]:
    return FakeHost
