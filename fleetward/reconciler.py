"""Reconciliation engine: one pass of policy plus dispatch over a fleet.

Operations are dispatched in phase groups following ``Operation`` order:
every Launch across the fleet completes (success or failure) before any
Recover starts, and so on down to Delete. Within a group dispatches run
concurrently, capped at ``max_workers``. A machine's failure is recorded
and never aborts the pass; only a PolicyViolation does.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from fleetward.api.errors import ExecutionError, InvalidState
from fleetward.api.executor import ExecutorAdapter
from fleetward.api.model import (
    MachineId,
    MachineSpec,
    ObservedState,
    Operation,
    TransitionInput,
    shared_names,
)
from fleetward.constants import DEFAULT_MAX_WORKERS
from fleetward.observability.logger import logger
from fleetward.policy import decide

log = logger.bind(component="reconciler")


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True, slots=True)
class Unchanged:
    """Already converged; nothing dispatched."""


@dataclass(frozen=True, slots=True)
class WouldChange:
    """Dry run: the operation that a real run would dispatch."""

    operation: Operation


@dataclass(frozen=True, slots=True)
class Changed:
    operation: Operation
    output: str = ""


@dataclass(frozen=True, slots=True)
class Failed:
    operation: Operation
    details: str


@dataclass(frozen=True, slots=True)
class Rejected:
    """Input record was invalid; nothing decided, nothing dispatched."""

    details: str


@dataclass(frozen=True, slots=True)
class Cancelled:
    """The pass was cancelled before this machine's group started."""

    operation: Operation


type Outcome = Unchanged | WouldChange | Changed | Failed | Rejected | Cancelled


@dataclass(frozen=True, slots=True)
class Report:
    """Per-machine outcomes of one reconciliation pass, in input order."""

    outcomes: Mapping[MachineId, Outcome]
    dry_run: bool = False

    def operations(self) -> dict[MachineId, Operation]:
        """The operation computed for each machine that needed one."""
        ops: dict[MachineId, Operation] = {}
        for mid, outcome in self.outcomes.items():
            match outcome:
                case (
                    WouldChange(operation=op)
                    | Changed(operation=op)
                    | Failed(operation=op)
                    | Cancelled(operation=op)
                ):
                    ops[mid] = op
        return ops

    def _ids(self, kind: type) -> list[MachineId]:
        return [mid for mid, o in self.outcomes.items() if isinstance(o, kind)]

    @property
    def unchanged(self) -> list[MachineId]:
        return self._ids(Unchanged)

    @property
    def changed(self) -> list[MachineId]:
        return self._ids(Changed)

    @property
    def failed(self) -> list[MachineId]:
        return self._ids(Failed)

    @property
    def rejected(self) -> list[MachineId]:
        return self._ids(Rejected)

    @property
    def cancelled(self) -> list[MachineId]:
        return self._ids(Cancelled)

    @property
    def converged(self) -> bool:
        """Every machine already matched its desired state."""
        return all(isinstance(o, Unchanged) for o in self.outcomes.values())

    @property
    def ok(self) -> bool:
        """No machine failed, was rejected, or was left undispatched by cancellation."""
        return not any(
            isinstance(o, Failed | Rejected | Cancelled) for o in self.outcomes.values()
        )

    def summary(self) -> dict[str, int]:
        return dict(Counter(type(o).__name__ for o in self.outcomes.values()))


# =============================================================================
# Snapshot
# =============================================================================


def snapshot(
    fleet: Mapping[MachineId, MachineSpec],
    observed: Mapping[MachineId, ObservedState | str],
) -> tuple[list[TransitionInput], dict[MachineId, InvalidState]]:
    """Join the declared fleet with an observed-state snapshot.

    Returns the valid transition inputs and, separately, the machines whose
    records could not be built. A fleet member missing from ``observed`` is
    rejected rather than assumed absent, so a partial discovery never
    turns into a Launch. Machines sharing an instance name are all
    rejected: their observations cannot be told apart.
    """
    inputs: list[TransitionInput] = []
    rejected: dict[MachineId, InvalidState] = {}
    clashes = shared_names(fleet.values())

    for mid, machine in fleet.items():
        if machine.name in clashes:
            rejected[mid] = _name_clash(machine.name, clashes[machine.name], mid)
            continue
        if mid not in observed:
            rejected[mid] = InvalidState("no observed state reported", machine_id=mid)
            continue
        try:
            inputs.append(TransitionInput(machine=machine, observed=observed[mid]))
        except InvalidState as e:
            rejected[mid] = e

    for mid in observed.keys() - fleet.keys():
        log.debug("Ignoring undeclared machine {mid}", mid=mid)

    return inputs, rejected


def _name_clash(name: str, ids: list[MachineId], mid: MachineId) -> InvalidState:
    others = ", ".join(i for i in ids if i != mid) or mid
    return InvalidState(f"instance name '{name}' is also claimed by {others}", machine_id=mid)


# =============================================================================
# Engine
# =============================================================================


@dataclass(slots=True)
class _Pass:
    dry_run: bool
    outcomes: dict[MachineId, Outcome] = field(default_factory=dict)
    groups: dict[Operation, list[TransitionInput]] = field(default_factory=dict)


class Reconciler:
    """Applies the transition policy across a fleet and dispatches operations.

    Example:
        reconciler = Reconciler(MultipassExecutor(Multipass()), max_workers=4)
        inputs, rejected = snapshot(fleet, observed)
        report = await reconciler.reconcile(inputs, rejected=rejected)
    """

    def __init__(self, executor: ExecutorAdapter, *, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._executor = executor
        self._max_workers = max_workers

    @property
    def max_workers(self) -> int:
        return self._max_workers

    async def reconcile(
        self,
        inputs: Iterable[TransitionInput],
        *,
        dry_run: bool = False,
        cancel: asyncio.Event | None = None,
        rejected: Mapping[MachineId, InvalidState] | None = None,
    ) -> Report:
        """Run one reconciliation pass.

        Args:
            inputs: One transition input per machine.
            dry_run: Decide only; report WouldChange and dispatch nothing.
            cancel: Checked before each phase group. Once set, groups that
                have not started are reported as Cancelled. Operations
                already handed to the executor are not rolled back.
            rejected: Machines whose input records were invalid, reported
                as Rejected.

        Raises:
            PolicyViolation: The rule table matched more than one rule.
        """
        state = _Pass(dry_run=dry_run)
        order: list[MachineId] = list(rejected or {})

        for mid, error in (rejected or {}).items():
            state.outcomes[mid] = Rejected(str(error))

        items = list(inputs)
        seen = Counter(item.id for item in items)
        clashes = shared_names(item.machine for item in items if seen[item.id] == 1)
        for item in items:
            if rejected and item.id in rejected:
                continue
            if item.id not in state.outcomes:
                order.append(item.id)
            if seen[item.id] > 1:
                state.outcomes[item.id] = Rejected(f"{item.id}: duplicate machine id in fleet")
                continue
            if (name := item.machine.name) in clashes:
                state.outcomes[item.id] = Rejected(str(_name_clash(name, clashes[name], item.id)))
                continue
            self._decide(state, item)

        log.info(
            "Pass planned: machines={n}, operations={ops}, dry_run={dry}",
            n=len(order),
            ops={op.value: len(g) for op, g in state.groups.items()},
            dry=dry_run,
        )

        if not dry_run:
            await self._dispatch_groups(state, cancel)

        report = Report({mid: state.outcomes[mid] for mid in order}, dry_run=dry_run)
        log.info("Pass finished: {summary}", summary=report.summary())
        return report

    def run(
        self,
        inputs: Iterable[TransitionInput],
        *,
        dry_run: bool = False,
        rejected: Mapping[MachineId, InvalidState] | None = None,
    ) -> Report:
        """Blocking wrapper around ``reconcile``."""
        return asyncio.run(self.reconcile(inputs, dry_run=dry_run, rejected=rejected))

    async def reconcile_fleet(
        self,
        fleet: Mapping[MachineId, MachineSpec],
        observed: Mapping[MachineId, ObservedState | str],
        *,
        dry_run: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> Report:
        inputs, rejected = snapshot(fleet, observed)
        return await self.reconcile(inputs, dry_run=dry_run, cancel=cancel, rejected=rejected)

    def _decide(self, state: _Pass, item: TransitionInput) -> None:
        op = decide(item.desired, item.observed)
        if op is None:
            state.outcomes[item.id] = Unchanged()
            return
        log.debug(
            "{mid}: desired={d} observed={o} -> {op}",
            mid=item.id, d=item.desired, o=item.observed, op=op,
        )
        if state.dry_run:
            state.outcomes[item.id] = WouldChange(op)
        state.groups.setdefault(op, []).append(item)

    async def _dispatch_groups(self, state: _Pass, cancel: asyncio.Event | None) -> None:
        limit = asyncio.Semaphore(self._max_workers)

        for op in Operation:
            group = state.groups.get(op)
            if not group:
                continue

            if cancel is not None and cancel.is_set():
                log.warning("Pass cancelled before {op} phase", op=op)
                for item in group:
                    state.outcomes[item.id] = Cancelled(op)
                continue

            log.info("Phase {op}: dispatching {n} machines", op=op, n=len(group))
            results = await asyncio.gather(*(self._dispatch(limit, item, op) for item in group))
            state.outcomes.update(results)

    async def _dispatch(
        self,
        limit: asyncio.Semaphore,
        item: TransitionInput,
        op: Operation,
    ) -> tuple[MachineId, Outcome]:
        mlog = log.bind(machine=item.id, vm=item.machine.name, operation=op.value)
        async with limit:
            mlog.debug("Executing")
            try:
                output = await self._executor.execute(item.machine, op)
            except ExecutionError as e:
                mlog.error("Failed: {details}", details=e.details)
                return item.id, Failed(op, e.details)
            except Exception as e:
                mlog.exception("Executor raised {kind}", kind=type(e).__name__)
                return item.id, Failed(op, f"{type(e).__name__}: {e}")
        mlog.info("Done")
        return item.id, Changed(op, output)
