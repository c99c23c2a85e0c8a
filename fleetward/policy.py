"""Transition policy: which single operation, if any, a machine needs.

The policy is an ordered rule table evaluated per machine. Rules are
written the way they read (desired/observed conditions, in priority
order) and then compiled into disjoint cells of the desired × observed
grid: each rule only keeps the cells that no higher-priority rule already
claimed. The compiled guards therefore partition the grid, and ``decide``
checks that at most one rule matches instead of relying on evaluation
order.

Priority, highest first:

1. Launch   desired != deleted, observed == not_exist
2. Recover  desired != deleted, observed == deleted
3. Start    desired == running, observed != running
4. Start    desired == suspended, observed == stopped
5. Suspend  desired == suspended, observed not in {suspended, stopped}
6. Stop     desired == stopped, observed != stopped
7. Delete   desired == deleted, observed not in {deleted, not_exist}

Rule 4 is the stopped → suspended quirk: the platform cannot suspend a
stopped machine, so the machine is started on this pass and suspended on
a later one, once it is observed running. Convergence takes two passes.
No compound operation is attempted and no reconfigure operation exists;
creation parameters are never compared against a running machine.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from itertools import product

from fleetward.api.errors import PolicyViolation
from fleetward.api.model import (
    DesiredState,
    MachineId,
    ObservedState,
    Operation,
    TransitionInput,
)

type Cell = tuple[DesiredState, ObservedState]
type Condition = Callable[[DesiredState, ObservedState], bool]

D = DesiredState
O = ObservedState

GRID: tuple[Cell, ...] = tuple(product(DesiredState, ObservedState))


@dataclass(frozen=True, slots=True)
class Rule:
    priority: int
    operation: Operation
    cells: frozenset[Cell]
    rationale: str = ""

    def matches(self, desired: DesiredState, observed: ObservedState) -> bool:
        return (desired, observed) in self.cells


def compile_rules(
    table: Sequence[tuple[Operation, Condition, str]],
) -> tuple[Rule, ...]:
    """Turn an ordered (operation, condition, rationale) table into disjoint rules."""
    claimed: set[Cell] = set()
    rules: list[Rule] = []
    for priority, (operation, condition, rationale) in enumerate(table, start=1):
        cells = frozenset(c for c in GRID if condition(*c)) - claimed
        claimed |= cells
        rules.append(Rule(priority, operation, cells, rationale))
    return tuple(rules)


RULES: tuple[Rule, ...] = compile_rules([
    (
        Operation.LAUNCH,
        lambda d, o: d is not D.DELETED and o is O.NOT_EXIST,
        "must exist before any other transition applies",
    ),
    (
        Operation.RECOVER,
        lambda d, o: d is not D.DELETED and o is O.DELETED,
        "undelete before further shaping",
    ),
    (
        Operation.START,
        lambda d, o: d is D.RUNNING and o is not O.RUNNING,
        "bring to running",
    ),
    (
        Operation.START,
        lambda d, o: d is D.SUSPENDED and o is O.STOPPED,
        "cannot suspend from stopped; start now, suspend next pass",
    ),
    (
        Operation.SUSPEND,
        lambda d, o: d is D.SUSPENDED and o not in (O.SUSPENDED, O.STOPPED),
        "direct suspend when not stopped",
    ),
    (
        Operation.STOP,
        lambda d, o: d is D.STOPPED and o is not O.STOPPED,
        "bring to stopped",
    ),
    (
        Operation.DELETE,
        lambda d, o: d is D.DELETED and o not in (O.DELETED, O.NOT_EXIST),
        "reclaim",
    ),
])


def matching_rules(
    desired: DesiredState,
    observed: ObservedState,
    rules: Iterable[Rule] = RULES,
) -> list[Rule]:
    return [r for r in rules if r.matches(desired, observed)]


def decide(
    desired: DesiredState,
    observed: ObservedState,
    rules: Sequence[Rule] = RULES,
) -> Operation | None:
    """Return the operation that moves ``observed`` towards ``desired``.

    Returns None when the machine has already converged. Total over the
    enumerated states and free of side effects.

    Raises:
        PolicyViolation: More than one rule matched. Unreachable with the
            shipped table; signals an unsound custom table.
    """
    match matching_rules(desired, observed, rules):
        case []:
            return None
        case [rule]:
            return rule.operation
        case several:
            names = ", ".join(f"#{r.priority} {r.operation}" for r in several)
            raise PolicyViolation(
                f"{len(several)} rules matched desired={desired} observed={observed}: {names}"
            )


def plan(inputs: Iterable[TransitionInput]) -> dict[MachineId, Operation | None]:
    return {item.id: decide(item.desired, item.observed) for item in inputs}


# Observed state the platform settles in once an operation succeeds.
# Recovered machines come back stopped.
SETTLES_IN: dict[Operation, ObservedState] = {
    Operation.LAUNCH: O.RUNNING,
    Operation.RECOVER: O.STOPPED,
    Operation.START: O.RUNNING,
    Operation.SUSPEND: O.SUSPENDED,
    Operation.STOP: O.STOPPED,
    Operation.DELETE: O.DELETED,
}


def passes_to_converge(
    desired: DesiredState,
    observed: ObservedState,
    *,
    limit: int = 10,
) -> int:
    """Count the passes needed to converge, assuming every operation succeeds."""
    for passes in range(limit + 1):
        op = decide(desired, observed)
        if op is None:
            return passes
        observed = SETTLES_IN[op]
    raise PolicyViolation(f"desired={desired} does not converge from {observed}")


def converges_in_one_pass(desired: DesiredState, observed: ObservedState) -> bool:
    return passes_to_converge(desired, observed) <= 1


MAX_PASSES: int = max(passes_to_converge(d, o) for d, o in GRID)
