"""Observed-state discovery from ``multipass list --format json``.

Instances in a transitional state are polled until they settle so that a
pass never decides against a machine that is halfway through starting or
suspending. Instances in a state multipass cannot report (``Unknown``) are
left out of the snapshot, which makes the reconciler reject them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from fleetward.api.model import MachineId, MachineSpec, ObservedState, shared_names
from fleetward.observability.logger import logger
from fleetward.providers.multipass.cli import run_json
from fleetward.providers.multipass.config import Multipass

log = logger.bind(provider="multipass", component="discovery")

STATE_MAP: dict[str, ObservedState] = {
    "running": ObservedState.RUNNING,
    "stopped": ObservedState.STOPPED,
    "suspended": ObservedState.SUSPENDED,
    "deleted": ObservedState.DELETED,
}

TRANSITIONAL: frozenset[str] = frozenset({
    "starting",
    "restarting",
    "suspending",
    "delayed shutdown",
})


class _UnsettledError(Exception):
    """Some fleet instances are still transitioning - retry."""

    def __init__(self, pending: dict[str, str]) -> None:
        self.pending = pending
        super().__init__(", ".join(f"{n}={s}" for n, s in pending.items()))


def parse_list(
    payload: Mapping[str, Any],
    fleet: Mapping[MachineId, MachineSpec],
) -> tuple[dict[MachineId, ObservedState], dict[str, str]]:
    """Map a ``multipass list`` payload onto fleet machine ids.

    Returns:
        The observed state per machine id, and the instances (name → raw
        state) that are still transitioning. Fleet members multipass does
        not list are NOT_EXIST. Machines sharing an instance name are left
        out, since one listing entry cannot be attributed to either.
    """
    clashes = shared_names(fleet.values())
    for name, ids in clashes.items():
        log.warning("{vm} is claimed by {ids}; leaving them out", vm=name, ids=", ".join(ids))
    by_name = {m.name: mid for mid, m in fleet.items() if m.name not in clashes}
    observed: dict[MachineId, ObservedState] = {
        mid: ObservedState.NOT_EXIST for mid, m in fleet.items() if m.name not in clashes
    }
    pending: dict[str, str] = {}

    for entry in payload.get("list", []):
        name = entry.get("name", "")
        mid = by_name.get(name)
        if mid is None:
            continue
        raw = str(entry.get("state", "")).strip()
        key = raw.lower()
        if key in STATE_MAP:
            observed[mid] = STATE_MAP[key]
        elif key in TRANSITIONAL:
            pending[name] = raw
            del observed[mid]
        else:
            log.warning("{vm} reports state '{raw}'; leaving it out", vm=name, raw=raw)
            del observed[mid]

    return observed, pending


class MultipassDiscovery:
    def __init__(self, config: Multipass | None = None) -> None:
        self._config = config or Multipass()

    async def list_instances(self) -> dict[str, Any]:
        return await run_json(
            self._config.binary, "list", "--format", "json", timeout=self._config.timeout,
        )

    async def observe(
        self, fleet: Mapping[MachineId, MachineSpec],
    ) -> dict[MachineId, ObservedState]:
        """Snapshot the observed state of every fleet member.

        Raises:
            TimeoutError: Instances were still transitioning after
                ``settle_timeout`` seconds.
            CommandError: ``multipass list`` itself failed.
        """
        config = self._config

        @retry(
            stop=stop_after_delay(config.settle_timeout),
            wait=wait_fixed(config.settle_interval),
            retry=retry_if_exception_type(_UnsettledError),
        )
        async def _settled() -> dict[MachineId, ObservedState]:
            observed, pending = parse_list(await self.list_instances(), fleet)
            if pending:
                log.debug("Waiting for instances to settle: {pending}", pending=pending)
                raise _UnsettledError(pending)
            return observed

        try:
            observed = await _settled()
        except RetryError as e:
            last = e.last_attempt.exception()
            raise TimeoutError(
                f"instances did not settle within {config.settle_timeout:.0f}s: {last}"
            ) from e

        log.info(
            "Observed {n} machines: {states}",
            n=len(observed), states={mid: s.value for mid, s in observed.items()},
        )
        return observed
