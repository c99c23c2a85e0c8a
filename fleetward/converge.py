"""Caller-level convergence loop.

A single reconciliation pass never retries and some transitions need more
than one pass (stopped → suspended is Start now, Suspend later). This
module re-observes and re-reconciles until a pass has nothing left to do:

    reports = await converge(fleet, MultipassDiscovery(), reconciler)
    if reports[-1].converged:
        ...

A pass that still changed or failed something triggers another pass after
``interval`` seconds, up to ``max_passes``. The final pass of a successful
run is the one that reports every machine Unchanged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from fleetward.api.executor import StateDiscovery
from fleetward.api.model import MachineId, MachineSpec
from fleetward.constants import DEFAULT_PASS_INTERVAL
from fleetward.observability.logger import logger
from fleetward.policy import MAX_PASSES
from fleetward.reconciler import Reconciler, Report

log = logger.bind(component="converge")

# Enough passes for the longest transition chain plus the pass that confirms it.
DEFAULT_MAX_PASSES = MAX_PASSES + 1


def _needs_another_pass(report: Report) -> bool:
    return bool(report.changed or report.failed)


def _last_report(state: RetryCallState) -> Report:
    assert state.outcome is not None
    return state.outcome.result()


async def converge(
    fleet: Mapping[MachineId, MachineSpec],
    discovery: StateDiscovery,
    reconciler: Reconciler,
    *,
    max_passes: int = DEFAULT_MAX_PASSES,
    interval: float = DEFAULT_PASS_INTERVAL,
    dry_run: bool = False,
    cancel: asyncio.Event | None = None,
) -> list[Report]:
    """Run passes until nothing changes or fails, or ``max_passes`` is reached.

    Args:
        fleet: Declared machines keyed by machine id.
        discovery: Re-queried before every pass.
        reconciler: Runs each pass.
        max_passes: Upper bound on passes, including the confirming one.
        interval: Seconds to wait between passes.
        dry_run: Plan a single pass without dispatching anything.
        cancel: Forwarded to every pass; once set no further pass starts.

    Returns:
        One report per pass, in order.

    Raises:
        PolicyViolation: Propagated from the pass that hit it.
    """
    if max_passes < 1:
        raise ValueError(f"max_passes must be >= 1, got {max_passes}")

    reports: list[Report] = []

    async def _pass() -> Report:
        observed = await discovery.observe(fleet)
        report = await reconciler.reconcile_fleet(fleet, observed, dry_run=dry_run, cancel=cancel)
        reports.append(report)
        log.info("Pass {n}: {summary}", n=len(reports), summary=report.summary())
        return report

    if dry_run:
        await _pass()
        return reports

    def _again(report: Report) -> bool:
        if cancel is not None and cancel.is_set():
            return False
        return _needs_another_pass(report)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_passes),
        wait=wait_fixed(interval),
        retry=retry_if_result(_again),
        retry_error_callback=_last_report,
    )
    await retrying(_pass)

    if not reports[-1].converged:
        log.warning(
            "Fleet not converged after {n} passes: failed={failed}, rejected={rejected}",
            n=len(reports), failed=reports[-1].failed, rejected=reports[-1].rejected,
        )
    return reports
