"""Executor adapter that runs lifecycle operations through the multipass CLI."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from fleetward.api.errors import ExecutionError
from fleetward.api.model import MachineSpec, Operation
from fleetward.observability.logger import logger
from fleetward.providers.multipass.cli import CommandError, run
from fleetward.providers.multipass.config import Multipass

log = logger.bind(provider="multipass")


def launch_args(machine: MachineSpec, cloud_init: str | None = None) -> list[str]:
    """Arguments for ``multipass launch`` built from the machine's creation template."""
    params = machine.params
    if params is None:
        raise ValueError(f"{machine.id} has no creation parameters")

    args = [
        "launch",
        "--cpus", str(params.vcpu),
        "--disk", params.disk,
        "--memory", params.mem,
        "--name", machine.name,
    ]
    if cloud_init:
        args += ["--cloud-init", cloud_init]
    for net in params.networks:
        args += ["--network", net.as_arg()]
    return args


def command_args(machine: MachineSpec, operation: Operation) -> list[str]:
    """Arguments for every operation except launch: ``multipass <verb> <name>``."""
    if operation is Operation.LAUNCH:
        raise ValueError("launch arguments come from launch_args")
    return [operation.value, machine.name]


class MultipassExecutor:
    def __init__(self, config: Multipass | None = None) -> None:
        self._config = config or Multipass()

    @property
    def config(self) -> Multipass:
        return self._config

    async def execute(self, machine: MachineSpec, operation: Operation) -> str:
        try:
            match operation:
                case Operation.LAUNCH:
                    return await self._launch(machine)
                case _:
                    return await self._run(*command_args(machine, operation))
        except CommandError as e:
            raise ExecutionError(
                machine.id, operation, e.stderr, returncode=e.returncode,
            ) from e

    async def _run(self, *args: str) -> str:
        log.debug("{binary} {args}", binary=self._config.binary, args=" ".join(args))
        return await run(self._config.binary, *args, timeout=self._config.timeout)

    async def _launch(self, machine: MachineSpec) -> str:
        if machine.params is None:
            raise ExecutionError(machine.id, Operation.LAUNCH, "no creation parameters")

        payload = machine.params.cloud_init
        if not payload:
            return await self._run(*launch_args(machine))

        with tempfile.TemporaryDirectory(dir=self._config.workdir) as tmpdir:
            path = Path(tmpdir, f"cloud-init-{machine.name}.yaml")
            await asyncio.to_thread(path.write_text, payload)
            log.debug("Wrote cloud-init for {vm} to {path}", vm=machine.name, path=path)
            return await self._run(*launch_args(machine, str(path)))
