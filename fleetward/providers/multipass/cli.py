from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any


class CommandError(RuntimeError):
    def __init__(self, argv: tuple[str, ...], returncode: int | None, stderr: str) -> None:
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        status = f"exit {returncode}" if returncode is not None else "no exit status"
        super().__init__(f"{' '.join(argv)} failed ({status}): {stderr}")


async def run(binary: str, *args: str, timeout: float | None = None) -> str:
    argv = (binary, *args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise CommandError(argv, None, f"{binary} not found") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise CommandError(argv, None, f"timed out after {timeout:.0f}s") from None

    if proc.returncode != 0:
        raise CommandError(argv, proc.returncode, stderr.decode(errors="replace").strip())
    return stdout.decode(errors="replace").strip()


async def run_json(binary: str, *args: str, timeout: float | None = None) -> Any:
    out = await run(binary, *args, timeout=timeout)
    return json.loads(out)
