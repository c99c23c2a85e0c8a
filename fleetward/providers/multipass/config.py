from __future__ import annotations

from dataclasses import dataclass

from fleetward.constants import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_MULTIPASS_BINARY,
    DEFAULT_SETTLE_INTERVAL,
    DEFAULT_SETTLE_TIMEOUT,
)


@dataclass(frozen=True, slots=True)
class Multipass:
    """Multipass host configuration.

    Args:
        binary: The multipass CLI to invoke.
        timeout: Per-command timeout in seconds. A command that exceeds it
            is killed and reported as failed.
        settle_timeout: How long discovery waits for instances in a
            transitional state (starting, suspending, ...) to settle.
        settle_interval: Poll interval while waiting to settle.
        workdir: Where cloud-init payloads are written before launch. The
            multipass daemon must be able to read it; snap installs cannot
            read the system temp dir, so point this under the home dir.

    Example:
        >>> executor = MultipassExecutor(Multipass(timeout=300))
    """

    binary: str = DEFAULT_MULTIPASS_BINARY
    timeout: float = DEFAULT_COMMAND_TIMEOUT
    settle_timeout: float = DEFAULT_SETTLE_TIMEOUT
    settle_interval: float = DEFAULT_SETTLE_INTERVAL
    workdir: str | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.settle_interval <= 0:
            raise ValueError(f"settle_interval must be > 0, got {self.settle_interval}")
