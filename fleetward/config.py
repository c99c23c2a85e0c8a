"""TOML-based fleet and settings configuration.

Loads ~/.fleetward/defaults.toml (global) and fleetward.toml (project),
merges them, and resolves the declared machines and runtime settings.

Example fleetward.toml::

    [multipass]
    timeout = 300

    [reconcile]
    max_workers = 4

    [machines."192.168.64.10"]
    state = "running"
    vcpu = 2
    disk = "10G"
    mem = "2G"
    networks = [{ name = "en0", mode = "manual" }]

Machines may also be declared as an array of tables keyed by
``static_ip``::

    [[machines]]
    static_ip = "192.168.64.11"
    state = "suspended"
    vcpu = 1
    disk = "5G"
    mem = "1G"
    cloud_init_file = "cloud-init/base.yaml"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fleetward.api.errors import InvalidState
from fleetward.api.model import (
    CreationParams,
    MachineId,
    MachineSpec,
    networks_from,
    shared_names,
)
from fleetward.constants import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_NAME_PREFIX,
    DEFAULT_PASS_INTERVAL,
    GLOBAL_CONFIG_PATH,
    PROJECT_CONFIG_NAME,
)
from fleetward.converge import DEFAULT_MAX_PASSES
from fleetward.observability.logging import LogConfig
from fleetward.providers.multipass.config import Multipass

type RawConfig = dict[str, Any]

_SECTIONS = ("multipass", "reconcile", "logging", "machines")
_PARAM_KEYS = ("vcpu", "disk", "mem")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    for section in _SECTIONS:
        merged.setdefault(section, {})
    return merged


# =============================================================================
# Machines
# =============================================================================


def _machine_entries(raw: dict[str, Any] | list[dict[str, Any]]) -> list[tuple[MachineId, RawConfig]]:
    match raw:
        case dict():
            return [(mid, dict(entry)) for mid, entry in raw.items()]
        case list():
            entries = []
            for entry in raw:
                entry = dict(entry)
                mid = entry.pop("static_ip", None)
                if not mid:
                    raise InvalidState(f"machine entry missing 'static_ip': {entry!r}")
                entries.append((mid, entry))
            return entries
        case _:
            raise InvalidState(f"'machines' must be a table or an array of tables, got {type(raw).__name__}")


def _build_params(mid: MachineId, raw: RawConfig, base_dir: Path) -> CreationParams | None:
    present = [k for k in _PARAM_KEYS if k in raw]
    if not present:
        if "networks" in raw or "cloud_init" in raw or "cloud_init_file" in raw:
            raise InvalidState("networks/cloud_init given without vcpu, disk and mem", machine_id=mid)
        return None
    missing = [k for k in _PARAM_KEYS if k not in raw]
    if missing:
        raise InvalidState(f"creation parameters missing: {', '.join(missing)}", machine_id=mid)

    cloud_init = raw.pop("cloud_init", None)
    if cloud_init_file := raw.pop("cloud_init_file", None):
        if cloud_init is not None:
            raise InvalidState("set either cloud_init or cloud_init_file, not both", machine_id=mid)
        path = base_dir / cloud_init_file
        if not path.is_file():
            raise InvalidState(f"cloud-init file not found: {path}", machine_id=mid)
        cloud_init = path.read_text()

    try:
        return CreationParams(
            vcpu=raw.pop("vcpu"),
            disk=raw.pop("disk"),
            mem=raw.pop("mem"),
            networks=networks_from(raw.pop("networks", [])),
            cloud_init=cloud_init,
        )
    except InvalidState as e:
        raise InvalidState(str(e), machine_id=mid) from None


def resolve_fleet(
    config: RawConfig | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> dict[MachineId, MachineSpec]:
    """Build the declared fleet, keyed by machine id (static IP).

    Raises:
        InvalidState: A machine entry is malformed, or two machines resolve
            to the same instance name.
    """
    if config is None:
        config = load_config(project_dir=project_dir, global_path=global_path)
    base_dir = project_dir or Path.cwd()
    prefix = config.get("multipass", {}).get("name_prefix", DEFAULT_NAME_PREFIX)

    fleet: dict[MachineId, MachineSpec] = {}
    for mid, raw in _machine_entries(config.get("machines", {})):
        if mid in fleet:
            raise InvalidState("declared more than once", machine_id=mid)
        state = raw.pop("state", None)
        if state is None:
            raise InvalidState("missing 'state' field", machine_id=mid)
        name = raw.pop("name", "")
        params = _build_params(mid, raw, base_dir)
        if raw:
            raise InvalidState(f"unknown fields: {', '.join(sorted(raw))}", machine_id=mid)
        fleet[mid] = MachineSpec(id=mid, state=state, params=params, name=name, name_prefix=prefix)

    if clashes := shared_names(fleet.values()):
        shared = "; ".join(f"'{n}' ({', '.join(ids)})" for n, ids in clashes.items())
        raise InvalidState(f"instance names claimed by more than one machine: {shared}")
    return fleet


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings for a reconciliation run."""

    multipass: Multipass = field(default_factory=Multipass)
    logging: LogConfig = field(default_factory=LogConfig)
    max_workers: int = DEFAULT_MAX_WORKERS
    max_passes: int = DEFAULT_MAX_PASSES
    interval: float = DEFAULT_PASS_INTERVAL
    dry_run: bool = False


def resolve_settings(
    config: RawConfig | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    if config is None:
        config = load_config(project_dir=project_dir, global_path=global_path)

    raw_multipass = dict(config.get("multipass", {}))
    raw_multipass.pop("name_prefix", None)
    reconcile = dict(config.get("reconcile", {}))

    unknown = reconcile.keys() - {"max_workers", "max_passes", "interval", "dry_run"}
    if unknown:
        raise ValueError(f"Unknown [reconcile] fields: {', '.join(sorted(unknown))}")

    return Settings(
        multipass=Multipass(**raw_multipass),
        logging=LogConfig(**config.get("logging", {})),
        **reconcile,
    )
