"""Tests for TOML fleet and settings resolution."""

from pathlib import Path

import pytest

from fleetward.api.errors import InvalidState
from fleetward.api.model import CreationParams, DesiredState, NetworkAttachment
from fleetward.config import (
    Settings,
    _deep_merge,
    load_config,
    resolve_fleet,
    resolve_settings,
)
from fleetward.converge import DEFAULT_MAX_PASSES
from fleetward.providers.multipass.config import Multipass

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def no_global(tmp_path: Path) -> Path:
    return tmp_path / "missing-defaults.toml"


class TestDeepMerge:
    def test_nested_override(self):
        base = {"multipass": {"timeout": 600, "binary": "multipass"}, "reconcile": {"max_workers": 8}}
        override = {"multipass": {"timeout": 60}}
        assert _deep_merge(base, override) == {
            "multipass": {"timeout": 60, "binary": "multipass"},
            "reconcile": {"max_workers": 8},
        }

    def test_does_not_mutate_inputs(self):
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_non_dict_replaces(self):
        assert _deep_merge({"machines": {"x": {}}}, {"machines": []}) == {"machines": []}


class TestLoadConfig:
    def test_missing_files_give_empty_sections(self, tmp_path, no_global):
        cfg = load_config(project_dir=tmp_path, global_path=no_global)
        assert cfg == {"multipass": {}, "reconcile": {}, "logging": {}, "machines": {}}

    def test_project_overrides_global(self, tmp_path):
        global_path = _write(
            tmp_path / "home" / "defaults.toml",
            '[multipass]\ntimeout = 900\nbinary = "/snap/bin/multipass"\n',
        )
        project = tmp_path / "project"
        _write(project / "fleetward.toml", "[multipass]\ntimeout = 120\n")

        cfg = load_config(project_dir=project, global_path=global_path)
        assert cfg["multipass"] == {"timeout": 120, "binary": "/snap/bin/multipass"}


class TestResolveFleet:
    def test_table_keyed_by_ip(self, tmp_path, no_global):
        _write(tmp_path / "fleetward.toml", """
[machines."192.168.64.10"]
state = "running"
vcpu = 2
disk = "10G"
mem = "2G"
networks = [{ name = "en0", mode = "manual" }]

[machines."192.168.64.11"]
state = "deleted"
""")
        fleet = resolve_fleet(project_dir=tmp_path, global_path=no_global)

        assert list(fleet) == ["192.168.64.10", "192.168.64.11"]
        web = fleet["192.168.64.10"]
        assert web.state is DesiredState.RUNNING
        assert web.name == "vm-192-168-64-10"
        assert web.params == CreationParams(
            vcpu=2, disk="10G", mem="2G", networks=(NetworkAttachment("en0", "manual"),),
        )
        assert fleet["192.168.64.11"].params is None

    def test_array_of_tables_with_cloud_init_file(self, tmp_path, no_global):
        _write(tmp_path / "cloud-init" / "base.yaml", "#cloud-config\npackages: [nginx]\n")
        _write(tmp_path / "fleetward.toml", """
[[machines]]
static_ip = "10.0.0.5"
state = "suspended"
name = "edge"
vcpu = 1
disk = "5G"
mem = "1G"
cloud_init_file = "cloud-init/base.yaml"
""")
        fleet = resolve_fleet(project_dir=tmp_path, global_path=no_global)

        edge = fleet["10.0.0.5"]
        assert edge.name == "edge"
        assert edge.params.cloud_init == "#cloud-config\npackages: [nginx]\n"

    def test_name_prefix(self, tmp_path):
        cfg = {
            "multipass": {"name_prefix": "lab"},
            "machines": {"10.1.2.3": {"state": "stopped"}},
        }
        assert resolve_fleet(cfg, project_dir=tmp_path)["10.1.2.3"].name == "lab-10-1-2-3"

    def test_missing_state(self, tmp_path):
        with pytest.raises(InvalidState, match=r"10\.0\.0\.1: missing 'state'"):
            resolve_fleet({"machines": {"10.0.0.1": {"vcpu": 1}}}, project_dir=tmp_path)

    def test_partial_creation_params(self, tmp_path):
        cfg = {"machines": {"10.0.0.1": {"state": "running", "vcpu": 1, "disk": "5G"}}}
        with pytest.raises(InvalidState, match="creation parameters missing: mem"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_networks_without_params(self, tmp_path):
        cfg = {"machines": {"10.0.0.1": {"state": "running", "networks": [{"name": "en0"}]}}}
        with pytest.raises(InvalidState, match="without vcpu"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_both_cloud_init_sources(self, tmp_path):
        _write(tmp_path / "ci.yaml", "#cloud-config\n")
        entry = {
            "state": "running", "vcpu": 1, "disk": "5G", "mem": "1G",
            "cloud_init": "#cloud-config\n", "cloud_init_file": "ci.yaml",
        }
        with pytest.raises(InvalidState, match="either cloud_init or cloud_init_file"):
            resolve_fleet({"machines": {"10.0.0.1": entry}}, project_dir=tmp_path)

    def test_missing_cloud_init_file(self, tmp_path):
        entry = {"state": "running", "vcpu": 1, "disk": "5G", "mem": "1G", "cloud_init_file": "nope.yaml"}
        with pytest.raises(InvalidState, match="cloud-init file not found"):
            resolve_fleet({"machines": {"10.0.0.1": entry}}, project_dir=tmp_path)

    def test_bad_params_name_the_machine(self, tmp_path):
        entry = {"state": "running", "vcpu": 0, "disk": "5G", "mem": "1G"}
        with pytest.raises(InvalidState, match=r"^10\.0\.0\.1: vcpu"):
            resolve_fleet({"machines": {"10.0.0.1": entry}}, project_dir=tmp_path)

    def test_unknown_fields(self, tmp_path):
        cfg = {"machines": {"10.0.0.1": {"state": "running", "gpu": "a100"}}}
        with pytest.raises(InvalidState, match="unknown fields: gpu"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_duplicate_ip_in_array(self, tmp_path):
        cfg = {"machines": [
            {"static_ip": "10.0.0.1", "state": "running"},
            {"static_ip": "10.0.0.1", "state": "stopped"},
        ]}
        with pytest.raises(InvalidState, match="declared more than once"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_derived_names_must_be_unique(self, tmp_path):
        cfg = {"machines": {
            "10.0.0.5": {"state": "running"},
            "10-0-0-5": {"state": "deleted"},
        }}
        with pytest.raises(InvalidState, match=r"'vm-10-0-0-5' \(10\.0\.0\.5, 10-0-0-5\)"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_explicit_names_must_be_unique(self, tmp_path):
        cfg = {"machines": [
            {"static_ip": "10.0.0.1", "state": "running", "name": "web"},
            {"static_ip": "10.0.0.2", "state": "stopped", "name": "web"},
            {"static_ip": "10.0.0.3", "state": "stopped"},
        ]}
        with pytest.raises(InvalidState, match="instance names claimed by more than one machine: 'web'"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_explicit_name_may_not_shadow_a_derived_one(self, tmp_path):
        cfg = {"machines": {
            "10.0.0.1": {"state": "running"},
            "10.0.0.2": {"state": "running", "name": "vm-10-0-0-1"},
        }}
        with pytest.raises(InvalidState, match="vm-10-0-0-1"):
            resolve_fleet(cfg, project_dir=tmp_path)

    def test_array_entry_without_ip(self, tmp_path):
        with pytest.raises(InvalidState, match="static_ip"):
            resolve_fleet({"machines": [{"state": "running"}]}, project_dir=tmp_path)


class TestResolveSettings:
    def test_defaults(self, tmp_path, no_global):
        settings = resolve_settings(project_dir=tmp_path, global_path=no_global)
        assert settings == Settings()
        assert settings.max_passes == DEFAULT_MAX_PASSES

    def test_sections_map_to_settings(self, tmp_path, no_global):
        _write(tmp_path / "fleetward.toml", """
[multipass]
timeout = 300
name_prefix = "lab"
workdir = "/home/ops/.fleetward"

[reconcile]
max_workers = 2
interval = 5.0
dry_run = true

[logging]
level = "DEBUG"
console = true
file = ""
""")
        settings = resolve_settings(project_dir=tmp_path, global_path=no_global)

        assert settings.multipass == Multipass(timeout=300, workdir="/home/ops/.fleetward")
        assert settings.max_workers == 2
        assert settings.interval == 5.0
        assert settings.dry_run is True
        assert settings.logging.level == "DEBUG"
        assert settings.logging.console is True

    def test_unknown_reconcile_field(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown \\[reconcile\\] fields: parallel"):
            resolve_settings({"reconcile": {"parallel": 4}}, project_dir=tmp_path)

    def test_invalid_multipass_timeout(self, tmp_path):
        with pytest.raises(ValueError, match="timeout must be > 0"):
            resolve_settings({"multipass": {"timeout": 0}}, project_dir=tmp_path)
