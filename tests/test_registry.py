"""Tests for registry.py: install state and coexisting modifications."""

from __future__ import annotations

from pathlib import Path

import pytest

from pvemod.core import ModConfig
from pvemod.patcher import AnchoredPatcher
from pvemod.registry import InstallState, ModificationRegistry
from pvemod.targets import build_targets
from tests._hostfiles import SENSORS_NODES_PM_LINE


@pytest.fixture
def registry(config: ModConfig) -> ModificationRegistry:
    return ModificationRegistry(build_targets(config), AnchoredPatcher())


def _append(path: Path, text: str) -> None:
    path.write_text(path.read_text() + text)


class TestCurrentState:
    def test_pristine_files(self, registry: ModificationRegistry) -> None:
        states = registry.current_state("nvidia-gpu")
        assert len(states) == 2
        assert set(states.values()) == {InstallState.NOT_INSTALLED}
        assert not registry.is_installed("nvidia-gpu")
        assert not registry.is_fully_installed("nvidia-gpu")

    def test_partially_installed(self, registry: ModificationRegistry, host_files: tuple[Path, Path]) -> None:
        nodes_pm, _js = host_files
        _append(nodes_pm, "$res->{nvidiaGpuOutput} = '';\n")
        states = {t.key: s for t, s in registry.current_state("nvidia-gpu").items()}
        assert states == {"Nodes.pm": InstallState.INSTALLED, "pvemanagerlib.js": InstallState.NOT_INSTALLED}
        assert registry.is_installed("nvidia-gpu")
        assert not registry.is_fully_installed("nvidia-gpu")
        assert [t.key for t in registry.installed_targets("nvidia-gpu")] == ["Nodes.pm"]

    def test_unknown_modification(self, registry: ModificationRegistry) -> None:
        with pytest.raises(KeyError, match="Unknown modification"):
            registry.current_state("nope")

    def test_missing_target_raises(self, registry: ModificationRegistry, host_files: tuple[Path, Path]) -> None:
        host_files[1].unlink()
        with pytest.raises(FileNotFoundError):
            registry.current_state("nvidia-gpu")


class TestCoexistingModifications:
    def test_none_in_pristine_file(self, registry: ModificationRegistry) -> None:
        for target in registry.targets:
            assert registry.coexisting_modifications(target, "nvidia-gpu") == set()

    def test_detects_other_marker(self, registry: ModificationRegistry, host_files: tuple[Path, Path]) -> None:
        nodes_pm, _js = host_files
        _append(nodes_pm, "$res->{nvidiaGpuOutput} = '';\n" + SENSORS_NODES_PM_LINE)
        nodes_target = registry.targets[0]
        assert registry.coexisting_modifications(nodes_target, "nvidia-gpu") == {"pve-mod-gui-sensors"}
        assert registry.coexisting_modifications(nodes_target, "pve-mod-gui-sensors") == {"nvidia-gpu"}

    def test_extra_markers_from_config(self, config: ModConfig, host_files: tuple[Path, Path]) -> None:
        registry = ModificationRegistry(
            build_targets(config),
            AnchoredPatcher(),
            extra_markers={"pve-mod-roc-fan": "rocTempOutput", "nvidia-gpu": "ignored"},
        )
        assert registry.get("nvidia-gpu").marker == "nvidiaGpuOutput"
        _append(host_files[0], "$res->{rocTempOutput} = '';\n")
        assert registry.coexisting_modifications(registry.targets[0], "nvidia-gpu") == {"pve-mod-roc-fan"}
