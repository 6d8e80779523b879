"""Install state of known modifications, derived from file content alone.

Nothing is tracked outside the target files: a modification is installed in
a file exactly when its marker occurs there. Modifications applied by
sibling tools share the same files, and restoring a whole-file snapshot
reverts them too, so they are reported rather than worked around.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from pvemod.patcher import AnchoredPatcher
from pvemod.payload import MODIFICATION_NAME
from pvemod.targets import NODES_PM, PVEMANAGERLIB_JS, TargetFile

logger = logging.getLogger(__name__)


class InstallState(str, Enum):
    INSTALLED = "installed"
    NOT_INSTALLED = "not_installed"


@dataclass(frozen=True)
class ModificationMarker:
    name: str
    marker: str
    targets: frozenset[str] = frozenset({NODES_PM, PVEMANAGERLIB_JS})


NVIDIA_GPU = ModificationMarker(name=MODIFICATION_NAME, marker="nvidiaGpuOutput")
GUI_SENSORS = ModificationMarker(name="pve-mod-gui-sensors", marker="sensorsOutput")

BUILTIN_MODIFICATIONS: tuple[ModificationMarker, ...] = (NVIDIA_GPU, GUI_SENSORS)


class ModificationRegistry:
    """Answer "is X installed?" and "what else lives in this file?"."""

    def __init__(
        self,
        targets: Iterable[TargetFile],
        patcher: AnchoredPatcher,
        *,
        extra_markers: Mapping[str, str] | None = None,
    ) -> None:
        self.targets = list(targets)
        self.patcher = patcher
        self._known: dict[str, ModificationMarker] = {m.name: m for m in BUILTIN_MODIFICATIONS}
        for name, marker in (extra_markers or {}).items():
            if name in self._known:
                logger.warning("Ignoring extra marker for built-in modification %s", name)
                continue
            self._known[name] = ModificationMarker(name=name, marker=marker)

    @property
    def known(self) -> list[ModificationMarker]:
        return list(self._known.values())

    def get(self, name: str) -> ModificationMarker:
        try:
            return self._known[name]
        except KeyError:
            raise KeyError(f"Unknown modification: {name}") from None

    def current_state(self, name: str) -> dict[TargetFile, InstallState]:
        """Per-target install state of *name*. Unreadable targets raise ``OSError``."""
        mod = self.get(name)
        states: dict[TargetFile, InstallState] = {}
        for target in self.targets:
            if target.key not in mod.targets:
                continue
            present = self.patcher.is_present(target.path, mod.marker)
            states[target] = InstallState.INSTALLED if present else InstallState.NOT_INSTALLED
        return states

    def installed_targets(self, name: str) -> list[TargetFile]:
        return [t for t, state in self.current_state(name).items() if state is InstallState.INSTALLED]

    def is_installed(self, name: str) -> bool:
        """True when *name* is present in at least one of its targets."""
        return bool(self.installed_targets(name))

    def is_fully_installed(self, name: str) -> bool:
        states = self.current_state(name)
        return bool(states) and all(s is InstallState.INSTALLED for s in states.values())

    def coexisting_modifications(self, target: TargetFile, name: str) -> set[str]:
        """Names of other known modifications whose marker is present in *target*."""
        found: set[str] = set()
        for mod in self._known.values():
            if mod.name == name or target.key not in mod.targets:
                continue
            if self.patcher.is_present(target.path, mod.marker):
                found.add(mod.name)
        return found
