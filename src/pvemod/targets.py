"""Host files touched by the nvidia-gpu modification, in patch order."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pvemod.core import ModConfig
from pvemod.patcher import AnchorSpec, BlockBounds
from pvemod.payload import BLOCK_BEGIN, BLOCK_END

NODES_PM = "Nodes.pm"
PVEMANAGERLIB_JS = "pvemanagerlib.js"

BOUNDS = BlockBounds(begin=BLOCK_BEGIN, end=BLOCK_END)

# Two-line block written by the earlier shell installer, which had no end token.
LEGACY_NODES_PM_BOUNDS = BlockBounds(begin="# Collect NVIDIA GPU data", end="nvidiaGpuOutput")

# The node status API builds $res before querying the root filesystem.
NODES_PM_ANCHOR = AnchorSpec(pattern=r"my \$dinfo = df\('/', 1\);", position="before")

# The widget goes in front of the CPU item of the node status panel.
PVEMANAGERLIB_ANCHOR = AnchorSpec(
    pattern=r"\{\s*itemId:\s*'cpus'",
    position="before",
    scope=r"Ext\.define\('PVE\.node\.StatusView'",
    scope_end=r"^Ext\.define\(",
)


@dataclass(frozen=True)
class TargetFile:
    key: str
    path: Path
    anchor: AnchorSpec
    bounds: tuple[BlockBounds, ...] = (BOUNDS,)
    reinstall_hint: str = ""

    @property
    def filename(self) -> str:
        return self.path.name


def build_targets(config: ModConfig) -> list[TargetFile]:
    """Return the targets for *config*. Order is the order they are patched in."""
    return [
        TargetFile(
            key=NODES_PM,
            path=Path(config.nodes_pm_path),
            anchor=NODES_PM_ANCHOR,
            bounds=(BOUNDS, LEGACY_NODES_PM_BOUNDS),
            reinstall_hint="apt install --reinstall pve-manager",
        ),
        TargetFile(
            key=PVEMANAGERLIB_JS,
            path=Path(config.pvemanagerlib_path),
            anchor=PVEMANAGERLIB_ANCHOR,
            reinstall_hint="apt install --reinstall pve-manager",
        ),
    ]
