"""Payload rendering for the nvidia-gpu modification.

Rendering is a pure function of :class:`RenderOptions` and the configured
thresholds: it reads the shipped templates but never touches host files.
"""

from __future__ import annotations

import importlib.resources
import string
from dataclasses import dataclass
from typing import Literal

MODIFICATION_NAME = "nvidia-gpu"
BLOCK_BEGIN = f"pvemod:{MODIFICATION_NAME}:begin"
BLOCK_END = f"pvemod:{MODIFICATION_NAME}:end"

NVIDIA_SMI_QUERY = (
    "nvidia-smi --query-gpu=index,name,temperature.gpu,utilization.gpu,utilization.memory,"
    "memory.used,memory.total,power.draw,power.limit,fan.speed --format=csv,noheader,nounits"
)

Unit = Literal["C", "F"]


class _PayloadTemplate(string.Template):
    # Perl and JavaScript both use "$" and braces freely.
    delimiter = "@@"


@dataclass(frozen=True)
class RenderOptions:
    unit: Unit = "C"


@dataclass(frozen=True)
class Thresholds:
    """Temperature thresholds in degrees Celsius."""

    warning: int
    critical: int


def parse_unit(answer: str | None) -> Unit:
    """Map an operator answer to a display unit. Anything but ``f`` means Celsius."""
    if answer is not None and answer.strip().lower() == "f":
        return "F"
    return "C"


def celsius_to_fahrenheit(value: float) -> int:
    return round(value * 9 / 5 + 32)


def _template(name: str) -> _PayloadTemplate:
    ref = importlib.resources.files("pvemod.data").joinpath(name)
    return _PayloadTemplate(ref.read_text(encoding="utf-8"))


def render_nodes_pm() -> str:
    return _template("nodes_pm.tmpl").substitute(begin=BLOCK_BEGIN, end=BLOCK_END, query=NVIDIA_SMI_QUERY)


def render_widget(options: RenderOptions, thresholds: Thresholds) -> str:
    if options.unit == "F":
        warning = celsius_to_fahrenheit(thresholds.warning)
        critical = celsius_to_fahrenheit(thresholds.critical)
    else:
        warning, critical = thresholds.warning, thresholds.critical
    return _template("gpu_widget.js.tmpl").substitute(
        begin=BLOCK_BEGIN,
        end=BLOCK_END,
        to_fahrenheit="true" if options.unit == "F" else "false",
        temp_unit=f"°{options.unit}",
        temp_warning=warning,
        temp_critical=critical,
    )


def render_payloads(options: RenderOptions, thresholds: Thresholds) -> dict[str, str]:
    """Return the rendered payload for each target, keyed by target filename."""
    return {
        "Nodes.pm": render_nodes_pm(),
        "pvemanagerlib.js": render_widget(options, thresholds),
    }
