"""Collaborators that talk to the machine and the operator.

Sessions only depend on the :class:`HostServices` and :class:`Operator`
protocols, so tests substitute fakes for root checks, ``nvidia-smi``,
``systemctl`` and the terminal.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol

import click

from pvemod.errors import HardwareNotFoundError

logger = logging.getLogger(__name__)

_SUBPROCESS_TIMEOUT = 30


@dataclass(frozen=True)
class GpuInfo:
    index: str
    name: str


class HostServices(Protocol):
    def is_privileged(self) -> bool: ...

    def query_gpus(self) -> list[GpuInfo]: ...

    def reload(self) -> bool: ...


class Operator(Protocol):
    def section(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def ask(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Real implementations
# ---------------------------------------------------------------------------


def parse_gpu_list(output: str) -> list[GpuInfo]:
    """Parse ``nvidia-smi --query-gpu=index,name`` CSV output."""
    gpus: list[GpuInfo] = []
    for line in output.splitlines():
        index, sep, name = line.strip().partition(",")
        if not sep or not index.strip():
            continue
        gpus.append(GpuInfo(index=index.strip(), name=name.strip()))
    return gpus


class SystemHost:
    """The local Proxmox host."""

    def __init__(self, service: str = "pveproxy") -> None:
        self.service = service

    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    def query_gpus(self) -> list[GpuInfo]:
        nvidia_smi = shutil.which("nvidia-smi")
        if not nvidia_smi:
            raise HardwareNotFoundError(
                "nvidia-smi is not installed or not in PATH. Please install NVIDIA drivers first."
            )
        try:
            result = subprocess.run(
                [nvidia_smi, "--query-gpu=index,name", "--format=csv,noheader"],
                capture_output=True,
                text=True,
                timeout=_SUBPROCESS_TIMEOUT,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as exc:
            raise HardwareNotFoundError(f"nvidia-smi could not be run: {exc}") from exc
        if result.returncode != 0:
            logger.warning("nvidia-smi failed (exit %d): %s", result.returncode, (result.stderr or "").strip())
            return []
        return parse_gpu_list(result.stdout)

    def reload(self) -> bool:
        """Restart the web proxy so it serves the changed files."""
        try:
            result = subprocess.run(
                ["systemctl", "restart", self.service],
                capture_output=True,
                text=True,
                timeout=_SUBPROCESS_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            logger.warning("systemctl restart %s timed out after %ds", self.service, _SUBPROCESS_TIMEOUT)
            return False
        except FileNotFoundError:
            logger.warning("systemctl not found; cannot restart %s", self.service)
            return False
        if result.returncode != 0:
            logger.warning(
                "systemctl restart %s failed (exit %d): %s",
                self.service,
                result.returncode,
                (result.stderr or "").strip(),
            )
            return False
        return True


class Console:
    """Leveled, colored terminal messages and line prompts."""

    def section(self, message: str) -> None:
        click.echo(click.style(f"\n{message}", bold=True))

    def info(self, message: str) -> None:
        click.echo(click.style(f"[info] {message}", fg="green"))

    def warn(self, message: str) -> None:
        click.echo(click.style(f"[warning] {message}", fg="yellow"), err=True)

    def error(self, message: str) -> None:
        click.echo(click.style(f"[error] {message}", fg="red"), err=True)

    def ask(self, prompt: str) -> str:
        answer: str = click.prompt(click.style(prompt, fg="cyan", bold=True), default="", show_default=False)
        return answer
