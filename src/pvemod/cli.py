"""CLI for pvemod.

Usage:
    pvemod install      # Back up the host files and add the NVIDIA GPU widget
    pvemod uninstall    # Restore the host files from the latest backups
"""

from __future__ import annotations

import sys
from typing import Any

import click

from pvemod.core import read_mod_config
from pvemod.host import Console, SystemHost
from pvemod.session import InstallSession, UninstallSession


def _session_kwargs(ctx: click.Context) -> dict[str, Any]:
    obj = ctx.obj
    return {
        "host": obj["host"],
        "operator": obj["operator"],
        "file_logging": obj.get("file_logging", True),
    }


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Install or remove the NVIDIA GPU status widget in the Proxmox VE web UI."""
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        ctx.obj["config"] = read_mod_config()
    ctx.obj.setdefault("host", SystemHost(service=ctx.obj["config"].service))
    ctx.obj.setdefault("operator", Console())
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help(), err=True)
        ctx.exit(1)


@cli.command()
@click.pass_context
def install(ctx: click.Context) -> None:
    """Install the NVIDIA GPU monitoring modification."""
    session = InstallSession(ctx.obj["config"], **_session_kwargs(ctx))
    outcome = session.run()
    sys.exit(outcome.exit_code)


@cli.command()
@click.pass_context
def uninstall(ctx: click.Context) -> None:
    """Remove the modification and restore the original files."""
    session = UninstallSession(ctx.obj["config"], **_session_kwargs(ctx))
    outcome = session.run()
    sys.exit(outcome.exit_code)


def main() -> None:
    """Entry point for the ``pvemod`` console script."""
    cli()


if __name__ == "__main__":
    main()
