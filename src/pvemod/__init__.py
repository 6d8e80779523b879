"""pvemod: install and remove Proxmox VE web-UI modifications with verified backups."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pvemod")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from pvemod.session import InstallationOutcome, InstallSession, UninstallSession

__all__ = ["InstallSession", "InstallationOutcome", "UninstallSession", "__version__"]
