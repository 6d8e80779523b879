"""Exception taxonomy for pvemod.

Every error is fatal to the session that raised it. Missing or unreadable
files surface as plain ``OSError``; everything else derives from
:class:`PveModError`.
"""

from __future__ import annotations

from pathlib import Path


class PveModError(Exception):
    """Base class for all pvemod failures."""


class ConfigError(PveModError, ValueError):
    """Raised when a configured path or value is unusable."""


class PrivilegeError(PveModError):
    """Raised when the operator lacks the privileges to modify host files."""

    def __init__(self) -> None:
        super().__init__("This tool must be run as root. Please re-run it with 'sudo'.")


class AlreadyInstalledError(PveModError):
    """Raised when installing a modification whose marker is already present."""

    def __init__(self, modification: str, paths: list[Path]) -> None:
        self.modification = modification
        self.paths = paths
        where = ", ".join(str(p) for p in paths)
        super().__init__(f"{modification} is already installed ({where}). Please uninstall first before reinstalling.")


class NotInstalledError(PveModError):
    """Raised when uninstalling a modification whose marker is absent everywhere."""

    def __init__(self, modification: str) -> None:
        self.modification = modification
        super().__init__(f"{modification} is not installed.")


class HardwareNotFoundError(PveModError):
    """Raised when the hardware the widget reports on cannot be found."""


class BackupVerificationError(PveModError):
    """Raised when a backup copy does not match its source byte for byte."""

    def __init__(self, source: Path, copy: Path, detail: str = "") -> None:
        self.source = source
        self.copy = copy
        msg = f"Backup verification failed for {copy} (source {source})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class AnchorError(PveModError):
    """Raised when the insertion point cannot be located unambiguously."""

    def __init__(self, pattern: str, count: int, path: Path | None = None) -> None:
        self.pattern = pattern
        self.count = count
        self.path = path
        where = f" in {path}" if path is not None else ""
        super().__init__(self._describe(where))

    def _describe(self, where: str) -> str:
        return f"Anchor {self.pattern!r} matched {self.count} times{where}"


class AnchorNotFoundError(AnchorError):
    """Raised when the anchor pattern does not occur at all."""

    def __init__(self, pattern: str, path: Path | None = None) -> None:
        super().__init__(pattern, 0, path)

    def _describe(self, where: str) -> str:
        return (
            f"Anchor {self.pattern!r} not found{where}. "
            "The host application may have been upgraded and changed its layout."
        )


class AnchorAmbiguousError(AnchorError):
    """Raised when the anchor pattern occurs more than once."""

    def _describe(self, where: str) -> str:
        return f"Anchor {self.pattern!r} is ambiguous{where}: {self.count} matches, expected exactly one"


class BlockNotFoundError(PveModError):
    """Raised when the injected block cannot be located for fallback removal."""

    def __init__(self, marker: str, reason: str, path: Path | None = None) -> None:
        self.marker = marker
        self.reason = reason
        self.path = path
        where = f" in {path}" if path is not None else ""
        super().__init__(f"Cannot remove block for {marker!r}{where}: {reason}")
