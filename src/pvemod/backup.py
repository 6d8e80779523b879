"""Timestamped, verified snapshots of host files.

The backup directory holds one file per snapshot, named
``<modification>.<original filename>.<YYYYmmdd_HHMMSS_ffffff>``. That naming
convention is the only durable state: there is no manifest, and the latest
snapshot is found by parsing names, never by filesystem mtime or listing
order. Names written by the original shell tool (second resolution, no
microseconds) are recognised too.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from pvemod.core import DEFAULT_BACKUP_DIR_NAME, write_atomic
from pvemod.errors import BackupVerificationError, ConfigError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_LEGACY_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Modification names contain no dots; original filenames may.
_SNAPSHOT_NAME_RE = re.compile(r"^(?P<modification>[^.]+)\.(?P<filename>.+)\.(?P<stamp>\d{8}_\d{6}(?:_\d{6})?)$")


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _parse_stamp(stamp: str) -> datetime | None:
    for fmt in (TIMESTAMP_FORMAT, _LEGACY_TIMESTAMP_FORMAT):
        try:
            return datetime.strptime(stamp, fmt)
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class FileSnapshot:
    """A verified copy of one target file at one point in time."""

    modification: str
    original_name: str
    path: Path
    created_at: datetime
    source: Path | None = None
    sha256: str | None = None

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.path.name)


class BackupStore:
    """Create and look up snapshots inside one backup directory."""

    def __init__(self, directory: Path, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self.directory = directory
        self._clock = clock
        self._last_issued: datetime | None = None

    # -- directory handling -------------------------------------------------

    @staticmethod
    def resolve_directory(configured: str | None, home: Path | None = None) -> Path:
        """Return the configured backup directory, or ``~/PVE-MODS`` when unset.

        A configured directory must already exist; only the default location
        is created on demand.
        """
        if not configured:
            return (home or Path.home()) / DEFAULT_BACKUP_DIR_NAME
        path = Path(configured).expanduser()
        if not path.is_dir():
            raise ConfigError(f"The configured backup directory does not exist: {path}")
        return path

    @staticmethod
    def ensure_directory(path: Path) -> bool:
        """Create *path* (and parents) if absent. Returns True when it was created."""
        if path.is_dir():
            return False
        path.mkdir(parents=True, exist_ok=True)
        return True

    # -- snapshots ----------------------------------------------------------

    def next_timestamp(self) -> datetime:
        """Return a timestamp strictly later than any this store has issued."""
        now = self._clock()
        if self._last_issued is not None and now <= self._last_issued:
            now = self._last_issued + timedelta(microseconds=1)
        self._last_issued = now
        return now

    def _snapshot_path(self, modification: str, filename: str, stamp: datetime) -> Path:
        return self.directory / f"{modification}.{filename}.{stamp.strftime(TIMESTAMP_FORMAT)}"

    def snapshot(self, source: Path, *, modification: str, timestamp: datetime | None = None) -> FileSnapshot:
        """Copy *source* into the backup directory and verify the copy.

        The copy is written under a hidden ``.partial`` name and only renamed
        to the snapshot naming convention once its bytes match the source, so
        an interrupted or corrupted copy is never picked up as a backup.
        """
        if not source.is_file():
            raise FileNotFoundError(f"Source file does not exist: {source}")
        if not os.access(source, os.R_OK):
            raise PermissionError(f"Cannot read source file: {source}")

        stamp = timestamp or self.next_timestamp()
        final = self._snapshot_path(modification, source.name, stamp)
        while final.exists():
            stamp += timedelta(microseconds=1)
            final = self._snapshot_path(modification, source.name, stamp)
        partial = self.directory / f".{final.name}.partial"

        try:
            shutil.copy2(source, partial)
            expected = _sha256(source.read_bytes())
            actual = _sha256(partial.read_bytes())
        except OSError as exc:
            with contextlib.suppress(OSError):
                partial.unlink()
            raise BackupVerificationError(source, final, f"copy failed: {exc}") from exc
        if expected != actual:
            with contextlib.suppress(OSError):
                partial.unlink()
            raise BackupVerificationError(source, final, "copy does not match source")

        os.replace(partial, final)
        logger.info(
            "Created backup %s",
            final,
            extra={"modification": modification, "target": str(source), "snapshot": str(final)},
        )
        return FileSnapshot(
            modification=modification,
            original_name=source.name,
            path=final,
            created_at=stamp,
            source=source,
            sha256=expected,
        )

    # -- lookup -------------------------------------------------------------

    def index(self) -> dict[tuple[str, str], list[FileSnapshot]]:
        """Map (modification, original filename) to its snapshots, newest first."""
        result: dict[tuple[str, str], list[FileSnapshot]] = {}
        if not self.directory.is_dir():
            return result
        for entry in self.directory.iterdir():
            m = _SNAPSHOT_NAME_RE.match(entry.name)
            if m is None or not entry.is_file():
                continue
            created_at = _parse_stamp(m["stamp"])
            if created_at is None:
                continue
            snap = FileSnapshot(
                modification=m["modification"],
                original_name=m["filename"],
                path=entry,
                created_at=created_at,
            )
            result.setdefault((snap.modification, snap.original_name), []).append(snap)
        for snaps in result.values():
            snaps.sort(key=lambda s: s.sort_key, reverse=True)
        return result

    def latest_snapshot(self, modification: str, filename: str) -> FileSnapshot | None:
        """Most recent snapshot by embedded timestamp; ties go to the greatest name."""
        snaps = self.index().get((modification, filename))
        return snaps[0] if snaps else None

    def restore(self, snapshot: FileSnapshot, destination: Path) -> None:
        """Copy *snapshot* back over *destination* atomically and verify the result."""
        data = snapshot.path.read_bytes()
        if snapshot.sha256 is not None and _sha256(data) != snapshot.sha256:
            raise BackupVerificationError(destination, snapshot.path, "snapshot changed since it was taken")
        write_atomic(destination, data)
        if destination.read_bytes() != data:
            raise BackupVerificationError(snapshot.path, destination, "restored file does not match snapshot")
        logger.info(
            "Restored %s from %s",
            destination,
            snapshot.path,
            extra={
                "modification": snapshot.modification,
                "target": str(destination),
                "snapshot": str(snapshot.path),
            },
        )
