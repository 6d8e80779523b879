"""Configuration and shared file helpers for pvemod.

Config lives at $HOME/.config/pvemod/config.json (see CONFIG_FILE). Every
key is optional; a missing file means defaults throughout.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "pvemod"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_BACKUP_DIR_NAME = "PVE-MODS"
DEFAULT_NODES_PM_PATH = "/usr/share/perl5/PVE/API2/Nodes.pm"
DEFAULT_PVEMANAGERLIB_PATH = "/usr/share/pve-manager/js/pvemanagerlib.js"
DEFAULT_SERVICE = "pveproxy"

# Celsius
DEFAULT_TEMP_WARNING = 70
DEFAULT_TEMP_CRITICAL = 85


@dataclass
class ModConfig:
    backup_dir: str | None = None
    temp_warning: int = DEFAULT_TEMP_WARNING
    temp_critical: int = DEFAULT_TEMP_CRITICAL
    nodes_pm_path: str = DEFAULT_NODES_PM_PATH
    pvemanagerlib_path: str = DEFAULT_PVEMANAGERLIB_PATH
    service: str = DEFAULT_SERVICE
    extra_markers: dict[str, str] = field(default_factory=dict)


def _coerce_temp(data: dict[str, Any], key: str, default: int) -> int:
    raw = data.get(key, default)
    if isinstance(raw, bool):
        logger.warning("Invalid %s value %r in config; using default %d", key, raw, default)
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid %s value %r in config; using default %d", key, raw, default)
        return default
    if not (0 < value < 150):
        logger.warning("%s %d out of range (1-149) in config; using default %d", key, value, default)
        return default
    return value


def _coerce_str(data: dict[str, Any], key: str, default: str) -> str:
    raw = data.get(key, default)
    if not isinstance(raw, str) or not raw.strip():
        logger.warning("Invalid %s value %r in config; using default %s", key, raw, default)
        return default
    return raw.strip()


def read_mod_config(path: Path | None = None) -> ModConfig:
    """Read config.json. Returns defaults if missing or invalid.

    Only ``backup_dir`` is taken verbatim; whether it exists is checked later
    by the backup store, which raises ``ConfigError`` for a missing directory.
    """
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return ModConfig()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Corrupt config %s, using defaults: %s", config_path, exc)
        return ModConfig()

    if not isinstance(data, dict):
        logger.warning("Config %s is not a JSON object; using defaults", config_path)
        return ModConfig()

    backup_dir = data.get("backup_dir")
    if backup_dir is not None and (not isinstance(backup_dir, str) or not backup_dir.strip()):
        logger.warning("Invalid backup_dir value %r in config; using default location", backup_dir)
        backup_dir = None

    temp_warning = _coerce_temp(data, "temp_warning", DEFAULT_TEMP_WARNING)
    temp_critical = _coerce_temp(data, "temp_critical", DEFAULT_TEMP_CRITICAL)
    if temp_critical <= temp_warning:
        logger.warning(
            "temp_critical (%d) must exceed temp_warning (%d); using defaults %d/%d",
            temp_critical,
            temp_warning,
            DEFAULT_TEMP_WARNING,
            DEFAULT_TEMP_CRITICAL,
        )
        temp_warning, temp_critical = DEFAULT_TEMP_WARNING, DEFAULT_TEMP_CRITICAL

    raw_markers = data.get("extra_markers", {})
    if not isinstance(raw_markers, dict):
        logger.warning("extra_markers in config must be an object; ignoring")
        raw_markers = {}
    extra_markers = {str(k): v for k, v in raw_markers.items() if isinstance(v, str) and v.strip()}

    return ModConfig(
        backup_dir=backup_dir.strip() if backup_dir else None,
        temp_warning=temp_warning,
        temp_critical=temp_critical,
        nodes_pm_path=_coerce_str(data, "nodes_pm_path", DEFAULT_NODES_PM_PATH),
        pvemanagerlib_path=_coerce_str(data, "pvemanagerlib_path", DEFAULT_PVEMANAGERLIB_PATH),
        service=_coerce_str(data, "service", DEFAULT_SERVICE),
        extra_markers=extra_markers,
    )


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _copy_ownership(reference: Path, target: str) -> None:
    """Give *target* the mode (and, when permitted, the owner) of *reference*."""
    shutil.copymode(reference, target)
    st = reference.stat()
    with contextlib.suppress(PermissionError):
        os.chown(target, st.st_uid, st.st_gid)


def write_atomic(path: Path, data: bytes) -> None:
    """Replace *path* with *data* via a sibling temp file and ``os.replace()``.

    Readers never observe a half-written file. An existing file's mode and
    owner are carried over to the replacement.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            _copy_ownership(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
