"""Structured JSON logging for pvemod.

Writes JSONL to <backup dir>/pvemod.log with rotation (5MB, 3 backups), so
the record of every install and uninstall sits next to the snapshots it made.
Backup and restore records carry the snapshot path; the closing record of a
session carries its outcome kind and the files it changed.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "pvemod.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3

# Fields sessions and the backup store attach through ``extra=``.
_EXTRA_FIELDS = ("modification", "target", "snapshot", "step", "outcome", "error", "files")


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def setup_logging(log_dir: Path) -> logging.Logger:
    """Set up structured JSON logging to <log_dir>/pvemod.log.

    Returns the package logger. Calling again with the same directory is a
    no-op; a different directory replaces the previous file handler.
    """
    logger = logging.getLogger("pvemod")
    log_path = log_dir / _LOG_FILENAME
    target_filename = os.path.abspath(str(log_path))

    with _setup_lock:
        for h in logger.handlers[:]:
            if not isinstance(h, RotatingFileHandler):
                continue
            if h.baseFilename == target_filename:
                return logger
            logger.removeHandler(h)
            h.close()

        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
        )
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger
