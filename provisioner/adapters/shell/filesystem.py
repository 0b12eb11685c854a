"""
Local filesystem operations for the shell host.

Thin pathlib wrappers that translate OSError into the provisioning
error taxonomy: read failures are DetectionErrors (they happen while
probing), write failures are ApplyErrors (they happen while converging).
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from provisioner.core.engine.errors import ApplyError, DetectionError

logger = logging.getLogger(__name__)


def read_text(path: str) -> str | None:
    """Read a file, returning None if it does not exist."""
    target = Path(path)
    if not target.is_file():
        return None
    try:
        return target.read_text(encoding="utf-8")
    except OSError as e:
        raise DetectionError(f"Cannot read {path}: {e}") from e


def write_text(path: str, content: str, mode: int | None = None) -> None:
    """Replace a file's contents, creating parent directories."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        if mode is not None:
            target.chmod(mode)
    except OSError as e:
        raise ApplyError(f"Cannot write {path}: {e}") from e
    logger.debug("Wrote %d bytes to %s", len(content), path)


def append_text(path: str, content: str, mode: int | None = None) -> None:
    """Append to a file, creating it (and parents) if needed."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            target.chmod(mode)
    except OSError as e:
        raise ApplyError(f"Cannot append to {path}: {e}") from e
    logger.debug("Appended %d bytes to %s", len(content), path)


def make_dirs(path: str, mode: int | None = None) -> None:
    """Create a directory and its parents; apply ``mode`` to the leaf."""
    target = Path(path)
    try:
        target.mkdir(parents=True, exist_ok=True)
        if mode is not None:
            target.chmod(mode)
    except OSError as e:
        raise ApplyError(f"Cannot create directory {path}: {e}") from e


def copy_file(src: str, dst: str) -> None:
    """Copy a file, preserving metadata."""
    try:
        shutil.copy2(src, dst)
    except OSError as e:
        raise ApplyError(f"Cannot copy {src} to {dst}: {e}") from e
