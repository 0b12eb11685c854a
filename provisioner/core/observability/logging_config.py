"""
Logging configuration — one setup call per process, made by main.py.

Modules log through ``logging.getLogger(__name__)``; this decides where
those records go and how they look.

Console level precedence:
    CLI flag  >  PROVISION_LOG_LEVEL  >  WARNING

A copy of the log can go to PROVISION_LOG_FILE, at PROVISION_LOG_FILE_LEVEL
(default: the console level, or DEBUG under ``--debug``). The file is the
place to read the full stdout/stderr of a failed command.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

ENV_LOG_LEVEL = "PROVISION_LOG_LEVEL"
ENV_LOG_FILE = "PROVISION_LOG_FILE"
ENV_LOG_FILE_LEVEL = "PROVISION_LOG_FILE_LEVEL"

DEFAULT_LEVEL = "WARNING"

# ── Formats ─────────────────────────────────────────────────────

# (max level, format, datefmt): first row whose level >= the console level
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def level_number(name: str | None) -> int:
    """Numeric level for a level name; unknown or empty names mean WARNING."""
    value = getattr(logging, (name or "").upper(), None)
    return value if isinstance(value, int) else logging.WARNING


def _console_formatter(level: int) -> logging.Formatter:
    for ceiling, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= ceiling:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter("%(message)s")


def setup_logging(
    level: str = DEFAULT_LEVEL,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with a console (and file) handler.

    Args:
        level: Console level name.
        log_file: Optional path; records are appended.
        log_file_level: Level for the file. Defaults to ``level``.
    """
    console_level = level_number(level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level_number(log_file_level) if log_file_level else console_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers[:] = handlers
    # The root passes everything any handler wants; handlers filter
    root.setLevel(min(h.level for h in handlers))

    logging.raiseExceptions = False


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if env is None else env
    return env.get(ENV_LOG_LEVEL, DEFAULT_LEVEL)


def setup_from_env(level: str, *, debug: bool = False) -> None:
    """``setup_logging`` with the log file taken from the environment."""
    file_level = os.environ.get(ENV_LOG_FILE_LEVEL) or ("DEBUG" if debug else None)
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=file_level,
    )
