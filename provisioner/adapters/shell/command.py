"""
Local shell host — run provisioning commands on this machine.

This is the SINGLE PLACE where ``subprocess.run`` is called for
provisioning. Privileged commands are wrapped as ``sudo sh -c '<cmd>'``
so pipelines and redirections run entirely as root.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from pathlib import Path

from provisioner.adapters.base import Host
from provisioner.adapters.shell import filesystem
from provisioner.core.engine.errors import ApplyError, DetectionError
from provisioner.core.models.host import CommandResult

logger = logging.getLogger(__name__)

# Exit codes used when the command never produced one
EXIT_TIMEOUT = 124
EXIT_SPAWN_ERROR = 127

# Keep captured output bounded in reports and logs
_MAX_OUTPUT = 4000


class LocalHost(Host):
    """Provision the machine this process runs on.

    Args:
        default_timeout: Seconds before a command is killed (None = no limit).
        home: Override the home directory (tests).
    """

    def __init__(self, default_timeout: int | None = None, home: str | None = None):
        self._default_timeout = default_timeout
        self._home = home or str(Path.home())

    @property
    def name(self) -> str:
        return "local"

    @property
    def home(self) -> str:
        return self._home

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def run(
        self,
        command: str,
        *,
        sudo: bool = False,
        interactive: bool = False,
        timeout: int | None = None,
    ) -> CommandResult:
        if sudo and os.geteuid() != 0:
            command = f"sudo sh -c {shlex.quote(command)}"
        timeout = timeout if timeout is not None else self._default_timeout

        logger.debug("Executing: %s", command)
        start = time.monotonic()

        try:
            if interactive:
                proc = subprocess.run(command, shell=True, timeout=timeout)
                return CommandResult(proc.returncode)

            proc = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(EXIT_TIMEOUT, "", f"Command timed out after {timeout}s")
        except OSError as e:
            logger.exception("Subprocess error: %s", command)
            return CommandResult(EXIT_SPAWN_ERROR, "", f"Command execution error: {e}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Exit %d after %dms: %s", proc.returncode, elapsed_ms, command)
        return CommandResult(
            proc.returncode,
            proc.stdout[-_MAX_OUTPUT:] if proc.stdout else "",
            proc.stderr[-_MAX_OUTPUT:] if proc.stderr else "",
        )

    # ── File operations ─────────────────────────────────────────

    def exists(self, path: str) -> bool:
        return Path(self.expand(path)).exists()

    def is_dir(self, path: str) -> bool:
        return Path(self.expand(path)).is_dir()

    def read_file(self, path: str, *, sudo: bool = False) -> str | None:
        path = self.expand(path)
        if not sudo:
            return filesystem.read_text(path)

        # Root-only files (sudoers.d) cannot be stat'ed as the operator either
        result = self.run(f"test -e {shlex.quote(path)}", sudo=True)
        if result.exit_code == 1:
            return None
        result = self.run(f"cat {shlex.quote(path)}", sudo=True)
        if not result.ok:
            raise DetectionError(f"Cannot read {path}: {result.diagnostic}")
        return result.stdout

    def write_file(
        self,
        path: str,
        content: str,
        *,
        sudo: bool = False,
        mode: int | None = None,
    ) -> None:
        path = self.expand(path)
        if not sudo:
            filesystem.write_text(path, content, mode=mode)
            return

        quoted = shlex.quote(path)
        command = f"tee {quoted} > /dev/null"
        if os.geteuid() != 0:
            command = f"sudo {command}"
        try:
            proc = subprocess.run(
                command,
                shell=True,
                input=content,
                capture_output=True,
                text=True,
                timeout=self._default_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ApplyError(f"Cannot write {path}: {e}") from e
        if proc.returncode != 0:
            raise ApplyError(
                proc.stderr.strip() or f"Cannot write {path}",
                command=command,
                exit_code=proc.returncode,
            )
        if mode is not None:
            result = self.run(f"chmod {mode:o} {quoted}", sudo=True)
            if not result.ok:
                raise ApplyError(result.diagnostic, exit_code=result.exit_code)

    def append_file(self, path: str, content: str, *, mode: int | None = None) -> None:
        filesystem.append_text(self.expand(path), content, mode=mode)

    def make_dirs(self, path: str, *, mode: int | None = None) -> None:
        filesystem.make_dirs(self.expand(path), mode=mode)

    def copy_file(self, src: str, dst: str) -> None:
        filesystem.copy_file(self.expand(src), self.expand(dst))
