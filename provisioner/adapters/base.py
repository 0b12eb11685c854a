"""
Host base — the contract between steps and the machine they provision.

Step ``detect`` and ``apply`` callables only ever touch the target host
through this interface. The real implementation shells out; the fake one
keeps host state in memory so idempotence can be tested without a VM.

Adapters never raise for a failing command: a non-zero exit comes back
as a ``CommandResult``. Steps decide what a given exit code means.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod

from provisioner.core.engine.errors import ApplyError
from provisioner.core.models.host import CommandResult


class Host(ABC):
    """Abstract base class for provisioning targets.

    To add a new target kind:
        1. Subclass Host
        2. Implement run plus the file operations
        3. Hand an instance to the executor
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The host identifier (e.g., 'local', 'fake')."""

    @property
    @abstractmethod
    def home(self) -> str:
        """Home directory of the operating account."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether commands can be run on this host. Never raises."""

    @abstractmethod
    def run(
        self,
        command: str,
        *,
        sudo: bool = False,
        interactive: bool = False,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a shell command and return its exit code and output.

        Args:
            command: Shell command line.
            sudo: Prefix with ``sudo``.
            interactive: Attach the operator's terminal instead of capturing
                output (password prompts).
            timeout: Seconds before the command is killed.
        """

    # ── File operations ─────────────────────────────────────────

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Whether a file or directory exists."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Whether ``path`` is a directory."""

    @abstractmethod
    def read_file(self, path: str, *, sudo: bool = False) -> str | None:
        """Return file contents, or None if it does not exist.

        Raises:
            DetectionError: The file exists but cannot be read.
        """

    @abstractmethod
    def write_file(
        self,
        path: str,
        content: str,
        *,
        sudo: bool = False,
        mode: int | None = None,
    ) -> None:
        """Replace a file's contents. Raises ApplyError on failure."""

    @abstractmethod
    def append_file(self, path: str, content: str, *, mode: int | None = None) -> None:
        """Append to a file, creating it if needed. Raises ApplyError on failure."""

    @abstractmethod
    def make_dirs(self, path: str, *, mode: int | None = None) -> None:
        """Create a directory and parents. Raises ApplyError on failure."""

    @abstractmethod
    def copy_file(self, src: str, dst: str) -> None:
        """Copy a file. Raises ApplyError on failure."""

    # ── Derived helpers ─────────────────────────────────────────

    def expand(self, path: str) -> str:
        """Expand a leading ``~`` against this host's home directory."""
        if path == "~":
            return self.home
        if path.startswith("~/"):
            return os.path.join(self.home, path[2:])
        return path

    def which(self, binary: str) -> str | None:
        """Resolve a binary on PATH via ``command -v``."""
        result = self.run(f"command -v {binary}")
        path = result.stdout.strip()
        if result.ok and path:
            return path.splitlines()[0]
        return None

    def current_user(self) -> str:
        """Login name of the operating account."""
        result = self.run("id -un")
        return result.stdout.strip()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


def run_checked(
    host: Host,
    command: str,
    *,
    sudo: bool = False,
    interactive: bool = False,
    timeout: int | None = None,
) -> str:
    """Run a command and raise ApplyError if it exits non-zero.

    Returns:
        The command's stripped stdout.
    """
    result = host.run(command, sudo=sudo, interactive=interactive, timeout=timeout)
    if not result.ok:
        raise ApplyError(result.diagnostic, command=command, exit_code=result.exit_code)
    return result.stdout.strip()
