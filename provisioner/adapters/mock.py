"""
Fake host — in-memory test double for the host command interface.

Used in mock mode and in tests to provision a simulated machine without
touching real packages or files. Host state is just:

    binaries   names resolvable through ``command -v``
    files      path → contents
    dirs       directory paths

Commands are answered by scripted responses (longest matching prefix
wins). A response can carry an ``effect`` that mutates the fake state,
which is how an apply makes a later detect see the change.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass

from provisioner.adapters.base import Host
from provisioner.core.engine.errors import ApplyError, DetectionError
from provisioner.core.models.host import CommandResult

Effect = Callable[["FakeHost"], None]

_COMMAND_V = re.compile(r"^command -v (\S+)$")
FAKE_TEMP_PATH = "/tmp/tmp.fake"


@dataclass
class FakeCall:
    """One recorded invocation of ``FakeHost.run``."""

    command: str
    sudo: bool = False
    interactive: bool = False


@dataclass
class _Response:
    result: CommandResult
    effect: Effect | None = None
    times: int | None = None


class FakeHost(Host):
    """In-memory host for tests and mock runs.

    By default every command succeeds with empty output. A few read the
    fake state instead: ``command -v`` (``binaries``), ``id -u``/``id -un``
    and ``mktemp`` (always ``FAKE_TEMP_PATH``).
    """

    def __init__(
        self,
        user: str = "operator",
        uid: int = 1000,
        home: str | None = None,
        binaries: dict[str, str] | set[str] | None = None,
        files: dict[str, str] | None = None,
        available: bool = True,
    ):
        self.user = user
        self.uid = uid
        self._home = home or f"/home/{user}"
        self._available = available
        self.binaries: dict[str, str] = {}
        for name in binaries or ():
            path = binaries[name] if isinstance(binaries, dict) else f"/usr/bin/{name}"
            self.binaries[name] = path
        self.files: dict[str, str] = dict(files or {})
        self.dirs: set[str] = {self._home}
        self.modes: dict[str, int] = {}
        self.unreadable: set[str] = set()
        self.unwritable: set[str] = set()
        self._responses: dict[str, _Response] = {}
        self._call_log: list[FakeCall] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def home(self) -> str:
        return self._home

    @property
    def call_log(self) -> list[FakeCall]:
        """All commands this host has been asked to run."""
        return self._call_log

    @property
    def commands(self) -> list[str]:
        return [c.command for c in self._call_log]

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return self._available

    # ── Scripting ───────────────────────────────────────────────

    def on(
        self,
        prefix: str,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Effect | None = None,
        times: int | None = None,
    ) -> None:
        """Script the response for commands starting with ``prefix``.

        Args:
            times: Answer this many calls, then fall back to the default.
        """
        self._responses[prefix] = _Response(
            CommandResult(exit_code, stdout, stderr), effect, times
        )

    def fail(self, prefix: str, stderr: str = "Mock failure", exit_code: int = 1) -> None:
        """Make commands starting with ``prefix`` fail."""
        self.on(prefix, exit_code=exit_code, stderr=stderr)

    def install(self, binary: str, path: str | None = None) -> None:
        """Make a binary resolvable on PATH."""
        self.binaries[binary] = path or f"/usr/bin/{binary}"

    def installs(self, *binaries: str) -> Effect:
        """Effect factory: the command installs these binaries."""

        def _effect(host: FakeHost) -> None:
            for binary in binaries:
                host.install(binary)

        return _effect

    def reset(self) -> None:
        """Clear the call log and scripted responses."""
        self._call_log.clear()
        self._responses.clear()

    # ── Host interface ──────────────────────────────────────────

    def run(
        self,
        command: str,
        *,
        sudo: bool = False,
        interactive: bool = False,
        timeout: int | None = None,
    ) -> CommandResult:
        self._call_log.append(FakeCall(command, sudo=sudo, interactive=interactive))

        response = self._match(command)
        if response is not None:
            if response.times is not None:
                response.times -= 1
            if response.effect is not None and response.result.ok:
                response.effect(self)
            return response.result

        match = _COMMAND_V.match(command)
        if match:
            path = self.binaries.get(match.group(1))
            return CommandResult(0, path + "\n") if path else CommandResult(1)
        if command == "id -u":
            return CommandResult(0, f"{self.uid}\n")
        if command == "id -un":
            return CommandResult(0, f"{self.user}\n")
        if command.split()[:1] == ["mktemp"]:
            if "-d" in command.split():
                self.dirs.add(FAKE_TEMP_PATH)
            return CommandResult(0, f"{FAKE_TEMP_PATH}\n")
        return CommandResult(0)

    def _match(self, command: str) -> _Response | None:
        for prefix in sorted(self._responses, key=len, reverse=True):
            response = self._responses[prefix]
            if response.times is not None and response.times <= 0:
                continue
            if command.startswith(prefix):
                return response
        return None

    def exists(self, path: str) -> bool:
        path = self.expand(path)
        return path in self.files or path in self.dirs

    def is_dir(self, path: str) -> bool:
        return self.expand(path) in self.dirs

    def read_file(self, path: str, *, sudo: bool = False) -> str | None:
        path = self.expand(path)
        if path in self.unreadable:
            raise DetectionError(f"Cannot read {path}: Permission denied")
        return self.files.get(path)

    def write_file(
        self,
        path: str,
        content: str,
        *,
        sudo: bool = False,
        mode: int | None = None,
    ) -> None:
        path = self.expand(path)
        self._check_writable(path)
        self._add_parents(path)
        self.files[path] = content
        if mode is not None:
            self.modes[path] = mode

    def append_file(self, path: str, content: str, *, mode: int | None = None) -> None:
        path = self.expand(path)
        self._check_writable(path)
        self._add_parents(path)
        self.files[path] = self.files.get(path, "") + content
        if mode is not None:
            self.modes[path] = mode

    def make_dirs(self, path: str, *, mode: int | None = None) -> None:
        path = self.expand(path)
        self._check_writable(path)
        self._add_parents(os.path.join(path, "_"))
        if mode is not None:
            self.modes[path] = mode

    def copy_file(self, src: str, dst: str) -> None:
        src, dst = self.expand(src), self.expand(dst)
        if src not in self.files:
            raise ApplyError(f"Cannot copy {src} to {dst}: No such file")
        self.write_file(dst, self.files[src])

    def _check_writable(self, path: str) -> None:
        if path in self.unwritable:
            raise ApplyError(f"Cannot write {path}: Permission denied")

    def _add_parents(self, path: str) -> None:
        parent = os.path.dirname(path)
        while parent and parent != "/":
            self.dirs.add(parent)
            parent = os.path.dirname(parent)
