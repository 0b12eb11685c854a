"""
Step kinds — one uniform detection contract per kind of step.

Every step in the catalog is built from one of these kinds, so "is this
already done?" is answered the same way for every tool install, every
managed file, every checkout:

    tool install      binary resolvable with ``command -v``
    managed file      file contains every expected marker line
    config options    last active ``key=value`` has the value (missing file: n/a)
    git checkout      ``<dest>/.git`` is a directory
    git settings      ``git config --global --get`` matches every value

Detection helpers return a ``Detection``; apply helpers return a short
diagnostic and raise ``ApplyError`` on failure.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Callable, Mapping, Sequence

from provisioner.adapters.base import Host, run_checked
from provisioner.core.engine.errors import ApplyError
from provisioner.core.models.step import Detection, DetectFn, Step

logger = logging.getLogger(__name__)


def _satisfied(flag: bool) -> Detection:
    return Detection.SATISFIED if flag else Detection.NEEDS_APPLY


# ── Tool installs ───────────────────────────────────────────────


def binary_present(binary: str) -> DetectFn:
    """Detection: ``binary`` resolves on PATH."""

    def _detect(host: Host) -> Detection:
        return _satisfied(host.which(binary) is not None)

    return _detect


def require_binary(host: Host, binary: str, needed_by: str) -> str:
    """Prerequisite check inside an apply: fail if ``binary`` is missing.

    Returns:
        The resolved path of the binary.
    """
    path = host.which(binary)
    if path is None:
        raise ApplyError(f"{binary} is not installed; required by {needed_by}")
    return path


def apt_install(host: Host, packages: Sequence[str]) -> str:
    """Install apt packages non-interactively."""
    names = " ".join(shlex.quote(p) for p in packages)
    logger.debug("apt install: %s", names)
    run_checked(host, f"DEBIAN_FRONTEND=noninteractive apt-get install -y {names}", sudo=True)
    return f"installed {', '.join(packages)}"


def apt_tool_step(
    name: str,
    binary: str,
    packages: Sequence[str] | None = None,
    *,
    critical: bool = False,
    description: str = "",
) -> Step:
    """A tool installed from the default apt sources."""
    pkgs = list(packages or [binary])

    def _apply(host: Host) -> str:
        return apt_install(host, pkgs)

    return Step(
        name=name,
        detect=binary_present(binary),
        apply=_apply,
        critical=critical,
        description=description or f"Install {binary} (apt: {' '.join(pkgs)})",
    )


def tool_step(
    name: str,
    binary: str,
    install: Callable[[Host], str],
    *,
    critical: bool = False,
    description: str = "",
) -> Step:
    """A tool installed by custom logic, detected by its binary."""
    return Step(
        name=name,
        detect=binary_present(binary),
        apply=install,
        critical=critical,
        description=description or f"Install {binary}",
    )


# ── Managed files ───────────────────────────────────────────────


def file_contains(path: str, markers: Sequence[str], *, sudo: bool = False) -> DetectFn:
    """Detection: the file exists and contains every marker line."""

    def _detect(host: Host) -> Detection:
        content = host.read_file(path, sudo=sudo)
        if content is None:
            return Detection.NEEDS_APPLY
        lines = {line.strip() for line in content.splitlines()}
        return _satisfied(all(m.strip() in lines for m in markers))

    return _detect


def _option_pattern(key: str, sep: str) -> re.Pattern[str]:
    # groups: comment marker, value
    sep_pattern = re.escape(sep.strip()) if sep.strip() else r"[ \t]"
    return re.compile(rf"^[ \t]*(#?)[ \t]*{re.escape(key)}[ \t]*{sep_pattern}[ \t]*(.*?)[ \t]*$")


def config_option_value(content: str, key: str, sep: str = "=") -> str | None:
    """The value of the last active assignment of ``key``, or None.

    systemd-style readers keep the last assignment, so this is the value
    in effect.
    """
    pattern = _option_pattern(key, sep)
    value = None
    for line in content.splitlines():
        match = pattern.match(line)
        if match and not match.group(1):
            value = match.group(2)
    return value


def set_config_option(
    content: str,
    key: str,
    value: str,
    sep: str = "=",
    *,
    section_end: str | None = None,
) -> str:
    """Set ``key`` in a ``key<sep>value`` config file body.

    Every active assignment of the key is rewritten, so the result holds
    whether the reader keeps the first or the last one. With no active
    assignment the first commented-out one is uncommented; with neither,
    the setting is added.

    Args:
        section_end: Regex for the line where a conditional section starts
            (sshd ``Match``). That line and everything after it are left
            alone, and an added setting goes just before it.
    """
    pattern = _option_pattern(key, sep)
    lines = content.splitlines()
    limit = len(lines)
    if section_end:
        end = re.compile(section_end)
        limit = next((i for i, line in enumerate(lines) if end.match(line)), limit)

    matches = [(i, pattern.match(lines[i])) for i in range(limit)]
    assigned = [(i, m) for i, m in matches if m]
    targets = [i for i, m in assigned if not m.group(1)] or [i for i, _m in assigned[:1]]

    line = f"{key}{sep}{value}"
    if targets:
        for i in targets:
            lines[i] = line
    else:
        lines.insert(limit, line)
    return "\n".join(lines) + "\n"


def config_options_set(path: str, settings: Mapping[str, str], sep: str = "=") -> DetectFn:
    """Detection: every key's effective value is the wanted one.

    A missing file counts as satisfied: there is nothing to configure.
    """

    def _detect(host: Host) -> Detection:
        content = host.read_file(path)
        if content is None:
            return Detection.SATISFIED
        return _satisfied(
            all(config_option_value(content, k, sep) == v for k, v in settings.items())
        )

    return _detect


# ── Git checkouts ───────────────────────────────────────────────


def git_checkout_present(dest: str) -> DetectFn:
    """Detection: ``dest`` is a git working tree."""

    def _detect(host: Host) -> Detection:
        return _satisfied(host.is_dir(f"{dest.rstrip('/')}/.git"))

    return _detect


def git_checkout_step(
    name: str,
    repo_url: str,
    dest: str,
    *,
    depth: int | None = None,
    description: str = "",
) -> Step:
    """A repository cloned into ``dest``."""

    def _apply(host: Host) -> str:
        require_binary(host, "git", name)
        target = host.expand(dest)
        # A directory left behind without .git (e.g. an aborted clone) blocks git clone
        if host.exists(target) and not host.is_dir(f"{target}/.git"):
            existing = host.run(f"ls -A {shlex.quote(target)}")
            if existing.ok and existing.stdout.strip():
                raise ApplyError(f"{target} exists and is not a git checkout")
        host.make_dirs(target.rsplit("/", 1)[0])
        depth_flag = f"--depth {depth} " if depth else ""
        run_checked(host, f"git clone {depth_flag}{shlex.quote(repo_url)} {shlex.quote(target)}")
        return f"cloned {repo_url} into {target}"

    return Step(
        name=name,
        detect=git_checkout_present(dest),
        apply=_apply,
        description=description or f"Clone {repo_url}",
    )


# ── Git settings ────────────────────────────────────────────────


def git_settings_match(settings: Mapping[str, str]) -> DetectFn:
    """Detection: every global git setting already has the wanted value."""

    def _detect(host: Host) -> Detection:
        if host.which("git") is None:
            return Detection.NEEDS_APPLY
        for key, value in settings.items():
            result = host.run(f"git config --global --get {shlex.quote(key)}")
            if not result.ok or result.stdout.strip() != value:
                return Detection.NEEDS_APPLY
        return Detection.SATISFIED

    return _detect


def git_settings_step(name: str, settings: Mapping[str, str], *, description: str = "") -> Step:
    """Global git configuration values."""

    def _apply(host: Host) -> str:
        require_binary(host, "git", name)
        for key, value in settings.items():
            run_checked(host, f"git config --global {shlex.quote(key)} {shlex.quote(value)}")
        return f"set {len(settings)} git settings"

    return Step(
        name=name,
        detect=git_settings_match(settings),
        apply=_apply,
        description=description or "Configure global git settings",
    )
