"""
Run use case — provision the host.

This is the top-level orchestrator: it loads config, resolves the target
account, builds and selects steps, sets up the host and the privilege
keep-alive, executes, and persists the outcome. An aborted run is not an
exception at this level: it is a RunResult with a non-zero exit code.
"""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from provisioner.adapters.base import Host
from provisioner.adapters.mock import FAKE_TEMP_PATH, FakeHost
from provisioner.core.config.loader import ConfigError, ProvisionConfig, load_config
from provisioner.core.data import server_profile as profile
from provisioner.core.engine.errors import AbortError
from provisioner.core.engine.executor import ResultCallback, execute_steps, generate_run_id
from provisioner.core.engine.keepalive import KeepAlive, NullKeepAlive, SudoKeepAlive
from provisioner.core.engine.report import RunReport
from provisioner.core.models.step import Step, select_steps, with_critical
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import (
    default_state_path,
    load_state,
    record_run,
    save_state,
)
from provisioner.core.services.ubuntu_server import (
    ServerSettings,
    build_server_steps,
    resolve_github_user,
)

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of a provisioning run."""

    report: RunReport | None = None
    config: ProvisionConfig | None = None
    github_user: str = ""
    steps_planned: list[str] = field(default_factory=list)
    mock: bool = False
    aborted_step: str | None = None
    abort_detail: str | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return self.report.exit_code if self.report else 1

    def to_dict(self) -> dict:
        result: dict = {"exit_code": self.exit_code}
        if self.error:
            result["error"] = self.error
            return result

        result["github_user"] = self.github_user
        result["mock"] = self.mock
        result["steps_planned"] = self.steps_planned
        if self.aborted_step:
            result["aborted_step"] = self.aborted_step
            result["abort_detail"] = self.abort_detail
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def prepare_steps(
    config: ProvisionConfig,
    github_user: str,
    only: list[str] | None = None,
    skip: list[str] | None = None,
) -> list[Step]:
    """Build the catalog for an account and apply config/CLI selection.

    Command-line ``only``/``skip`` replace the configured lists.

    Raises:
        ValueError: A selection or critical override names an unknown step.
    """
    steps = build_server_steps(ServerSettings(github_user=github_user))
    steps = with_critical(steps, config.critical)
    return select_steps(
        steps,
        only=only if only else config.only,
        skip=skip if skip else config.skip,
    )


def _cloned(dest: str, *files: str):
    def _effect(host: FakeHost) -> None:
        host.make_dirs(f"{dest}/.git")
        for name in files:
            host.write_file(f"{dest}/{name}", "")

    return _effect


def _installed(src: str, dest: str):
    def _effect(host: FakeHost) -> None:
        host.write_file(dest, host.files.get(src, ""))

    return _effect


def _sshd_reloaded(host: FakeHost) -> None:
    host.on("sshd -T", stdout=_sshd_effective(host))


def _sshd_effective(host: FakeHost) -> str:
    settings = {"passwordauthentication": "yes", "pubkeyauthentication": "yes"}
    if profile.SSHD_DROP_IN in host.files:
        settings.update({k.lower(): v for k, v in profile.SSHD_SETTINGS.items()})
    return "".join(f"{k} {v}\n" for k, v in settings.items())


def build_mock_host(github_user: str) -> FakeHost:
    """A simulated fresh Ubuntu host on which every step can succeed."""
    host = FakeHost(
        files={
            profile.SSHD_CONFIG: f"Include {profile.SSHD_DROP_IN_DIR}/*.conf\n#PasswordAuthentication yes\n",
        }
    )
    host.make_dirs(profile.SSHD_DROP_IN_DIR)
    host.on("sshd -T", stdout=_sshd_effective(host))
    host.on("systemctl restart ssh", effect=_sshd_reloaded)
    host.on(
        f"install -m 440 -o root -g root {FAKE_TEMP_PATH} {profile.SUDOERS_FILE}",
        effect=_installed(FAKE_TEMP_PATH, profile.SUDOERS_FILE),
    )

    host.on(
        "curl -fsSL " + profile.GITHUB_KEYS_URL.format(user=github_user),
        stdout=f"ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAImock {github_user}@github\n",
    )
    host.on("curl -fsSL https://api.github.com/", stdout='{"tag_name": "v0.0.0"}')
    host.on("uname -m", stdout="x86_64\n")
    host.on("mktemp -d", stdout="/tmp/provision.mock\n")
    host.on("dpkg --print-architecture", stdout="amd64\n")
    host.on(". /etc/os-release", stdout="noble\n")
    host.on(f"starship preset {profile.STARSHIP_PRESET}", stdout="# starship preset (mock)\n")

    apt = "DEBIAN_FRONTEND=noninteractive apt-get install -y"
    host.on(f"{apt} zsh", effect=host.installs("zsh"))
    host.on(f"{apt} git", effect=host.installs("git"))
    host.on(f"{apt} meld", effect=host.installs("meld"))
    host.on(f"{apt} neovim", effect=host.installs("nvim"))
    host.on(f"{apt} docker-ce", effect=host.installs("docker"))
    host.on(profile.STARSHIP_INSTALL, effect=host.installs("starship"))
    host.on(profile.LAZYDOCKER_INSTALL, effect=host.installs("lazydocker"))
    host.on("install /tmp/provision.mock/lazygit", effect=host.installs("lazygit"))
    host.on("dpkg -i /tmp/provision.mock/delta.deb", effect=host.installs("delta"))
    host.on(
        f"git clone --depth 1 {profile.ZNAP_REPO}",
        effect=_cloned(profile.ZNAP_DIR, "znap.zsh"),
    )
    host.on(f"git clone {profile.NVIM_CONFIG_REPO}", effect=_cloned(profile.NVIM_CONFIG_DIR))
    return host


def run_provisioning(
    config_path: Path | None = None,
    github_user: str | None = None,
    only: list[str] | None = None,
    skip: list[str] | None = None,
    mock_mode: bool = False,
    host: Host | None = None,
    keepalive: KeepAlive | None = None,
    on_result: ResultCallback | None = None,
    state_dir: Path | None = None,
) -> RunResult:
    """Converge the host to the server profile.

    Args:
        config_path: Optional explicit path to provision.yml.
        github_user: Account whose SSH keys are authorized. Blank means
            the configured account, then the documented default.
        only: Run only these steps.
        skip: Skip these steps.
        mock_mode: Provision a simulated host instead of this machine.
        host: Pre-built host (tests).
        keepalive: Pre-built keep-alive (tests).
        on_result: Progress callback, called as each step finishes.
        state_dir: Override the configured state directory.

    Returns:
        RunResult with the report and exit code.
    """
    result = RunResult(mock=mock_mode)

    # ── Load config ──────────────────────────────────────────────
    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.config = config

    user = resolve_github_user(github_user, config.github_user)
    result.github_user = user

    # ── Build steps ──────────────────────────────────────────────
    try:
        steps = prepare_steps(config, user, only=only, skip=skip)
    except ValueError as e:
        result.error = str(e)
        return result
    result.steps_planned = [s.name for s in steps]

    if not steps:
        result.error = "No steps selected."
        return result

    # ── Host and keep-alive ──────────────────────────────────────
    if host is None:
        if mock_mode:
            host = build_mock_host(user)
        else:
            from provisioner.adapters.shell.command import LocalHost

            host = LocalHost(default_timeout=config.command_timeout)
            if keepalive is None:
                keepalive = SudoKeepAlive(host, interval=config.sudo_refresh_interval)
    if keepalive is None:
        keepalive = NullKeepAlive()

    # ── Execute ──────────────────────────────────────────────────
    run_id = generate_run_id()
    started_at = datetime.now(UTC).isoformat()
    start = time.monotonic()
    logger.info("Starting %s: %d steps for github user '%s'", run_id, len(steps), user)

    try:
        report = execute_steps(
            steps,
            host,
            keepalive=keepalive,
            on_result=on_result,
            run_id=run_id,
        )
    except AbortError as e:
        logger.info("Run %s aborted at '%s': %s", run_id, e.step, e.detail)
        report = e.report
        result.aborted_step = e.step
        result.abort_detail = e.detail
    result.report = report

    # ── Persist ──────────────────────────────────────────────────
    state_root = state_dir or config.state_path
    _persist(
        report,
        state_root,
        github_user=user,
        mock=mock_mode,
        started_at=started_at,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return result


def _persist(
    report: RunReport,
    state_dir: Path,
    *,
    github_user: str,
    mock: bool,
    started_at: str,
    duration_ms: int,
) -> None:
    ended_at = datetime.now(UTC).isoformat()

    entry = AuditEntry.from_report(
        report,
        hostname=socket.gethostname(),
        github_user=github_user,
        mock=mock,
        duration_ms=duration_ms,
    )
    AuditWriter(state_dir=state_dir).write(entry)

    # Mock runs describe a simulated host; keep them out of the host's state
    if mock:
        return
    path = default_state_path(state_dir)
    try:
        state = record_run(load_state(path), report, github_user, started_at, ended_at)
        save_state(state, path)
    except OSError as e:
        logger.error("Could not save run state: %s", e)
