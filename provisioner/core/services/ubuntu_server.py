"""
Ubuntu server step catalog.

Builds the ordered step list that converges a fresh Ubuntu host to the
server profile: zsh with znap plugins and starship, Docker, git with
delta/meld, lazygit/lazydocker, neovim, and key-only SSH.

Each step follows one of the detection contracts in ``step_kinds``.
Steps that depend on an earlier, non-critical step re-check their
prerequisite inside ``apply`` instead of assuming it succeeded.
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass
from datetime import datetime

from provisioner.adapters.base import Host, run_checked
from provisioner.core.data import server_profile as profile
from provisioner.core.engine.errors import ApplyError, DetectionError
from provisioner.core.models.step import Detection, Step
from provisioner.core.services.step_kinds import (
    apt_install,
    apt_tool_step,
    binary_present,
    config_options_set,
    file_contains,
    git_checkout_step,
    git_settings_step,
    require_binary,
    set_config_option,
    tool_step,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerSettings:
    """Operator-supplied parameters for the catalog."""

    github_user: str = profile.DEFAULT_GITHUB_USER


def resolve_github_user(value: str | None, configured: str | None = None) -> str:
    """Pick the account whose keys are authorized.

    Blank input falls back to the configured value, then to the
    documented default.
    """
    for candidate in (value, configured):
        if candidate and candidate.strip():
            return candidate.strip()
    return profile.DEFAULT_GITHUB_USER


# ── Preflight ───────────────────────────────────────────────────


def _detect_not_root(host: Host) -> Detection:
    result = host.run("id -u")
    uid = result.stdout.strip()
    if not result.ok or not uid.isdigit():
        raise DetectionError(f"Cannot determine uid: {result.diagnostic}")
    return Detection.SATISFIED if uid != "0" else Detection.NEEDS_APPLY


def _apply_not_root(host: Host) -> str:
    uid = run_checked(host, "id -u")
    if uid == "0":
        raise ApplyError("Please run as a regular user with sudo privileges, not as root.")
    return f"running as uid {uid}"


# ── Privileges and power ────────────────────────────────────────


def _apply_sudoers(host: Host) -> str:
    # A broken sudoers.d entry locks sudo for everyone, so nothing reaches
    # /etc/sudoers.d until visudo has accepted it
    staged = run_checked(host, "mktemp")
    if not staged:
        raise ApplyError("mktemp returned no path")
    try:
        host.write_file(staged, profile.SUDOERS_LINE + "\n")
        check = host.run(f"visudo -cf {staged}", sudo=True)
        if not check.ok:
            raise ApplyError(f"Rejected by visudo: {check.diagnostic}")
        run_checked(
            host,
            f"install -m {profile.SUDOERS_MODE:o} -o root -g root {staged} {profile.SUDOERS_FILE}",
            sudo=True,
        )
    finally:
        host.run(f"rm -f {staged}")
    return f"wrote {profile.SUDOERS_FILE}"


def _apply_lid(host: Host) -> str:
    content = host.read_file(profile.LOGIND_CONF)
    if content is None:
        return "systemd-logind not found, nothing to configure"
    for key, value in profile.LOGIND_SETTINGS.items():
        content = set_config_option(content, key, value)
    host.write_file(profile.LOGIND_CONF, content, sudo=True)

    restart = host.run("systemctl restart systemd-logind", sudo=True)
    if not restart.ok:
        logger.warning("systemd-logind restart failed: %s", restart.diagnostic)
        return "lid switch set to ignore (takes effect after reboot)"
    return "lid switch set to ignore"


# ── Packages ────────────────────────────────────────────────────


def _detect_system_current(host: Host) -> Detection:
    fresh = host.run(
        f"find {profile.APT_LISTS_DIR} -maxdepth 0 -mmin -{profile.APT_MAX_AGE_MIN}"
    )
    if not fresh.ok:
        raise DetectionError(f"Cannot stat apt lists: {fresh.diagnostic}")
    if not fresh.stdout.strip():
        return Detection.NEEDS_APPLY

    simulated = host.run("apt-get -s upgrade")
    if not simulated.ok:
        raise DetectionError(f"apt-get -s upgrade failed: {simulated.diagnostic}")
    return (
        Detection.SATISFIED
        if "0 upgraded, 0 newly installed" in simulated.stdout
        else Detection.NEEDS_APPLY
    )


def _apply_update_system(host: Host) -> str:
    run_checked(host, "apt-get update", sudo=True)
    run_checked(host, "DEBIAN_FRONTEND=noninteractive apt-get upgrade -y", sudo=True)
    return "package index updated and packages upgraded"


def _install_docker(host: Host) -> str:
    apt_install(host, profile.DOCKER_PREREQS)
    run_checked(host, "install -m 0755 -d /etc/apt/keyrings", sudo=True)
    run_checked(
        host,
        f"curl -fsSL {profile.DOCKER_GPG_URL} | gpg --batch --yes --dearmor -o {profile.DOCKER_KEYRING}",
        sudo=True,
    )
    run_checked(host, f"chmod a+r {profile.DOCKER_KEYRING}", sudo=True)

    arch = run_checked(host, "dpkg --print-architecture")
    codename = run_checked(host, '. /etc/os-release && echo "$VERSION_CODENAME"')
    if not arch or not codename:
        raise ApplyError("Cannot determine architecture or release codename")
    host.write_file(
        profile.DOCKER_SOURCES,
        profile.DOCKER_REPO_LINE.format(
            arch=arch, keyring=profile.DOCKER_KEYRING, codename=codename
        ),
        sudo=True,
    )

    run_checked(host, "apt-get update", sudo=True)
    apt_install(host, profile.DOCKER_PACKAGES)
    return f"installed docker from download.docker.com ({codename}/{arch})"


def _detect_docker_group(host: Host) -> Detection:
    user = host.current_user()
    result = host.run(f"id -nG {shlex.quote(user)}")
    if not result.ok:
        raise DetectionError(f"Cannot list groups for {user}: {result.diagnostic}")
    groups = result.stdout.split()
    return Detection.SATISFIED if profile.DOCKER_GROUP in groups else Detection.NEEDS_APPLY


def _apply_docker_group(host: Host) -> str:
    require_binary(host, "docker", "docker-group")
    user = host.current_user()
    run_checked(host, f"usermod -aG {profile.DOCKER_GROUP} {shlex.quote(user)}", sudo=True)
    return f"added {user} to the {profile.DOCKER_GROUP} group"


def _install_neovim(host: Host) -> str:
    apt_install(host, ["software-properties-common"])
    run_checked(host, f"add-apt-repository -y {profile.NEOVIM_PPA}", sudo=True)
    run_checked(host, "apt-get update", sudo=True)
    apt_install(host, ["neovim"])
    return f"installed neovim from {profile.NEOVIM_PPA}"


# ── Release downloads ───────────────────────────────────────────


def latest_release_tag(host: Host, repo: str) -> str:
    """Tag name of a GitHub repository's latest release."""
    url = profile.GITHUB_LATEST_RELEASE.format(repo=repo)
    body = run_checked(host, f"curl -fsSL {shlex.quote(url)}")
    try:
        tag = json.loads(body)["tag_name"]
    except (ValueError, KeyError, TypeError) as e:
        raise ApplyError(f"Cannot read latest release of {repo}: {e}") from e
    if not isinstance(tag, str) or not tag:
        raise ApplyError(f"Latest release of {repo} has no tag")
    return tag


def _machine_arch(host: Host, table: dict[str, str]) -> str:
    machine = run_checked(host, "uname -m")
    if machine not in table:
        raise ApplyError(f"Unsupported architecture: {machine}")
    return table[machine]


def _install_starship(host: Host) -> str:
    run_checked(host, profile.STARSHIP_INSTALL)
    return "installed starship"


def _install_lazygit(host: Host) -> str:
    version = latest_release_tag(host, profile.LAZYGIT_REPO).removeprefix("v")
    arch = _machine_arch(host, profile.LAZYGIT_ARCH)
    url = profile.LAZYGIT_ASSET.format(version=version, arch=arch)

    tmp = run_checked(host, "mktemp -d")
    try:
        run_checked(host, f"curl -fsSL -o {tmp}/lazygit.tar.gz {shlex.quote(url)}")
        run_checked(host, f"tar -xzf {tmp}/lazygit.tar.gz -C {tmp} lazygit")
        run_checked(host, f"install {tmp}/lazygit /usr/local/bin", sudo=True)
    finally:
        host.run(f"rm -rf {shlex.quote(tmp)}")
    return f"installed lazygit {version}"


def _install_lazydocker(host: Host) -> str:
    run_checked(host, profile.LAZYDOCKER_INSTALL)
    return "installed lazydocker"


def _install_delta(host: Host) -> str:
    version = latest_release_tag(host, profile.DELTA_REPO)
    arch = _machine_arch(host, profile.DEB_ARCH)
    url = profile.DELTA_ASSET.format(version=version, arch=arch)

    tmp = run_checked(host, "mktemp -d")
    try:
        run_checked(host, f"curl -fsSL -o {tmp}/delta.deb {shlex.quote(url)}")
        run_checked(host, f"dpkg -i {tmp}/delta.deb", sudo=True)
    finally:
        host.run(f"rm -rf {shlex.quote(tmp)}")
    return f"installed delta {version}"


# ── Shell ───────────────────────────────────────────────────────


def _apply_starship_config(host: Host) -> str:
    require_binary(host, "starship", "configure-starship")
    preset = run_checked(host, f"starship preset {profile.STARSHIP_PRESET}")
    if not preset:
        raise ApplyError(f"starship preset {profile.STARSHIP_PRESET} produced no output")
    host.write_file(profile.STARSHIP_CONFIG, preset + "\n")
    return f"wrote {profile.STARSHIP_CONFIG} ({profile.STARSHIP_PRESET})"


def plugin_dir(plugin: str) -> str:
    """Where znap keeps a checked-out plugin."""
    return f"{profile.ZNAP_REPOS_DIR}/{plugin.split('/')[-1]}"


def _detect_znap_plugins(host: Host) -> Detection:
    missing = [p for p in profile.ZNAP_PLUGINS if not host.is_dir(plugin_dir(p))]
    return Detection.NEEDS_APPLY if missing else Detection.SATISFIED


def _apply_znap_plugins(host: Host) -> str:
    require_binary(host, "zsh", "znap-plugins")
    if not host.exists(f"{profile.ZNAP_DIR}/znap.zsh"):
        raise ApplyError(f"znap is not installed at {profile.ZNAP_DIR}")

    lines = [
        f"zstyle ':znap:*' repos-dir {profile.ZNAP_REPOS_DIR}",
        f"source {profile.ZNAP_DIR}/znap.zsh",
        *(f"znap source {p}" for p in profile.ZNAP_PLUGINS),
    ]
    run_checked(host, f"zsh -c {shlex.quote('; '.join(lines))}")
    return f"fetched {len(profile.ZNAP_PLUGINS)} znap plugins"


def _apply_zshrc(host: Host) -> str:
    existing = host.read_file(profile.ZSHRC_PATH)
    backup = None
    if existing is not None and profile.ZSHRC_MARKER not in existing:
        backup = f"{profile.ZSHRC_PATH}.backup.{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        host.copy_file(profile.ZSHRC_PATH, backup)
    elif existing is not None:
        return f"{profile.ZSHRC_PATH} already configured"

    host.write_file(profile.ZSHRC_PATH, profile.ZSHRC)
    if backup:
        return f"wrote {profile.ZSHRC_PATH} (previous saved to {backup})"
    return f"wrote {profile.ZSHRC_PATH}"


def _login_shell(host: Host, user: str) -> str:
    entry = host.run(f"getent passwd {shlex.quote(user)}")
    fields = entry.stdout.strip().split(":")
    if not entry.ok or len(fields) < 7:
        raise DetectionError(f"No passwd entry for {user}")
    return fields[6]


def _detect_default_shell(host: Host) -> Detection:
    zsh = host.which("zsh")
    if zsh is None:
        return Detection.NEEDS_APPLY
    return (
        Detection.SATISFIED
        if _login_shell(host, host.current_user()) == zsh
        else Detection.NEEDS_APPLY
    )


def _apply_default_shell(host: Host) -> str:
    zsh = require_binary(host, "zsh", "set-default-shell")
    user = host.current_user()
    run_checked(host, f"chsh -s {shlex.quote(zsh)} {shlex.quote(user)}", sudo=True)
    return f"login shell for {user} set to {zsh}"


# ── SSH ─────────────────────────────────────────────────────────


def fetch_github_keys(host: Host, user: str) -> list[str]:
    """Public keys published for a GitHub account."""
    url = profile.GITHUB_KEYS_URL.format(user=user)
    result = host.run(f"curl -fsSL {shlex.quote(url)}")
    if not result.ok:
        raise ApplyError(f"Cannot fetch {url}: {result.diagnostic}")
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _authorized_keys(host: Host) -> set[str]:
    content = host.read_file(profile.AUTHORIZED_KEYS) or ""
    return {line.strip() for line in content.splitlines() if line.strip()}


def _ssh_keys_step(settings: ServerSettings) -> Step:
    user = settings.github_user

    def _detect(host: Host) -> Detection:
        try:
            keys = fetch_github_keys(host, user)
        except ApplyError as e:
            raise DetectionError(e.detail) from e
        if not keys:
            return Detection.NEEDS_APPLY
        present = _authorized_keys(host)
        return Detection.SATISFIED if all(k in present for k in keys) else Detection.NEEDS_APPLY

    def _apply(host: Host) -> str:
        keys = fetch_github_keys(host, user)
        if not keys:
            raise ApplyError(f"GitHub account '{user}' has no public keys")

        host.make_dirs(profile.SSH_DIR, mode=0o700)
        # Keys may have been added since detection ran
        present = _authorized_keys(host)
        missing = [k for k in keys if k not in present]
        existing = host.read_file(profile.AUTHORIZED_KEYS)
        prefix = "\n" if existing and not existing.endswith("\n") else ""
        if missing:
            host.append_file(
                profile.AUTHORIZED_KEYS,
                prefix + "".join(f"{k}\n" for k in missing),
                mode=0o600,
            )
        return f"authorized {len(missing)} new key(s) from github.com/{user}"

    return Step(
        name="authorize-ssh-keys",
        detect=_detect,
        apply=_apply,
        description=f"Authorize SSH keys published by github.com/{user}",
    )


def _sshd_mismatches(host: Host) -> list[str]:
    """Settings whose effective value (``sshd -T``) is not the wanted one."""
    result = host.run("sshd -T", sudo=True)
    if not result.ok:
        raise DetectionError(f"sshd -T failed: {result.diagnostic}")
    effective = {}
    for line in result.stdout.splitlines():
        key, _, value = line.strip().partition(" ")
        if key:
            effective[key.lower()] = value.strip().lower()
    return [
        f"{key.lower()} {effective.get(key.lower(), '(unset)')}"
        for key, value in profile.SSHD_SETTINGS.items()
        if effective.get(key.lower()) != value.lower()
    ]


def _detect_sshd(host: Host) -> Detection:
    # Included drop-ins can override the main file; ask sshd itself
    return Detection.NEEDS_APPLY if _sshd_mismatches(host) else Detection.SATISFIED


def _apply_sshd(host: Host) -> str:
    if not _authorized_keys(host):
        raise ApplyError(
            f"Refusing to disable password authentication: {profile.AUTHORIZED_KEYS} has no keys"
        )

    original = host.read_file(profile.SSHD_CONFIG)
    if original is None:
        raise ApplyError(f"{profile.SSHD_CONFIG} not found; is openssh-server installed?")
    content = original
    for key, value in profile.SSHD_SETTINGS.items():
        content = set_config_option(
            content, key, value, sep=" ", section_end=profile.SSHD_MATCH_BLOCK
        )
    host.write_file(profile.SSHD_CONFIG, content, sudo=True)

    drop_in = host.is_dir(profile.SSHD_DROP_IN_DIR)
    drop_in_original = host.read_file(profile.SSHD_DROP_IN, sudo=True) if drop_in else None
    if drop_in:
        host.write_file(
            profile.SSHD_DROP_IN,
            "".join(f"{k} {v}\n" for k, v in profile.SSHD_SETTINGS.items()),
            sudo=True,
            mode=0o644,
        )

    check = host.run("sshd -t", sudo=True)
    if not check.ok:
        host.write_file(profile.SSHD_CONFIG, original, sudo=True)
        if drop_in and drop_in_original is None:
            host.run(f"rm -f {profile.SSHD_DROP_IN}", sudo=True)
        elif drop_in:
            host.write_file(profile.SSHD_DROP_IN, drop_in_original, sudo=True)
        raise ApplyError(f"sshd rejected the new configuration: {check.diagnostic}")

    restart = host.run("systemctl restart ssh || systemctl restart sshd", sudo=True)
    if not restart.ok:
        raise ApplyError(f"Cannot restart sshd: {restart.diagnostic}")

    try:
        mismatches = _sshd_mismatches(host)
    except DetectionError as e:
        raise ApplyError(f"Cannot verify the sshd configuration: {e}") from e
    if mismatches:
        raise ApplyError(
            f"sshd still reports {', '.join(mismatches)}; "
            f"another file in {profile.SSHD_DROP_IN_DIR} overrides {profile.SSHD_DROP_IN}"
        )
    return "sshd configured for key-only authentication"


# ── Catalog ─────────────────────────────────────────────────────


def build_server_steps(settings: ServerSettings | None = None) -> list[Step]:
    """The ordered server provisioning steps."""
    settings = settings or ServerSettings()

    return [
        Step(
            name="check-not-root",
            detect=_detect_not_root,
            apply=_apply_not_root,
            critical=True,
            description="Refuse to run as root",
        ),
        Step(
            name="configure-sudo",
            detect=file_contains(profile.SUDOERS_FILE, [profile.SUDOERS_LINE], sudo=True),
            apply=_apply_sudoers,
            critical=True,
            description="Ask for the sudo password once per session",
        ),
        Step(
            name="configure-lid",
            detect=config_options_set(profile.LOGIND_CONF, profile.LOGIND_SETTINGS),
            apply=_apply_lid,
            description="Do not suspend when the laptop lid closes",
        ),
        Step(
            name="update-system",
            detect=_detect_system_current,
            apply=_apply_update_system,
            critical=True,
            description="Refresh the package index and upgrade packages",
        ),
        apt_tool_step("install-zsh", "zsh"),
        apt_tool_step("install-git", "git"),
        tool_step(
            "install-docker",
            "docker",
            _install_docker,
            description="Install Docker Engine from download.docker.com",
        ),
        Step(
            name="docker-group",
            detect=_detect_docker_group,
            apply=_apply_docker_group,
            description="Let the operator use docker without sudo",
        ),
        tool_step("install-starship", "starship", _install_starship),
        Step(
            name="configure-starship",
            detect=file_contains(profile.STARSHIP_CONFIG, []),
            apply=_apply_starship_config,
            description=f"Write the starship '{profile.STARSHIP_PRESET}' preset",
        ),
        git_checkout_step(
            "install-znap",
            profile.ZNAP_REPO,
            profile.ZNAP_DIR,
            depth=1,
            description="Install the znap zsh plugin manager",
        ),
        Step(
            name="znap-plugins",
            detect=_detect_znap_plugins,
            apply=_apply_znap_plugins,
            description=f"Fetch {len(profile.ZNAP_PLUGINS)} zsh plugins",
        ),
        tool_step("install-lazygit", "lazygit", _install_lazygit),
        tool_step("install-lazydocker", "lazydocker", _install_lazydocker),
        tool_step("install-delta", "delta", _install_delta),
        apt_tool_step("install-meld", "meld"),
        git_settings_step(
            "configure-git-tools",
            profile.GIT_TOOL_SETTINGS,
            description="Use delta as pager and meld as diff/merge tool",
        ),
        tool_step(
            "install-neovim",
            "nvim",
            _install_neovim,
            description="Install neovim from the unstable PPA",
        ),
        git_checkout_step(
            "clone-neovim-config",
            profile.NVIM_CONFIG_REPO,
            profile.NVIM_CONFIG_DIR,
        ),
        _ssh_keys_step(settings),
        Step(
            name="harden-sshd",
            detect=_detect_sshd,
            apply=_apply_sshd,
            description="Allow key-based SSH authentication only",
        ),
        Step(
            name="create-zshrc",
            detect=file_contains(profile.ZSHRC_PATH, [profile.ZSHRC_MARKER]),
            apply=_apply_zshrc,
            description="Write ~/.zshrc (existing file is backed up)",
        ),
        Step(
            name="set-default-shell",
            detect=_detect_default_shell,
            apply=_apply_default_shell,
            description="Make zsh the login shell",
        ),
    ]
