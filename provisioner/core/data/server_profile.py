"""
Server profile — the toolchain an Ubuntu host is converged to.

Pure data, no logic. Package names, URLs, plugin lists and dotfile
contents live here; the step catalog in ``core/services/ubuntu_server.py``
turns them into steps.
"""

from __future__ import annotations

# Account whose public keys are authorized when the operator gives none
DEFAULT_GITHUB_USER = "dabstractor"

GITHUB_KEYS_URL = "https://github.com/{user}.keys"

# ── Privileges ──────────────────────────────────────────────────

SUDOERS_FILE = "/etc/sudoers.d/session-sudo"
SUDOERS_LINE = "Defaults timestamp_timeout=-1"
SUDOERS_MODE = 0o440

# ── Power ───────────────────────────────────────────────────────

LOGIND_CONF = "/etc/systemd/logind.conf"
LOGIND_SETTINGS: dict[str, str] = {
    "HandleLidSwitch": "ignore",
    "HandleLidSwitchExternalPower": "ignore",
}

# ── Packages ────────────────────────────────────────────────────

APT_LISTS_DIR = "/var/lib/apt/lists"
APT_MAX_AGE_MIN = 24 * 60

DOCKER_PREREQS = ["ca-certificates", "curl", "gnupg"]
DOCKER_PACKAGES = [
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
]
DOCKER_GPG_URL = "https://download.docker.com/linux/ubuntu/gpg"
DOCKER_KEYRING = "/etc/apt/keyrings/docker.gpg"
DOCKER_SOURCES = "/etc/apt/sources.list.d/docker.list"
DOCKER_REPO_LINE = (
    "deb [arch={arch} signed-by={keyring}] "
    "https://download.docker.com/linux/ubuntu {codename} stable\n"
)
DOCKER_GROUP = "docker"

NEOVIM_PPA = "ppa:neovim-ppa/unstable"

# ── Release downloads ───────────────────────────────────────────

STARSHIP_INSTALL = "curl -sS https://starship.rs/install.sh | sh -s -- -y"
STARSHIP_PRESET = "no-empty-icons"
STARSHIP_CONFIG = "~/.config/starship.toml"

LAZYDOCKER_INSTALL = (
    "curl -fsSL https://raw.githubusercontent.com/jesseduffield/lazydocker/"
    "master/scripts/install_update_linux.sh | bash"
)

GITHUB_LATEST_RELEASE = "https://api.github.com/repos/{repo}/releases/latest"

LAZYGIT_REPO = "jesseduffield/lazygit"
LAZYGIT_ASSET = (
    "https://github.com/jesseduffield/lazygit/releases/download/"
    "v{version}/lazygit_{version}_Linux_{arch}.tar.gz"
)
# uname -m → lazygit asset arch
LAZYGIT_ARCH = {"x86_64": "x86_64", "aarch64": "arm64", "armv7l": "armv6"}

DELTA_REPO = "dandavison/delta"
DELTA_ASSET = (
    "https://github.com/dandavison/delta/releases/download/"
    "{version}/git-delta_{version}_{arch}.deb"
)
# uname -m → Debian arch
DEB_ARCH = {"x86_64": "amd64", "aarch64": "arm64", "armv7l": "armhf"}

# ── Shell ───────────────────────────────────────────────────────

ZNAP_REPO = "https://github.com/marlonrichert/zsh-snap.git"
ZNAP_DIR = "~/.config/znap/src"
# Znap clones plugins next to itself
ZNAP_REPOS_DIR = "~/.config/znap"

ZNAP_PLUGINS = [
    "Aloxaf/fzf-tab",
    "ael-code/zsh-colored-man-pages",
    "jeffreytse/zsh-vi-mode",
    "mafredri/zsh-async",
    "momo-lab/zsh-abbrev-alias",
    "robbyrussel/oh-my-zsh",
    "rupa/z",
    "sorin-ionescu/prezto",
    "zsh-users/zsh-autosuggestions",
    "zsh-users/zsh-completions",
    "zsh-users/zsh-syntax-highlighting",
]

ZSHRC_PATH = "~/.zshrc"
ZSHRC_MARKER = "# Znap initialization"


def _zshrc() -> str:
    plugins = "\n".join(f"znap source {p}" for p in ZNAP_PLUGINS)
    return f"""{ZSHRC_MARKER}
zstyle ':znap:*' repos-dir {ZNAP_REPOS_DIR}
source {ZNAP_DIR}/znap.zsh

# Load plugins
{plugins}

# Starship prompt
eval "$(starship init zsh)"

# Completion settings
autoload -Uz compinit
compinit

# History settings
HISTSIZE=10000
SAVEHIST=10000
HISTFILE=~/.zsh_history
setopt SHARE_HISTORY
setopt HIST_IGNORE_ALL_DUPS
setopt HIST_FIND_NO_DUPS

# Editor aliases
alias vim='nvim'
alias vi='nvim'
alias nv='nvim'

# ls aliases
alias ll='ls -lah'
alias la='ls -A'
alias l='ls -CF'

# Docker aliases
alias dc='docker compose'
alias dcu='docker compose up -d'
alias dcl='docker compose logs'
alias dcf='docker compose logs -f'
alias dcs='docker compose stop'
alias de='docker exec -it'

# TUI tool aliases
alias lg='lazygit'
alias ld='lazydocker'

# Git aliases
alias gpc='git add -A && git commit -n -m "progress commit" && git push'
alias pgc='git add -A && git commit -n -m "progress commit"'

# Other utilities
alias s='sudo -E'
alias g='grep -i'
"""


ZSHRC = _zshrc()

# ── Editor ──────────────────────────────────────────────────────

NVIM_CONFIG_REPO = "https://github.com/dabstractor/nvim-config.git"
NVIM_CONFIG_DIR = "~/.config/nvim"

# ── Git ─────────────────────────────────────────────────────────

GIT_TOOL_SETTINGS: dict[str, str] = {
    "core.pager": "delta",
    "interactive.diffFilter": "delta --color-only",
    "delta.navigate": "true",
    "delta.light": "false",
    "merge.conflictstyle": "diff3",
    "diff.colorMoved": "default",
    "diff.tool": "meld",
    "merge.tool": "meld",
}

# ── SSH ─────────────────────────────────────────────────────────

SSH_DIR = "~/.ssh"
AUTHORIZED_KEYS = "~/.ssh/authorized_keys"
SSHD_CONFIG = "/etc/ssh/sshd_config"
SSHD_DROP_IN_DIR = "/etc/ssh/sshd_config.d"
# sshd keeps the first value it reads; 00- sorts ahead of distro drop-ins
SSHD_DROP_IN = "/etc/ssh/sshd_config.d/00-provision.conf"
SSHD_MATCH_BLOCK = r"^[ \t]*Match[ \t]"
SSHD_SETTINGS: dict[str, str] = {
    "PasswordAuthentication": "no",
    "PubkeyAuthentication": "yes",
}

# Printed after a completed run
POST_RUN_NOTES = [
    "You may need to log out and log back in for group changes (Docker) to take effect",
    "Your default shell has been changed to zsh - restart your terminal or run 'zsh'",
    "SSH has been configured to only allow key-based authentication",
    "Sudo password will be required only once per session",
    "Run 'source ~/.zshrc' to load your new shell configuration",
]
