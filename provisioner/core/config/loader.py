"""
Configuration loader — reads provision.yml into a ProvisionConfig.

The file is optional: with no file every setting has a default, and the
operator can still choose the GitHub account on the command line.

Lookup order:
    1. explicit path (``--config``)
    2. provision.yml in the current directory or any parent
    3. ~/.config/provisioner/provision.yml
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from provisioner.core.data.server_profile import DEFAULT_GITHUB_USER

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "provision.yml"
USER_CONFIG_PATH = Path("~/.config/provisioner") / CONFIG_FILE


class ConfigError(Exception):
    """Raised when provisioning configuration is invalid."""


class ProvisionConfig(BaseModel):
    """Settings for a provisioning run."""

    github_user: str = DEFAULT_GITHUB_USER
    only: list[str] = Field(default_factory=list)
    skip: list[str] = Field(default_factory=list)
    critical: list[str] = Field(default_factory=list)
    sudo_refresh_interval: int = Field(default=60, ge=1)
    command_timeout: int | None = Field(default=1800, ge=1)
    state_dir: str = "~/.local/state/provisioner"

    @field_validator("github_user")
    @classmethod
    def _blank_user_means_default(cls, value: str) -> str:
        return value.strip() or DEFAULT_GITHUB_USER

    @property
    def state_path(self) -> Path:
        """Resolved state directory."""
        return Path(self.state_dir).expanduser()


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for provision.yml starting from the given directory, walking up.

    Falls back to the per-user config file.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to provision.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    user_config = USER_CONFIG_PATH.expanduser()
    if user_config.is_file():
        return user_config
    return None


def load_config(path: Path | None = None) -> ProvisionConfig:
    """Load and validate provisioning configuration.

    Args:
        path: Explicit path to provision.yml. If None, searches for one
            and returns defaults when nothing is found.

    Returns:
        Validated ProvisionConfig.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found, using defaults", CONFIG_FILE)
            return ProvisionConfig()
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "provision" key or be flat
    data = data.get("provision", data)

    try:
        config = ProvisionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s (github_user=%s)", path, config.github_user)
    return config
