"""
Config check use case — validate provision.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import ConfigError, ProvisionConfig, find_config_file, load_config
from provisioner.core.models.step import unknown_step_names
from provisioner.core.services.ubuntu_server import ServerSettings, build_server_steps


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: ProvisionConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "github_user": self.config.github_user if self.config else None,
            "state_dir": str(self.config.state_path) if self.config else None,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate provisioning configuration and report issues.

    A missing config file is not an error: every setting has a default.

    Args:
        config_path: Optional explicit path to provision.yml.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            result.warnings.append("No provision.yml found; using defaults.")
    result.config_path = config_path

    try:
        config = load_config(config_path)
        result.config = config
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    # Semantic checks
    steps = build_server_steps(ServerSettings(github_user=config.github_user))
    for label, names in (("only", config.only), ("skip", config.skip), ("critical", config.critical)):
        unknown = unknown_step_names(steps, names)
        if unknown:
            result.errors.append(f"Unknown step(s) in '{label}': {', '.join(unknown)}")

    overlap = sorted(set(config.only) & set(config.skip))
    if overlap:
        result.warnings.append(
            f"Steps listed in both 'only' and 'skip' will not run: {', '.join(overlap)}"
        )

    if config.only and not set(config.only) - set(config.skip):
        result.warnings.append("'only' and 'skip' together select no steps.")

    result.valid = len(result.errors) == 0
    return result
