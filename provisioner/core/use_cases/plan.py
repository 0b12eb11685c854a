"""
Plan use case — report what a run would do, without doing it.

Runs every selected step's detection probe against the host and reports
which steps are already satisfied. Nothing is applied and no state is
written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.adapters.base import Host
from provisioner.core.config.loader import ConfigError, load_config
from provisioner.core.engine.executor import PlannedStep, plan_steps
from provisioner.core.models.step import Detection
from provisioner.core.services.ubuntu_server import resolve_github_user
from provisioner.core.use_cases.run import build_mock_host, prepare_steps

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """Detection results for the selected steps."""

    github_user: str = ""
    mock: bool = False
    steps: list[PlannedStep] = field(default_factory=list)
    error: str | None = None

    @property
    def pending(self) -> list[PlannedStep]:
        return [s for s in self.steps if s.detection is Detection.NEEDS_APPLY]

    @property
    def satisfied(self) -> list[PlannedStep]:
        return [s for s in self.steps if s.detection is Detection.SATISFIED]

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["github_user"] = self.github_user
        result["mock"] = self.mock
        result["pending"] = len(self.pending)
        result["satisfied"] = len(self.satisfied)
        result["steps"] = [s.to_dict() for s in self.steps]
        return result


def plan_provisioning(
    config_path: Path | None = None,
    github_user: str | None = None,
    only: list[str] | None = None,
    skip: list[str] | None = None,
    mock_mode: bool = False,
    host: Host | None = None,
) -> PlanResult:
    """Probe the host for every selected step.

    Args:
        config_path: Optional explicit path to provision.yml.
        github_user: Account whose SSH keys would be authorized.
        only: Plan only these steps.
        skip: Leave these steps out.
        mock_mode: Probe a simulated host.
        host: Pre-built host (tests).

    Returns:
        PlanResult with one PlannedStep per selected step.
    """
    result = PlanResult(mock=mock_mode)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    user = resolve_github_user(github_user, config.github_user)
    result.github_user = user

    try:
        steps = prepare_steps(config, user, only=only, skip=skip)
    except ValueError as e:
        result.error = str(e)
        return result

    if host is None:
        if mock_mode:
            host = build_mock_host(user)
        else:
            from provisioner.adapters.shell.command import LocalHost

            host = LocalHost(default_timeout=config.command_timeout)

    result.steps = plan_steps(steps, host)
    logger.info(
        "Plan: %d pending, %d satisfied",
        len(result.pending),
        len(result.satisfied),
    )
    return result
