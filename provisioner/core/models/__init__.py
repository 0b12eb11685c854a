"""
Domain models for the provisioner.

Re-exported here for convenient access:

    from provisioner.core.models import Step, Detection, StepResult, ProvisionState
"""

from provisioner.core.models.host import CommandResult
from provisioner.core.models.result import StepResult
from provisioner.core.models.state import ProvisionState, RunRecord, StepState
from provisioner.core.models.step import (
    Detection,
    Step,
    select_steps,
    validate_steps,
    with_critical,
)

__all__ = [
    # host.py
    "CommandResult",
    # step.py
    "Detection",
    # state.py
    "ProvisionState",
    "RunRecord",
    "Step",
    # result.py
    "StepResult",
    "StepState",
    "select_steps",
    "validate_steps",
    "with_critical",
]
