"""Adapters — host bindings for provisioning targets.

Public re-exports for convenient access.
"""

from provisioner.adapters.base import Host, run_checked
from provisioner.adapters.mock import FakeHost

__all__ = [
    "FakeHost",
    "Host",
    "run_checked",
]
