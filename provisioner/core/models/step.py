"""
Step model — the unit of provisioning work.

A Step pairs a side-effect-free detection probe with an apply action.
Steps are static configuration: they are built once per process by the
step catalog and never mutated while a run is in progress.

The position of a Step in the list handed to the executor IS its order.
There is no dependency graph and no reordering.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from provisioner.adapters.base import Host


class Detection(str, enum.Enum):
    """Outcome of a Step's detection probe."""

    SATISFIED = "already_satisfied"
    NEEDS_APPLY = "needs_apply"


DetectFn = Callable[["Host"], Detection]
ApplyFn = Callable[["Host"], str]


@dataclass(frozen=True)
class Step:
    """A named provisioning step.

    Attributes:
        name: Unique identifier (e.g. ``install-docker``).
        detect: Read-only probe of host state.
        apply: Side-effecting action. Returns diagnostic text on success,
            raises ``ApplyError`` on failure.
        critical: If True, a failed apply halts the remaining sequence.
        description: One-line human description for listings.
    """

    name: str
    detect: DetectFn
    apply: ApplyFn
    critical: bool = False
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "critical": self.critical,
            "description": self.description,
        }


def validate_steps(steps: Sequence[Step]) -> None:
    """Reject step lists with duplicate names.

    Raises:
        ValueError: If any name appears more than once.
    """
    seen: set[str] = set()
    dupes: list[str] = []
    for step in steps:
        if step.name in seen and step.name not in dupes:
            dupes.append(step.name)
        seen.add(step.name)
    if dupes:
        raise ValueError(f"Duplicate step names: {', '.join(dupes)}")


def with_critical(steps: Sequence[Step], names: Iterable[str]) -> list[Step]:
    """Return a copy of ``steps`` with the named steps marked critical."""
    wanted = set(names)
    _check_known(steps, wanted)
    return [
        replace(step, critical=True) if step.name in wanted else step
        for step in steps
    ]


def select_steps(
    steps: Sequence[Step],
    only: Iterable[str] | None = None,
    skip: Iterable[str] | None = None,
) -> list[Step]:
    """Filter a step list by name, preserving the original order.

    Args:
        steps: The full ordered step list.
        only: If non-empty, keep only these names.
        skip: Names to drop.

    Raises:
        ValueError: If a name in ``only`` or ``skip`` is not a known step.
    """
    only_set = set(only or ())
    skip_set = set(skip or ())
    _check_known(steps, only_set | skip_set)

    selected = []
    for step in steps:
        if only_set and step.name not in only_set:
            continue
        if step.name in skip_set:
            continue
        selected.append(step)
    return selected


def unknown_step_names(steps: Sequence[Step], names: Iterable[str]) -> list[str]:
    """Names from ``names`` that do not match any step, in sorted order."""
    known = {s.name for s in steps}
    return sorted(n for n in set(names) if n not in known)


def _check_known(steps: Sequence[Step], names: Iterable[str]) -> None:
    unknown = unknown_step_names(steps, names)
    if unknown:
        raise ValueError(f"Unknown step(s): {', '.join(unknown)}")
