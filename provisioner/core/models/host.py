"""
CommandResult — what the host command interface returns.
"""

from __future__ import annotations

from typing import NamedTuple


class CommandResult(NamedTuple):
    """Exit code and captured output of one host command.

    Unpacks as ``exit_code, stdout, stderr``.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def diagnostic(self) -> str:
        """Best available text for an operator: stderr, else stdout, else the code."""
        return (
            self.stderr.strip()
            or self.stdout.strip()
            or f"Command exited with code {self.exit_code}"
        )
