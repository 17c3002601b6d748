"""Errors raised while loading or running a deploy workflow."""

from __future__ import annotations

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .engine import StepResult


class WorkflowError(Exception):
    """The workflow document is invalid or cannot be run."""


class WorkflowRunError(WorkflowError):
    """The run as a whole failed (for example it exceeded its timeout)."""


class WorkflowStepsError(WorkflowError):
    """One or more steps failed.

    Args:
        failures: Results of every failed step, in completion order.
    """

    def __init__(self, failures: List["StepResult"]) -> None:
        self.failures = list(failures)
        lines = [f"{r.name}: {r.error}" for r in self.failures]
        super().__init__(f"{len(self.failures)} step(s) failed\n" + "\n".join(lines))
