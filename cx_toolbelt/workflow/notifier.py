"""Lifecycle events of a workflow run and the console notifier that reports them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from rich.console import Console

from ..util.formatting import stdout_console

logger = logging.getLogger(__name__)

WORKFLOW_STARTED = "workflow.started"
WORKFLOW_FINISHED = "workflow.finished"
STEP_STARTED = "step.started"
STEP_SUCCEEDED = "step.succeeded"
STEP_FAILED = "step.failed"
STEP_SKIPPED = "step.skipped"


@dataclass(frozen=True)
class Event:
    """A lifecycle event emitted by ``WorkflowRunner``."""

    name: str
    message: str
    step: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


Notifier = Callable[[Event], None]


def console_notify(event: Event, console: Optional[Console] = None) -> None:
    """Log ``event`` and echo it on stdout."""
    logger.debug("%s %s", event.name, event.message)
    (console or stdout_console()).print(event.message)


def null_notify(event: Event) -> None:
    logger.debug("%s %s", event.name, event.message)
