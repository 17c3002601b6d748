"""Options and helpers shared by every command group."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, NoReturn, TypeVar

import typer

from ..api.errors import Cloud66ApiError
from ..errors import CxError
from ..util.formatting import stderr_console
from ..workflow.errors import WorkflowError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

STACK_OPTION = typer.Option(
    None,
    "--stack",
    "-s",
    help="Full or partial stack name. This can be omitted if the current directory is a stack directory.",
)
ENVIRONMENT_OPTION = typer.Option(
    None,
    "--environment",
    "-e",
    help="Full or partial environment name.",
)
SERVER_OPTION = typer.Option(
    None,
    "--server",
    help="Server name, address or uid. Partial names are accepted.",
)
OUTPUT_OPTION = typer.Option(
    "standard",
    "--output",
    "-o",
    help="Tailor output view: standard or wide.",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Answer yes to confirmations.",
)


def fatal(message: str, code: int = 1) -> NoReturn:
    """Print ``message`` on stderr and stop the command with exit status ``code``."""
    stderr_console().print(message)
    raise typer.Exit(code=code)


def handle_errors(func: F) -> F:
    """Report toolbelt, API, workflow and I/O errors as a message and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (CxError, Cloud66ApiError, WorkflowError, OSError) as e:
            logger.debug("%s failed", func.__name__, exc_info=True)
            fatal(str(e))

    return wrapper  # type: ignore[return-value]


def check_output_mode(output: str) -> str:
    if output not in ("standard", "wide"):
        raise typer.BadParameter("output must be standard or wide", param_hint="'--output'")
    return output
