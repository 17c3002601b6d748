"""The ``cx`` command line entry point."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from .. import __version__
from ..core.config import Settings
from ..core.logging_config import setup_logging
from . import config_cmd, formations, services, snapshots, stacks
from .state import CxState

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="cx",
    add_completion=False,
    no_args_is_help=True,
    help="Cloud 66 toolbelt: manage stacks, formations, snapshots and services from the command line.",
)
app.add_typer(stacks.app, name="stacks")
app.add_typer(services.app, name="services")
app.add_typer(snapshots.app, name="snapshots")
app.add_typer(formations.app, name="formations")
app.add_typer(config_cmd.app, name="config")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cx {__version__}")
        raise typer.Exit()


@app.callback()
def _root(
    ctx: typer.Context,
    profile: Optional[str] = typer.Option(
        None, "--profile", help="Switch between cx client profiles (see `cx config list`)."
    ),
    debug: bool = typer.Option(False, "--debug", envvar="CXDEBUG", help="Run in debug mode."),
    org: Optional[str] = typer.Option(None, "--org", help="Full or partial organization name."),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the cx version and exit.",
    ),
) -> None:
    """Entry point callback invoked for every cx execution."""
    state = ctx.obj
    if isinstance(state, CxState):
        state.profile_name = profile or state.profile_name
        state.org_name = org or state.org_name
        state.debug = debug or state.debug
        return

    settings = Settings()
    debug = debug or settings.debug
    setup_logging(
        log_level="DEBUG" if debug else settings.log_level,
        log_format=settings.log_format,
        enable_file=settings.log_to_file,
        log_dir=settings.log_dir,
    )
    logger.debug("cx %s using home %s", __version__, settings.cx_home)
    ctx.obj = CxState(settings, profile_name=profile, org_name=org, debug=debug)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
