"""``cx snapshots``: list snapshots and render formations against them."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from ..api.models import RenderError, Renders, Snapshot
from ..errors import CxError
from ..util.formatting import print_table, stderr_console
from .common import ENVIRONMENT_OPTION, STACK_OPTION, handle_errors
from .state import get_state

app = typer.Typer(help="Commands to work with snapshots.", no_args_is_help=True)


def yaml_comment(filename: str, snapshot: str, formation: str, sequence: int) -> str:
    return f"# Stencil: {filename}\n# Formation: {formation}\n# Snapshot: {snapshot}\n# Sequence: {sequence}\n"


def newest_first(snapshots: List[Snapshot]) -> List[Snapshot]:
    return sorted(
        snapshots,
        key=lambda s: s.triggered_at.timestamp() if s.triggered_at else float("-inf"),
        reverse=True,
    )


def report_render_problems(title: str, problems: List[RenderError]) -> None:
    err = stderr_console()
    err.print(title)
    for problem in problems:
        err.print(f"{problem.text} in {problem.stencil}")


def check_renders(renders: Renders, ignore_errors: bool, ignore_warnings: bool) -> bool:
    """Report errors and warnings that are not ignored; ``False`` means nothing should be output."""
    errors = renders.errors()
    if errors and not ignore_errors:
        report_render_problems("Error during rendering of stencils:", errors)
        return False
    warnings = renders.warnings()
    if warnings and not ignore_warnings:
        report_render_problems("Warning during rendering of stencils:", warnings)
        return False
    return True


@app.command("list")
@handle_errors
def list_snapshots(
    ctx: typer.Context,
    uids: Optional[List[str]] = typer.Argument(None, help="Only show these snapshot UIDs."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """List the snapshots of a stack with their trigger, time and action, newest first."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    snapshots = state.client.snapshots.list(stack.uid)
    if uids:
        wanted = {u.lower() for u in uids}
        snapshots = [s for s in snapshots if s.uid.lower() in wanted]
    rows = [[s.uid, s.triggered_at, s.triggered_by, s.action] for s in newest_first(snapshots) if s.uid]
    print_table(["UID", "LAST ACTION AT", "LAST ACTION BY", "ACTION"], rows)


@app.command("render")
@handle_errors
def render(
    ctx: typer.Context,
    snapshot: str = typer.Option(
        ..., "--snapshot", help="UID of the snapshot to use. Use 'latest' for the most recent snapshot."
    ),
    formation: str = typer.Option(..., "--formation", help="UID of the formation to render."),
    files: Optional[List[str]] = typer.Option(
        None, "--files", help="Files to render (repeatable). All files are rendered when omitted."
    ),
    latest: bool = typer.Option(
        True, "--latest/--no-latest", help="Use HEAD for stencils rather than the snapshot's gitref."
    ),
    outdir: Optional[Path] = typer.Option(None, "--outdir", help="Save the rendered files in this directory."),
    ignore_errors: bool = typer.Option(False, "--ignore-errors", help="Output whatever rendered despite errors."),
    ignore_warnings: bool = typer.Option(
        False, "--ignore-warnings", help="Output whatever rendered despite warnings."
    ),
    filter_name: Optional[str] = typer.Option(None, "--filter", help="Name of the formation filter to use."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Render a formation based on the requested snapshot.

    Example:

        cx snapshots render -s mystack --formation fm-xxxx --snapshot latest --files foo.yml --files bar.yml
    """
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client

    snapshot_uid = snapshot
    if snapshot == "latest":
        snapshots = newest_first(client.snapshots.list(stack.uid))
        if not snapshots:
            raise CxError("No snapshots found")
        snapshot_uid = snapshots[0].uid

    renders = client.snapshots.render(
        stack.uid, snapshot_uid, formation, files=files, use_latest=latest, filter_name=filter_name
    )
    if outdir is not None:
        outdir.mkdir(parents=True, exist_ok=True)

    if not check_renders(renders, ignore_errors, ignore_warnings):
        return

    parts: List[str] = []
    for idx, stencil in enumerate(renders.stencils, start=1):
        numbered = f"{idx:03d}_{stencil.filename}"
        if outdir is not None:
            header = yaml_comment(stencil.filename, snapshot_uid, formation, stencil.sequence)
            (outdir / numbered).write_text(header + stencil.content, encoding="utf-8")
        else:
            parts.append(f"\n---\n{yaml_comment(numbered, snapshot_uid, formation, stencil.sequence)}\n")
            parts.append(stencil.content)

    if outdir is None:
        typer.echo("".join(parts), nl=False)
