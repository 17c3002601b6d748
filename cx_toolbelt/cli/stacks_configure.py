"""``cx stacks configure`` (service.yml / manifest.yml versions) and ``cx stacks configuration``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from ..errors import CxError
from ..util.formatting import print_table
from ..util.matching import fuzzy_find
from .common import ENVIRONMENT_OPTION, STACK_OPTION, handle_errors
from .state import get_state

CONFIGURE_FILES = ("service.yml", "manifest.yml")

configure_app = typer.Typer(
    help='List, download and upload service.yml and manifest.yml files (eventually replaced by "configuration").',
    no_args_is_help=True,
)
configuration_app = typer.Typer(
    help="List, download, upload and apply configuration files.",
    no_args_is_help=True,
)

FILE_OPTION = typer.Option(..., "--file", "-f", help="Supported values are: service.yml, manifest.yml.")
TYPE_OPTION = typer.Option(
    ..., "--type", "-t", help="Type of the configuration file (see `list` for the types available on your stack)."
)


def _check_file(file_name: str) -> str:
    if file_name not in CONFIGURE_FILES:
        raise typer.BadParameter("supported values are: service.yml, manifest.yml", param_hint="'--file'")
    return file_name


def _write_or_print(body: str, output: Optional[Path]) -> None:
    if output is None:
        typer.echo(body, nl=not body.endswith("\n"))
        return
    output.write_text(body, encoding="utf-8")
    typer.echo(f"Saved to {output}")


@configure_app.command("list-versions")
@handle_errors
def list_versions(
    ctx: typer.Context,
    file_name: str = FILE_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """List every version of service.yml or manifest.yml, newest first."""
    _check_file(file_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    versions = state.client.configure_files.versions(stack.uid, file_name)
    versions.sort(key=lambda v: v.created_at.timestamp() if v.created_at else 0, reverse=True)
    print_table(["VERSION", "CREATED AT", "COMMENTS"], [[v.uid, v.created_at, v.comments] for v in versions])


@configure_app.command("download")
@handle_errors
def download_file(
    ctx: typer.Context,
    file_name: str = FILE_OPTION,
    version: Optional[str] = typer.Option(None, "--version", "-v", help="Full or partial file version."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Full path of the output file."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Download a version of service.yml or manifest.yml (the latest by default)."""
    _check_file(file_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client
    versions = client.configure_files.versions(stack.uid, file_name)
    if not versions:
        raise CxError(f"No versions of {file_name} found")
    if version:
        chosen = versions[fuzzy_find([v.uid for v in versions], version)]
    else:
        chosen = max(versions, key=lambda v: v.created_at.timestamp() if v.created_at else 0)
    body = chosen.body
    if body is None:
        body = client.configure_files.download(stack.uid, file_name, chosen.uid).body or ""
    _write_or_print(body, output)


@configure_app.command("upload")
@handle_errors
def upload_file(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="File to upload."),
    file_name: str = FILE_OPTION,
    comments: str = typer.Option("", "--comments", "-c", help="A brief description of your changes."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Upload a new version of service.yml or manifest.yml."""
    _check_file(file_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    uploaded = state.client.configure_files.upload(stack.uid, file_name, source.read_text(encoding="utf-8"), comments)
    typer.echo(f"Uploaded {file_name} as version {uploaded.uid}")


@configuration_app.command("list")
@handle_errors
def list_configurations(
    ctx: typer.Context,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """List the configuration files available on the stack."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    files = sorted(state.client.configurations.list(stack.uid), key=lambda f: f.type)
    print_table(["TYPE", "NAME", "LAST UPDATED"], [[f.type, f.name, f.updated_at] for f in files])


@configuration_app.command("download")
@handle_errors
def download_configuration(
    ctx: typer.Context,
    config_type: str = TYPE_OPTION,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save the configuration to this file."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Print (or save) the content of a configuration file."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    configuration = state.client.configurations.download(stack.uid, config_type)
    _write_or_print(configuration.body or "", output)


@configuration_app.command("upload")
@handle_errors
def upload_configuration(
    ctx: typer.Context,
    config_type: str = TYPE_OPTION,
    source: Path = typer.Option(..., "--source", help="File containing the configuration to push to the stack."),
    no_apply: bool = typer.Option(False, "--no-apply", help="Do not apply the change to the servers right away."),
    commit_message: Optional[str] = typer.Option(None, "--commit-message", help="Message for the update."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Set the content of a configuration file, applying it unless --no-apply is given."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    state.client.configurations.upload(
        stack.uid,
        config_type,
        source.read_text(encoding="utf-8"),
        apply=not no_apply,
        commit_message=commit_message,
    )
    typer.echo(f"Configuration {config_type} updated" + ("" if no_apply else " and applied"))


@configuration_app.command("apply")
@handle_errors
def apply_configuration(
    ctx: typer.Context,
    config_type: str = TYPE_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Apply a configuration file to the stack's servers."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    result = state.client.configurations.apply(stack.uid, config_type)
    typer.echo(result.message or f"Configuration {config_type} applied")
