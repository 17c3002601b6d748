"""``cx config``: manage cx client profiles."""

from __future__ import annotations

from typing import Optional

import typer

from ..core.profiles import DEFAULT_BASE_URL, Profile
from ..util.formatting import print_table
from .common import handle_errors
from .state import get_state

app = typer.Typer(help="Manage cx client profiles.", no_args_is_help=True)

NAME_ARGUMENT = typer.Argument(..., help="Profile name.")
ORG_OPTION = typer.Option(None, "--org", help="Default organization of the profile.")
API_URL_OPTION = typer.Option(None, "--api-url", help="Cloud 66 URL the profile talks to.")
TOKEN_FILE_OPTION = typer.Option(None, "--token-file", help="Token file name, relative to the cx home.")


def token_file_for(name: str) -> str:
    return f"cx_{name}.json"


def _show(profile: Profile) -> None:
    typer.echo(f"Name: {profile.name}")
    typer.echo(f"API URL: {profile.base_url}")
    typer.echo(f"Organization: {profile.organization or 'n/a'}")
    typer.echo(f"Token file: {profile.token_file}")


@app.command("list")
@handle_errors
def list_profiles(ctx: typer.Context) -> None:
    """List the profiles. The active one is marked with *."""
    state = get_state(ctx)
    profiles = state.profiles
    active = state.profile_name or profiles.last_profile
    rows = [
        ["*" if name == active else "", name, p.base_url, p.organization, p.token_file]
        for name, p in sorted(profiles.profiles.items())
    ]
    print_table(["", "NAME", "API URL", "ORGANIZATION", "TOKEN FILE"], rows)


@app.command("show")
@handle_errors
def show_profile(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Profile name. Defaults to the active profile."),
) -> None:
    """Show the settings of a profile."""
    state = get_state(ctx)
    _show(state.profiles.select(name or state.profile_name))


@app.command("create")
@handle_errors
def create_profile(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    org: Optional[str] = ORG_OPTION,
    api_url: Optional[str] = API_URL_OPTION,
    token_file: Optional[str] = TOKEN_FILE_OPTION,
) -> None:
    """Create a new profile."""
    state = get_state(ctx)
    profile = Profile(
        name=name,
        base_url=api_url or DEFAULT_BASE_URL,
        organization=org or "",
        token_file=token_file or token_file_for(name),
    )
    state.profiles.add(profile)
    state.save_profiles()
    typer.echo(f"Profile {name} created")


@app.command("update")
@handle_errors
def update_profile(
    ctx: typer.Context,
    name: str = NAME_ARGUMENT,
    org: Optional[str] = ORG_OPTION,
    api_url: Optional[str] = API_URL_OPTION,
    token_file: Optional[str] = TOKEN_FILE_OPTION,
) -> None:
    """Change the settings of an existing profile."""
    state = get_state(ctx)
    state.profiles.update(name, organization=org, base_url=api_url, token_file=token_file)
    state.save_profiles()
    typer.echo(f"Profile {name} updated")


@app.command("use")
@handle_errors
def use_profile(ctx: typer.Context, name: str = NAME_ARGUMENT) -> None:
    """Make a profile the active one."""
    state = get_state(ctx)
    state.profiles.use(name)
    state.save_profiles()
    typer.echo(f"Switched to {name}")


@app.command("delete")
@handle_errors
def delete_profile(ctx: typer.Context, name: str = NAME_ARGUMENT) -> None:
    """Delete a profile. The default profile cannot be deleted."""
    state = get_state(ctx)
    state.profiles.remove(name)
    state.save_profiles()
    typer.echo(f"Profile {name} deleted")
