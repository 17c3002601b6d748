"""``cx services``: inspect and control the services running on a stack."""

from __future__ import annotations

import re
from typing import List, Optional

import typer

from ..api.models import Service, Stack
from ..errors import CxError
from ..util.formatting import print_table
from .common import ENVIRONMENT_OPTION, SERVER_OPTION, STACK_OPTION, handle_errors
from .state import CxState, find_server, get_state

app = typer.Typer(help="Commands to work with services.", no_args_is_help=True)

SCALE_COUNT = re.compile(r"^(\d+|\[[+-]\d+\])$")

SERVICE_ARGUMENT = typer.Argument(..., help="Service name (see `cx services list`).")


def service_rows(services: List[Service], server_given: bool) -> List[List[object]]:
    """One row per server holding containers of each service, services ordered by name."""
    rows: List[List[object]] = []
    for service in sorted(services, key=lambda s: s.name):
        if service.containers:
            for server_name, count in service.server_container_counts().items():
                rows.append([service.name, server_name, count])
        elif not server_given:
            rows.append([service.name, "n/a", "0"])
    return rows


def _server_uid(state: CxState, stack: Stack, server: Optional[str]) -> Optional[str]:
    if not server:
        return None
    return state.must_server(stack, server).uid


@app.command("list")
@handle_errors
def list_services(
    ctx: typer.Context,
    server: Optional[str] = SERVER_OPTION,
    service_name: Optional[str] = typer.Option(None, "--service", help="Only show this service."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """List the services and running containers of a stack or a server.

    Examples:

        cx services list -s mystack

        cx services list -s mystack --server orca --service web
    """
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client

    server_uid: Optional[str] = None
    if server:
        found = find_server(client.servers.list(stack.uid), server)
        if found is None:
            raise CxError(f"Server '{server}' not found")
        if not found.can_host_containers:
            raise CxError(f"Server '{server}' can not host containers")
        typer.echo(f"Server: {found.name}")
        server_uid = found.uid

    if service_name:
        service = client.services.get(stack.uid, service_name, server_uid)
        if service is None:
            raise CxError(f"Service '{service_name}' not found on specified stack")
        services = [service]
    else:
        services = client.services.list(stack.uid, server_uid)

    print_table(["SERVICE NAME", "SERVER", "COUNT"], service_rows(services, bool(server)))


def _service_action(
    ctx: typer.Context,
    action: str,
    verb: str,
    service_name: str,
    server: Optional[str],
    stack_name: Optional[str],
    environment: Optional[str],
) -> None:
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    server_uid = _server_uid(state, stack, server)
    client = state.client
    typer.echo(f"{verb} {service_name}...")
    started = client.services.action(stack.uid, service_name, action, server_uid)
    result = client.actions.wait(stack.uid, started.id)
    typer.echo(result.finished_message or "Done")


@app.command("stop")
@handle_errors
def stop(
    ctx: typer.Context,
    service_name: str = SERVICE_ARGUMENT,
    server: Optional[str] = SERVER_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Stop all the containers of the given service (on one server with --server)."""
    _service_action(ctx, "service_stop", "Stopping", service_name, server, stack_name, environment)


@app.command("pause")
@handle_errors
def pause(
    ctx: typer.Context,
    service_name: str = SERVICE_ARGUMENT,
    server: Optional[str] = SERVER_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Pause all the containers of the given service."""
    _service_action(ctx, "service_pause", "Pausing", service_name, server, stack_name, environment)


@app.command("resume")
@handle_errors
def resume(
    ctx: typer.Context,
    service_name: str = SERVICE_ARGUMENT,
    server: Optional[str] = SERVER_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Resume the previously paused containers of the given service."""
    _service_action(ctx, "service_resume", "Resuming", service_name, server, stack_name, environment)


@app.command("restart")
@handle_errors
def restart(
    ctx: typer.Context,
    service_name: str = SERVICE_ARGUMENT,
    server: Optional[str] = SERVER_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Restart all the containers of the given service."""
    _service_action(ctx, "service_restart", "Restarting", service_name, server, stack_name, environment)


@app.command("scale")
@handle_errors
def scale(
    ctx: typer.Context,
    service_name: str = SERVICE_ARGUMENT,
    count: str = typer.Argument(..., help='Absolute ("2") or relative ("[+2]", "[-3]") container count.'),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Start or stop containers of a service across the stack.

    An absolute COUNT like 2 sets the total number of containers; a relative
    COUNT like [+2] or [-3] changes the current total. The square brackets are
    required for relative values.
    """
    if not SCALE_COUNT.match(count):
        raise typer.BadParameter('count must be a number like "2" or a relative value like "[+2]" or "[-3]"')
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client
    typer.echo(f"Scaling {service_name} to {count}...")
    started = client.services.scale(stack.uid, service_name, count)
    result = client.actions.wait(stack.uid, started.id)
    typer.echo(result.finished_message or "Done")


@app.command("info")
@handle_errors
def info(
    ctx: typer.Context,
    service_name: str = SERVICE_ARGUMENT,
    server: Optional[str] = SERVER_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Show the containers of the given service."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    server_uid = _server_uid(state, stack, server)
    service = state.client.services.get(stack.uid, service_name, server_uid)
    if service is None:
        raise CxError(f"Service '{service_name}' not found on specified stack")
    rows = [
        [c.uid, c.server_name, c.image or "", c.started_at, c.health_message or "n/a"]
        for c in sorted(service.containers, key=lambda c: (c.server_name, c.uid))
    ]
    print_table(["CONTAINER", "SERVER", "IMAGE", "STARTED AT", "HEALTH"], rows)
