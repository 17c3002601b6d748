"""``cx stacks``: list, create, deploy and operate stacks."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

import typer

from ..api.client import Cloud66ApiClient
from ..api.models import Stack
from ..util.formatting import print_table
from .common import ENVIRONMENT_OPTION, OUTPUT_OPTION, STACK_OPTION, YES_OPTION, check_output_mode, handle_errors
from .state import get_state
from .stacks_configure import configuration_app, configure_app
from .stacks_ssl import ssl_app

app = typer.Typer(help="Stack commands.", no_args_is_help=True)
app.add_typer(ssl_app, name="ssl")
app.add_typer(configure_app, name="configure")
app.add_typer(configuration_app, name="configuration")

REBOOT_STRATEGIES = ("serial", "parallel")
MAX_PARALLEL_LOOKUPS = 8

STANDARD_HEADERS = ["NAME", "ENVIRONMENT", "STACK TYPE", "STATUS", "LAST ACTIVITY"]
WIDE_HEADERS = [
    "ACCOUNT",
    "NAME",
    "ENVIRONMENT",
    "STACK TYPE",
    "CLUSTER NAME",
    "APPLICATION ADDRESS",
    "STATUS",
    "LAST ACTIVITY",
]


def stack_row(stack: Stack, output: str) -> List[object]:
    if output == "wide":
        cluster_name = stack.cluster_name if stack.is_inside_cluster else "n/a"
        return [
            stack.account_name,
            stack.name,
            stack.display_environment,
            stack.stack_type,
            cluster_name,
            stack.application_address or "n/a",
            stack.status,
            stack.last_activity_or_created,
        ]
    return [
        stack.name,
        stack.display_environment,
        stack.stack_type,
        stack.status,
        stack.last_activity_or_created,
    ]


def print_stack_list(stacks: List[Stack], output: str) -> None:
    ordered = sorted(stacks, key=lambda s: (s.account_name.lower(), s.name.lower()))
    headers = WIDE_HEADERS if output == "wide" else STANDARD_HEADERS
    print_table(headers, [stack_row(s, output) for s in ordered if s.name])


def fetch_named_stacks(client: Cloud66ApiClient, names: List[str], environment: str) -> List[Stack]:
    """Look up every name concurrently, keeping the first match per name; the first failed lookup is raised."""
    wanted = [n for n in names if n]
    if not wanted:
        return []
    with ThreadPoolExecutor(max_workers=min(MAX_PARALLEL_LOOKUPS, len(wanted))) as pool:
        found = list(pool.map(lambda name: client.stacks.find_by_name(name, environment), wanted))
    return [stacks[0] for stacks in found]


@app.command("list")
@handle_errors
def list_stacks(
    ctx: typer.Context,
    names: Optional[List[str]] = typer.Argument(None, help="Stack names to show (all stacks when omitted)."),
    environment: Optional[str] = ENVIRONMENT_OPTION,
    output: str = OUTPUT_OPTION,
) -> None:
    """List stacks with their environment, type, status and last activity."""
    check_output_mode(output)
    client = get_state(ctx).client
    env = environment or ""
    if names:
        stacks = fetch_named_stacks(client, names, env)
    else:
        stacks = client.stacks.list(lambda s: s.environment.lower().startswith(env.lower()))
    print_stack_list(stacks, output)


@app.command("create")
@handle_errors
def create_stack(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", "-n", help="Stack name."),
    service_yaml: Path = typer.Option(
        ..., "--service_yaml", "--service-yaml", help="File containing your service definition."
    ),
    manifest_yaml: Optional[Path] = typer.Option(
        None, "--manifest_yaml", "--manifest-yaml", "-m", help="File containing your manifest definition."
    ),
    environment: Optional[str] = typer.Option(None, "--environment", "-e", help="Environment of the new stack."),
) -> None:
    """Create a new Maestro (docker) stack from a service.yml."""
    client = get_state(ctx).client
    service_body = service_yaml.read_text(encoding="utf-8")
    manifest_body = manifest_yaml.read_text(encoding="utf-8") if manifest_yaml else None
    stack = client.stacks.create(name, service_body, environment=environment, manifest_yaml=manifest_body)
    typer.echo(f"Stack {stack.name or name} created ({stack.uid})")


def listen_to_stack(
    client: Cloud66ApiClient,
    stack: Stack,
    echo: Callable[[str], None] = typer.echo,
    sleep: Callable[[float], None] = time.sleep,
    wait_for_start: bool = False,
) -> Stack:
    """Poll ``stack`` and print each status change until it is no longer deploying.

    With ``wait_for_start`` an idle status seen before the deployment shows
    up is checked against the stack's deployments, and polling continues
    while one of them is still deploying.
    """
    last_status: Optional[str] = None
    seen_busy = not wait_for_start
    while True:
        current = client.stacks.get(stack.uid)
        if current.status != last_status:
            echo(f"{current.name}: {current.status}")
            last_status = current.status
        if current.is_busy:
            seen_busy = True
        elif seen_busy or not any(d.is_deploying for d in client.stacks.deployments(stack.uid)):
            return current
        sleep(client.poll_interval)


@app.command("redeploy")
@handle_errors
def redeploy(
    ctx: typer.Context,
    yes: bool = YES_OPTION,
    listen: bool = typer.Option(False, "--listen", help="Wait for the deployment to complete and show progress."),
    git_ref: Optional[str] = typer.Option(None, "--git-ref", help="[classic stacks] git reference."),
    services: Optional[List[str]] = typer.Option(
        None,
        "--service",
        help="[docker stacks] service name (and optional colon separated reference) to deploy. Repeatable.",
    ),
    deploy_strategy: Optional[str] = typer.Option(
        None, "--deploy-strategy", help="Override the deployment strategy (serial, parallel, rolling or fast)."
    ),
    deployment_profile: Optional[str] = typer.Option(
        None, "--deployment-profile", help="Use a named deployment profile configured on the stack."
    ),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Enqueue a redeployment of the stack."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    if not yes and stack.environment.lower() == "production":
        typer.confirm(f"Are you sure you want to redeploy {stack.name} ({stack.environment})?", abort=True)
    result = state.client.stacks.redeploy(
        stack.uid,
        git_ref=git_ref,
        services=services,
        deploy_strategy=deploy_strategy,
        deployment_profile=deployment_profile,
    )
    typer.echo(result.message or "Stack redeployment enqueued")
    if listen:
        listen_to_stack(state.client, stack, wait_for_start=True)


def run_stack_action(ctx: typer.Context, stack: Stack, command: str, started: str, **args: Optional[str]) -> None:
    client = get_state(ctx).client
    typer.echo(started)
    action = client.actions.invoke(stack.uid, command, **args)
    result = client.actions.wait(stack.uid, action.id)
    typer.echo(result.finished_message or "Done")


@app.command("restart")
@handle_errors
def restart(
    ctx: typer.Context,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Send a restart to every component of the stack."""
    stack = get_state(ctx).must_stack(stack_name, environment)
    run_stack_action(ctx, stack, "restart", f"Restarting {stack.name}...")


@app.command("clear-caches")
@handle_errors
def clear_caches(
    ctx: typer.Context,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Clear the stack's code caches so the next deployment starts clean."""
    stack = get_state(ctx).must_stack(stack_name, environment)
    run_stack_action(ctx, stack, "clear_caches", f"Clearing caches of {stack.name}...")


@app.command("reboot")
@handle_errors
def reboot(
    ctx: typer.Context,
    yes: bool = YES_OPTION,
    group: Optional[str] = typer.Option(None, "--group", help="Server group to reboot (defaults to all)."),
    strategy: Optional[str] = typer.Option(None, "--strategy", help="Reboot strategy: serial or parallel."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Reboot the servers of the stack."""
    if strategy is not None and strategy not in REBOOT_STRATEGIES:
        raise typer.BadParameter("strategy must be serial or parallel", param_hint="'--strategy'")
    stack = get_state(ctx).must_stack(stack_name, environment)
    if not yes:
        typer.confirm(f"Are you sure you want to reboot the servers of {stack.name}?", abort=True)
    run_stack_action(
        ctx, stack, "reboot_servers", f"Rebooting servers of {stack.name}...", group=group, strategy=strategy
    )


@app.command("listen")
@handle_errors
def listen(
    ctx: typer.Context,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Follow a running deployment until it finishes."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    final = listen_to_stack(state.client, stack)
    typer.echo(f"Stack {final.name} is {final.status.lower()}")
