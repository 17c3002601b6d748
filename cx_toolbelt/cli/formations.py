"""``cx formations``: manage formations, their stencils and bundles, and deploy them."""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, Set

import typer
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .. import __version__
from ..api.client import Cloud66ApiClient
from ..api.models import Formation, Stack, Stencil
from ..bundle import (
    bundle_file_name,
    bundle_formation,
    create_and_upload_formation,
    load_formation_bundle,
    upload_environment_variables,
    verify_base_templates,
)
from ..bundle.archive import untar
from ..bundle.models import MANIFEST_FILENAME
from ..errors import CxError
from ..util.formatting import join_tags, print_table, stderr_console
from ..workflow import WorkflowRunner, console_notify, default_concurrency, load_workflow
from ..workflow.engine import DEFAULT_TIMEOUT
from .common import ENVIRONMENT_OPTION, OUTPUT_OPTION, STACK_OPTION, check_output_mode, handle_errors
from .snapshots import newest_first
from .state import get_state

logger = logging.getLogger(__name__)

app = typer.Typer(help="Commands to work with formations.", no_args_is_help=True)
bundle_app = typer.Typer(help="Formation bundle commands.", no_args_is_help=True)
stencils_app = typer.Typer(help="Formation stencil commands.", no_args_is_help=True)
app.add_typer(bundle_app, name="bundle")
app.add_typer(stencils_app, name="stencils")

NO_FORMATION_MESSAGE = "No formation provided. Please use --formation to specify a formation"
LOG_LEVELS = {"info": logging.INFO, "debug": logging.DEBUG}

FORMATION_OPTION = typer.Option(None, "--formation", "-f", help="The formation name.")


def require_formation_name(name: Optional[str]) -> str:
    if not name:
        raise CxError(NO_FORMATION_MESSAGE)
    return name


def find_formation(formations: List[Formation], name: str) -> Optional[Formation]:
    for formation in formations:
        if formation.name == name:
            return formation
    return None


def must_formation(client: Cloud66ApiClient, stack: Stack, name: str) -> Formation:
    formation = find_formation(client.formations.list(stack.uid, include_stencils=True), name)
    if formation is None:
        raise CxError(f'Formation with name "{name}" could not be found')
    return formation


def must_named_formation(client: Cloud66ApiClient, stack: Stack, name: str) -> Formation:
    formation = find_formation(client.formations.list(stack.uid, include_stencils=True), name)
    if formation is None:
        raise CxError(f"No formation named '{name}' found")
    return formation


def split_tags(tags: Optional[str]) -> List[str]:
    return tags.split(",") if tags else []


def formation_row(formation: Formation) -> List[object]:
    return [
        formation.uid,
        formation.name,
        join_tags(formation.tags),
        len(formation.stencils),
        len(formation.stencil_groups),
        len(formation.policies),
        ", ".join(b.name for b in formation.base_templates),
        formation.created_at,
        formation.updated_at,
    ]


def stencil_row(stencil: Stencil, output: str) -> List[object]:
    if output == "wide":
        return [
            stencil.uid,
            stencil.filename,
            stencil.context_id,
            join_tags(stencil.tags),
            stencil.template_filename,
            stencil.gitfile_path,
            stencil.inline,
            stencil.created_at,
            stencil.updated_at,
        ]
    return [stencil.uid, stencil.filename, join_tags(stencil.tags), stencil.created_at, stencil.updated_at]


def _files_in(directory: Path) -> List[Path]:
    try:
        return sorted(p for p in directory.iterdir() if p.is_file())
    except OSError as e:
        raise CxError(f"Cannot fetch file list in {directory}: {e}") from e


@app.command("list")
@handle_errors
def list_formations(
    ctx: typer.Context,
    names: Optional[List[str]] = typer.Argument(None, help="Only show these formations."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """List all the formations of a stack.

    Examples:

        cx formations list -s mystack

        cx formations list -s mystack foo bar
    """
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    formations = state.client.formations.list(stack.uid)
    if names:
        wanted = {n.lower() for n in names}
        formations = [f for f in formations if f.name.lower() in wanted]
    rows = [formation_row(f) for f in sorted(formations, key=lambda f: f.name) if f.name]
    print_table(
        [
            "UID",
            "NAME",
            "TAGS",
            "STENCILS",
            "STENCIL GROUPS",
            "POLICIES",
            "BASE TEMPLATE",
            "CREATED AT",
            "LAST UPDATED",
        ],
        rows,
    )


@app.command("create")
@handle_errors
def create_formation(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", help="Formation name."),
    template_repo: str = typer.Option(..., "--template-repo", help="Base Template repository URL."),
    template_branch: str = typer.Option(..., "--template-branch", help="Base Template repository branch."),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma separated formation tags."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Create a new formation."""
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    state.client.formations.create(stack.uid, name, template_repo, template_branch, split_tags(tags))
    typer.echo("Formation created")


@app.command("fetch")
@handle_errors
def fetch_formation(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    outdir: Path = typer.Option(..., "--outdir", help="Output directory for the formation. Created if missing."),
    overwrite: bool = typer.Option(
        False, "--overwrite", help="Overwrite existing files without asking for each one."
    ),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Fetch all the stencils of a formation into a local directory."""
    name = require_formation_name(formation_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    formation = must_formation(state.client, stack, name)

    stencil_dir = outdir / "stencils"
    try:
        stencil_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CxError(f"Unable to create directory {outdir}: {e}") from e

    for stencil in formation.stencils:
        target = stencil_dir / stencil.filename
        if target.exists() and not overwrite:
            if not typer.confirm(f"{stencil.filename} already exists. Overwrite?", default=False):
                continue
        try:
            target.write_text(stencil.body, encoding="utf-8")
        except OSError as e:
            raise CxError(f"Writing {stencil.filename} to {stencil_dir} failed: {e}") from e

    typer.echo(f"\nFormation is available at {stencil_dir}")


@app.command("commit")
@handle_errors
def commit_formation(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    directory: Optional[Path] = typer.Option(
        None, "--dir", help="Directory holding the formation stencils. Cannot be used with --stencil."
    ),
    stencil_file: Optional[Path] = typer.Option(
        None, "--stencil", help="A single stencil file to commit. Cannot be used with --dir."
    ),
    message: Optional[str] = typer.Option(None, "--message", help="Commit message."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Commit the given stencils of a formation back to its repository."""
    name = require_formation_name(formation_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client
    formation = must_formation(client, stack, name)

    if directory is None and stencil_file is None:
        raise CxError("Either --dir or --stencil should be provided")
    if directory is not None and stencil_file is not None:
        raise CxError("Cannot use both --dir and --stencil at the same time")
    if not message:
        raise CxError("No message provided")

    files = _files_in(directory) if directory is not None else [stencil_file]
    for path in files:
        if not path.exists():
            raise CxError(f"Cannot find {path} to save")

    for path in files:
        stencil = formation.find_stencil(path.name)
        if stencil is None:
            raise CxError(f"No stencil named {path.name} found on the formation")
        try:
            body = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CxError(f"Failed to read {path.name}: {e}") from e
        client.formations.update_stencil(stack.uid, formation.uid, stencil.uid, message, body)
        typer.echo(f"Saved {path.name}")

    typer.echo("Done")


@app.command("deploy")
@handle_errors
def deploy_formation(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    snapshot_uid: str = typer.Option(
        "latest", "--snapshot-uid", help="UID of the snapshot to use. Use 'latest' for the most recent one."
    ),
    use_latest: bool = typer.Option(
        True,
        "--use-latest/--no-use-latest",
        help="Use the snapshot's HEAD gitref rather than the ref stored in the stencil.",
    ),
    log_level: str = typer.Option("info", "--log-level", help="info or debug. Use debug to see process output."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Deploy an existing formation by running its deploy workflow locally."""
    if log_level not in LOG_LEVELS:
        raise typer.BadParameter("log level must be info or debug", param_hint="'--log-level'")
    name = require_formation_name(formation_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client
    formation = must_formation(client, stack, name)

    document = client.formations.workflow(stack.uid, formation.uid, snapshot_uid or "latest", use_latest)
    workflow = load_workflow(document)
    runner = WorkflowRunner(
        workflow,
        concurrency=default_concurrency(),
        timeout=DEFAULT_TIMEOUT,
        notifier=console_notify,
        log_level=LOG_LEVELS[log_level],
    )
    runner.run()


@bundle_app.command("download")
@handle_errors
def bundle_download(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    file_name: Optional[str] = typer.Option(
        None, "--file", help="Filename for the bundle. The .formation extension is added when missing."
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite the bundle file if it exists."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Save a formation and the stack's environment variables as a bundle file."""
    name = require_formation_name(formation_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client

    bundle_file = Path(bundle_file_name(name, file_name))
    if bundle_file.exists() and not overwrite:
        raise CxError(f"{bundle_file} already exists")

    env_vars = client.env_vars.list(stack.uid)
    typer.echo("Fetching bundle from the server...")
    formation = must_named_formation(client, stack, name)
    bundle_formation(formation, bundle_file, env_vars, app=f"cx ({__version__})", progress=typer.echo)


@bundle_app.command("upload")
@handle_errors
def bundle_upload(
    ctx: typer.Context,
    formation_name: Optional[str] = typer.Option(None, "--formation", "-f", help="Name for the new formation."),
    file_name: Optional[Path] = typer.Option(None, "--file", help="The bundle file."),
    message: Optional[str] = typer.Option(None, "--message", help="Commit message."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Create a new formation from a bundle file."""
    name = require_formation_name(formation_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client
    bundle_file = file_name or Path(f"{name}.formation")

    top_dir = Path(tempfile.mkdtemp(prefix=f"{name}-formation-bundle-"))
    try:
        untar(bundle_file, top_dir)
        bundle_path = top_dir / "bundle"
        if not message:
            raise CxError("No message given. Use --message to provide a message for the commit")
        bundle = load_formation_bundle(bundle_path / MANIFEST_FILENAME)
        verify_base_templates(client, bundle, progress=typer.echo)
        create_and_upload_formation(client, bundle, name, stack.uid, bundle_path, message, progress=typer.echo)
        upload_environment_variables(client, bundle, stack.uid, bundle_path, progress=typer.echo)
    finally:
        shutil.rmtree(top_dir, ignore_errors=True)


@stencils_app.command("list")
@handle_errors
def list_stencils(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    output: str = OUTPUT_OPTION,
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """List the stencils of a formation in sequence order.

    Examples:

        cx formations stencils list --formation foo

        cx formations stencils list --formation foo -o wide
    """
    check_output_mode(output)
    name = require_formation_name(formation_name)
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    formation = must_named_formation(state.client, stack, name)

    if output == "wide":
        headers = [
            "UID",
            "FILENAME",
            "SERVICE",
            "TAGS",
            "TEMPLATE",
            "GITFILE",
            "INLINE",
            "CREATED AT",
            "LAST UPDATED",
        ]
    else:
        headers = ["UID", "FILENAME", "TAGS", "CREATED AT", "LAST UPDATED"]
    stencils = sorted(formation.stencils, key=lambda s: s.sequence)
    print_table(headers, [stencil_row(s, output) for s in stencils])


@stencils_app.command("show")
@handle_errors
def show_stencil(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    stencil_name: Optional[str] = typer.Option(None, "--stencil", help="Stencil filename."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Print the content of a single stencil."""
    name = require_formation_name(formation_name)
    if not stencil_name:
        raise CxError("No stencil name provided. Please use --stencil to specify a stencil")
    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    formation = must_named_formation(state.client, stack, name)
    stencil = formation.find_stencil(stencil_name)
    if stencil is None:
        raise CxError(f"No stencil named '{stencil_name}' found")
    typer.echo(stencil.body, nl=False)


class StencilRenderer:
    """Render local stencil files against a snapshot without committing them."""

    def __init__(
        self,
        client: Cloud66ApiClient,
        stack: Stack,
        formation_name: str,
        snapshot_id: Optional[str],
        echo: Callable[[str], None] = typer.echo,
    ) -> None:
        self.client = client
        self.stack = stack
        self.formation_name = formation_name
        self.snapshot_id = snapshot_id
        self.echo = echo

    def snapshot_uid(self) -> str:
        if self.snapshot_id and self.snapshot_id != "latest":
            return self.snapshot_id
        snapshots = newest_first(self.client.snapshots.list(self.stack.uid))
        if not snapshots:
            raise CxError("No snapshots found")
        return snapshots[0].uid

    def render(self, stencil_file: Path, output: Optional[Path]) -> None:
        if not stencil_file.exists():
            raise CxError(f"Cannot find {stencil_file}")
        snapshot_uid = self.snapshot_uid()

        formation = must_named_formation(self.client, self.stack, self.formation_name)
        stencil = formation.find_stencil(stencil_file.name)
        if stencil is None:
            raise CxError(f"No stencil named '{stencil_file.name}' found")

        try:
            body = stencil_file.read_text(encoding="utf-8")
        except OSError as e:
            raise CxError(f"Failed to read {stencil_file}: {e}") from e

        renders = self.client.formations.render_stencil(
            self.stack.uid, snapshot_uid, formation.uid, stencil.uid, body
        )
        err = stderr_console()
        errors = renders.errors()
        if errors:
            err.print("Error during rendering of stencils:", style="bold red")
            for problem in errors:
                err.print(f"\t{problem.text} in {problem.stencil}", style="bold red")
            return
        warnings = renders.warnings()
        if warnings:
            err.print("Warning during rendering of stencils:", style="yellow")
            for problem in warnings:
                err.print(f"\t{problem.text} in {problem.stencil}", style="yellow")
            return

        if output is not None:
            output.write_text("".join(r.content for r in renders.stencils), encoding="utf-8")
        else:
            typer.echo("".join(f"{r.content}---\n" for r in renders.stencils), nl=False)


class _RenderOnChange(FileSystemEventHandler):
    def __init__(self, renderer: StencilRenderer, watched: Set[Path], outdir: Path) -> None:
        self.renderer = renderer
        self.watched = watched
        self.outdir = outdir

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        changed = Path(str(event.src_path)).resolve()
        if changed not in self.watched:
            return
        logger.debug("%s modified", changed)
        output = self.outdir / changed.name
        self.renderer.echo(f"Rendering {changed.name} to {output}")
        try:
            self.renderer.render(changed, output)
        except CxError as e:
            stderr_console().print(str(e))


def watch_and_render(renderer: StencilRenderer, files: List[Path], outdir: Path) -> None:
    """Re-render every watched file each time it is written, until interrupted."""
    watched = {f.resolve() for f in files}
    handler = _RenderOnChange(renderer, watched, outdir)
    observer = Observer()
    for directory in {f.parent for f in watched}:
        observer.schedule(handler, str(directory), recursive=False)
    observer.start()
    renderer.echo("Watching for changes...")
    try:
        while observer.is_alive():
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


@stencils_app.command("render")
@handle_errors
def render_stencil(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    stencil_file: Optional[Path] = typer.Option(
        None,
        "--stencil-file",
        help="Stencil file. Its name must match the stencil's filename in the formation.",
    ),
    stencil_folder: Optional[Path] = typer.Option(
        None, "--stencil-folder", help="Render all files in the folder. Cannot be used with --stencil-file."
    ),
    snapshot: Optional[str] = typer.Option(None, "--snapshot", help="Snapshot UID. Defaults to the latest."),
    output: Optional[Path] = typer.Option(
        None, "--output", help="Where to save the rendered stencil (a folder with --stencil-folder). Default: stdout."
    ),
    watch: bool = typer.Option(False, "--watch", help="Render again every time a file changes."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Render stencils from local files without committing them to the formation."""
    name = require_formation_name(formation_name)
    if stencil_file is None and stencil_folder is None:
        raise CxError(
            "No stencil file or folder provided. "
            "Please use --stencil-file or --stencil-folder to specify a stencil file or folder"
        )
    if stencil_file is not None and stencil_folder is not None:
        raise CxError("Both --stencil-file and --stencil-folder provided. Please use only one")
    if watch and output is None:
        raise CxError("Cannot use --watch without --output")

    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    renderer = StencilRenderer(state.client, stack, name, snapshot)

    if stencil_folder is not None:
        try:
            files = sorted(p for p in stencil_folder.iterdir() if p.is_file())
        except OSError as e:
            raise CxError(f"Failed to fetch all files from folder {stencil_folder}: {e}") from e
    else:
        files = [stencil_file]

    outdir: Optional[Path] = None
    if output is not None:
        outdir = output if stencil_folder is not None else output.parent
        outdir.mkdir(parents=True, exist_ok=True)

    for path in files:
        target = output
        if outdir is not None and stencil_folder is not None:
            target = outdir / path.name
        if target is not None:
            typer.echo(f"Rendering {path.name} to {target}")
        renderer.render(path, target)

    if watch and outdir is not None:
        watch_and_render(renderer, files, outdir)


@stencils_app.command("add")
@handle_errors
def add_stencil(
    ctx: typer.Context,
    formation_name: Optional[str] = FORMATION_OPTION,
    stencil_file: Optional[Path] = typer.Option(None, "--stencil", help="Stencil file."),
    base_template: Optional[str] = typer.Option(None, "--base-template", help="UUID of the base template."),
    service: str = typer.Option("", "--service", help="Service context of the stencil, if applicable."),
    template: str = typer.Option("", "--template", help="Template filename."),
    sequence: int = typer.Option(0, "--sequence", help="Stencil sequence."),
    message: str = typer.Option("", "--message", help="Commit message."),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma separated tags."),
    stack_name: Optional[str] = STACK_OPTION,
    environment: Optional[str] = ENVIRONMENT_OPTION,
) -> None:
    """Add a new stencil to a formation."""
    name = require_formation_name(formation_name)
    if stencil_file is None:
        raise CxError("No stencil filename provided. Please use --stencil to specify a stencil file")
    if not base_template:
        raise CxError("No base template uuid provided. Please use --base-template to specify a stencil file")

    state = get_state(ctx)
    stack = state.must_stack(stack_name, environment)
    client = state.client
    formation = must_named_formation(client, stack, name)
    if formation.find_stencil(stencil_file.name) is not None:
        raise CxError("Another stencil with the same name is found. You can use the update command to update it")

    stencil = Stencil(
        filename=stencil_file.name,
        template_filename=template,
        context_id=service,
        tags=split_tags(tags),
        body=stencil_file.read_text(encoding="utf-8"),
        sequence=sequence,
    )
    client.formations.add_stencils(stack.uid, formation.uid, base_template, [stencil], message)
    typer.echo("Stencil was added to formation")
