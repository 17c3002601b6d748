"""Recreate a formation on a stack from an unpacked bundle."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List

from ..api.client import Cloud66ApiClient
from ..api.errors import Cloud66ApiError
from ..api.models import BTR_STATUS_AVAILABLE, BTR_TERMINAL_STATUSES, BaseTemplate, Formation
from ..errors import BundleError
from .models import CONFIGURATIONS_DIR, BundleBaseTemplate, FormationBundle

logger = logging.getLogger(__name__)

Progress = Callable[[str], None]

DUPLICATE_ENV_VAR_MESSAGE = "Another environment variable with the same key exists. Use PUT to change it."


def _is_present(btr: BundleBaseTemplate, remote: List[BaseTemplate]) -> bool:
    return any(
        r.git_repo.strip() == btr.repo.strip()
        and r.git_branch.strip() == btr.branch.strip()
        and r.status_code == BTR_STATUS_AVAILABLE
        for r in remote
    )


def verify_base_templates(
    client: Cloud66ApiClient,
    bundle: FormationBundle,
    progress: Progress = logger.info,
    *,
    poll_interval: float = 0.1,
    timeout: float = 600.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[BaseTemplate]:
    """Make sure every base template repository of the bundle is available.

    Missing repositories are registered and then polled until the server has
    finished verifying them (successfully or not). A new repository that does
    not show up in the listing is not waited on.

    Returns:
        The base templates that had to be created.
    """
    progress("Verifying the presence of the Base Template Repository")
    remote = client.base_templates.list()
    added: List[BaseTemplate] = []
    for btr in bundle.base_templates:
        if _is_present(btr, remote):
            continue
        added.append(client.base_templates.create(btr.name, btr.repo, btr.branch))

    if not added:
        return added

    progress("Waiting for the new Base Template Repositories to be verified")
    created = {btr.uid for btr in added}
    deadline = time.monotonic() + timeout
    while True:
        sleep(poll_interval)
        # repositories missing from the listing are not waited on
        pending = {
            r.uid for r in client.base_templates.list() if r.uid in created and r.status_code not in BTR_TERMINAL_STATUSES
        }
        if not pending:
            break
        if time.monotonic() >= deadline:
            raise BundleError("timed out waiting for base template repositories to be verified")
    return added


def _upload_stencils(
    client: Cloud66ApiClient,
    stack_uid: str,
    formation: Formation,
    btr: BundleBaseTemplate,
    bundle_path: Path,
    message: str,
    progress: Progress,
) -> None:
    progress("Adding stencils...")
    stencils = [s.as_stencil(bundle_path) for s in btr.stencils]
    idx = formation.find_base_template_index(btr.repo, btr.branch)
    if idx == -1:
        raise BundleError("base template repository not found")
    client.formations.add_stencils(stack_uid, formation.uid, formation.base_templates[idx].uid, stencils, message)
    progress("Stencils added")


def create_and_upload_formation(
    client: Cloud66ApiClient,
    bundle: FormationBundle,
    formation_name: str,
    stack_uid: str,
    bundle_path: Path,
    message: str,
    progress: Progress = logger.info,
) -> Formation:
    """Create ``formation_name`` from the bundle and upload all of its content."""
    progress(f"Creating {formation_name} formation...")
    base_templates = [BaseTemplate(name=b.name, git_repo=b.repo, git_branch=b.branch) for b in bundle.base_templates]
    formation = client.formations.create_with_base_templates(stack_uid, formation_name, base_templates, bundle.tags)
    progress("Formation created")

    for btr in bundle.base_templates:
        _upload_stencils(client, stack_uid, formation, btr, bundle_path, message, progress)

    progress("Adding policies...")
    policies = [p.as_policy(bundle_path) for p in bundle.policies]
    if policies:
        client.formations.add_policies(stack_uid, formation.uid, policies, message)
    progress("Policies added")

    progress("Adding transformations...")
    transformations = [t.as_transformation(bundle_path) for t in bundle.transformations]
    if transformations:
        client.formations.add_transformations(stack_uid, formation.uid, transformations, message)
    progress("Transformations added")

    progress("Adding helm releases...")
    releases = [r.as_release(bundle_path) for r in bundle.helm_releases]
    if releases:
        client.formations.add_helm_releases(stack_uid, formation.uid, releases, message)
    progress("Helm Releases added")

    progress("Adding stencil groups...")
    groups = [g.as_stencil_group(bundle_path) for g in bundle.stencil_groups]
    if groups:
        client.formations.add_stencil_groups(stack_uid, formation.uid, groups, message)
    progress("Stencil Groups added")

    return formation


def parse_env_vars(text: str, warn: Progress = logger.warning) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines; values may themselves contain ``=``."""
    env_vars: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            warn("Wrong environment variable value")
            continue
        env_vars[key] = value
    return env_vars


def upload_environment_variables(
    client: Cloud66ApiClient,
    bundle: FormationBundle,
    stack_uid: str,
    bundle_path: Path,
    progress: Progress = logger.info,
) -> None:
    """Create the bundled environment variables on the stack.

    Keys that already exist on the stack are reported and skipped. Every
    creation is an async action on the server and is waited for.
    """
    progress("Adding environment variables")
    env_vars: Dict[str, str] = {}
    for name in bundle.configurations:
        path = bundle_path / CONFIGURATIONS_DIR / name
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise BundleError(f"bundle is missing {CONFIGURATIONS_DIR}/{name}") from e
        env_vars.update(parse_env_vars(text, warn=progress))

    for key, value in env_vars.items():
        try:
            result = client.env_vars.create(stack_uid, key, value)
        except Cloud66ApiError as e:
            if str(e) != DUPLICATE_ENV_VAR_MESSAGE:
                raise
            progress(f"Failed to add the {key} environment variable because already present")
            continue
        if result is not None:
            client.actions.wait(stack_uid, result.id)
