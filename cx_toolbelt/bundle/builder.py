"""Build formation bundles from a live formation and read them back."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from pydantic import ValidationError

from ..api.models import EnvVar, Formation
from ..errors import BundleError
from .archive import PathLike, tar_directory
from .models import (
    BUNDLE_DIRS,
    CONFIGURATIONS_DIR,
    HELM_RELEASES_DIR,
    MANIFEST_FILENAME,
    POLICIES_DIR,
    STENCIL_GROUPS_DIR,
    STENCILS_DIR,
    TRANSFORMATIONS_DIR,
    FormationBundle,
    helm_values_filename,
    policy_filename,
    stencil_group_filename,
    transformation_filename,
)

logger = logging.getLogger(__name__)

FORMATION_VARS_FILENAME = "formation-vars"

Progress = Callable[[str], None]


def env_vars_document(env_vars: Iterable[EnvVar]) -> str:
    """``KEY=VALUE`` lines for every writable environment variable."""
    lines: List[str] = []
    for var in env_vars:
        if var.readonly:
            continue
        if var.value is None:
            value = ""
        elif isinstance(var.value, bool):
            value = "true" if var.value else "false"
        else:
            value = str(var.value)
        lines.append(f"{var.key}={value}\n")
    return "".join(lines)


def _write(path: Path, body: str) -> None:
    path.write_text(body, encoding="utf-8")


def write_bundle_directory(
    formation: Formation,
    bundle_dir: Path,
    env_vars: Iterable[EnvVar],
    app: str,
    progress: Progress = logger.info,
) -> FormationBundle:
    """Lay out ``formation`` as an unpacked bundle under ``bundle_dir``."""
    for name in BUNDLE_DIRS:
        (bundle_dir / name).mkdir(parents=True, exist_ok=True)

    progress("Saving stencils...")
    for stencil in formation.stencils:
        _write(bundle_dir / STENCILS_DIR / stencil.filename, stencil.body)

    progress("Saving stencil groups...")
    for group in formation.stencil_groups:
        _write(bundle_dir / STENCIL_GROUPS_DIR / stencil_group_filename(group.uid), group.rules)

    progress("Saving policies...")
    for policy in formation.policies:
        _write(bundle_dir / POLICIES_DIR / policy_filename(policy.uid), policy.body)

    progress("Saving transformations...")
    for transformation in formation.transformations:
        _write(bundle_dir / TRANSFORMATIONS_DIR / transformation_filename(transformation.uid), transformation.body)

    progress("Saving Environment Variables...")
    vars_path = bundle_dir / CONFIGURATIONS_DIR / FORMATION_VARS_FILENAME
    fd = os.open(vars_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(env_vars_document(env_vars))

    progress("Saving helm releases...")
    for release in formation.helm_releases:
        _write(bundle_dir / HELM_RELEASES_DIR / helm_values_filename(release.chart_name), release.body)

    progress("Saving bundle manifest...")
    manifest = FormationBundle.from_formation(formation, app, [FORMATION_VARS_FILENAME])
    _write(bundle_dir / MANIFEST_FILENAME, manifest.to_json())
    return manifest


def bundle_formation(
    formation: Formation,
    bundle_file: PathLike,
    env_vars: Iterable[EnvVar],
    app: str,
    progress: Progress = logger.info,
) -> Path:
    """Save ``formation`` with its environment variables as a ``.formation`` tarball.

    Args:
        formation: Formation fetched with its stencils included.
        bundle_file: Destination tarball.
        env_vars: Stack environment variables; read-only ones are left out.
        app: Name and version of the producing tool, recorded in the manifest.
        progress: Receives one line per step.

    Returns:
        The path of the written bundle.
    """
    top_dir = Path(tempfile.mkdtemp(prefix=f"{formation.name}-formation-bundle-"))
    try:
        bundle_dir = top_dir / "bundle"
        write_bundle_directory(formation, bundle_dir, env_vars, app, progress)
        dest = tar_directory(bundle_dir, bundle_file)
    finally:
        shutil.rmtree(top_dir, ignore_errors=True)
    progress(f"Bundle is saved to {bundle_file}")
    return dest


def load_formation_bundle(manifest_file: PathLike) -> FormationBundle:
    path = Path(manifest_file)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise BundleError(f"{path} not found; is this a formation bundle?") from e
    try:
        return FormationBundle.model_validate_json(raw)
    except ValidationError as e:
        raise BundleError(f"invalid bundle manifest {path}: {e}") from e


def bundle_file_name(formation_name: str, file_name: Optional[str] = None) -> str:
    """The bundle file to use, always ending in ``.formation``."""
    name = file_name or formation_name
    if Path(name).suffix != ".formation":
        name += ".formation"
    return name
