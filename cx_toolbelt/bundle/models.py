"""Formation bundle manifest.

A bundle is a gzip tarball with a single ``bundle/`` root::

    bundle/
        manifest.json
        stencils/<filename>
        stencil_groups/<uid>.json
        policies/<uid>.cop
        transformations/<uid>.js
        helm_releases/<chart_name>-values.yml
        configurations/formation-vars

``manifest.json`` describes every item; item bodies live in their own files
so they can be reviewed and edited before uploading the bundle again.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import Field

from ..api.base import BaseSchema
from ..api.models import (
    Formation,
    HelmRelease,
    NullableList,
    Policy,
    Stencil,
    StencilGroup,
    Transformation,
)
from ..errors import BundleError

BUNDLE_VERSION = "1"
MANIFEST_FILENAME = "manifest.json"

STENCILS_DIR = "stencils"
STENCIL_GROUPS_DIR = "stencil_groups"
POLICIES_DIR = "policies"
TRANSFORMATIONS_DIR = "transformations"
CONFIGURATIONS_DIR = "configurations"
HELM_RELEASES_DIR = "helm_releases"

BUNDLE_DIRS = (
    STENCILS_DIR,
    STENCIL_GROUPS_DIR,
    POLICIES_DIR,
    TRANSFORMATIONS_DIR,
    CONFIGURATIONS_DIR,
    HELM_RELEASES_DIR,
)


def _read_body(bundle_path: Path, *parts: str) -> str:
    path = bundle_path.joinpath(*parts)
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise BundleError(f"bundle is missing {path.relative_to(bundle_path)}") from e


def policy_filename(uid: str) -> str:
    return f"{uid}.cop"


def transformation_filename(uid: str) -> str:
    return f"{uid}.js"


def stencil_group_filename(uid: str) -> str:
    return f"{uid}.json"


def helm_values_filename(chart_name: str) -> str:
    return f"{chart_name}-values.yml"


class BundleMetadata(BaseSchema):
    app: str = ""
    timestamp: Optional[datetime] = None


class BundleStencil(BaseSchema):
    uid: str = ""
    filename: str
    template_filename: str = ""
    context_id: str = ""
    tags: NullableList[str] = Field(default_factory=list)
    sequence: int = 0
    inline: bool = False

    def as_stencil(self, bundle_path: Path) -> Stencil:
        return Stencil(
            filename=self.filename,
            template_filename=self.template_filename,
            context_id=self.context_id,
            tags=list(self.tags),
            sequence=self.sequence,
            inline=self.inline,
            body=_read_body(bundle_path, STENCILS_DIR, self.filename),
        )


class BundleBaseTemplate(BaseSchema):
    name: str = ""
    repo: str
    branch: str
    stencils: NullableList[BundleStencil] = Field(default_factory=list)


class BundlePolicy(BaseSchema):
    uid: str
    name: str = ""
    selector: str = ""
    sequence: int = 0
    tags: NullableList[str] = Field(default_factory=list)

    def as_policy(self, bundle_path: Path) -> Policy:
        return Policy(
            name=self.name,
            selector=self.selector,
            sequence=self.sequence,
            tags=list(self.tags),
            body=_read_body(bundle_path, POLICIES_DIR, policy_filename(self.uid)),
        )


class BundleTransformation(BaseSchema):
    uid: str
    name: str = ""
    selector: str = ""
    sequence: int = 0
    tags: NullableList[str] = Field(default_factory=list)

    def as_transformation(self, bundle_path: Path) -> Transformation:
        return Transformation(
            name=self.name,
            selector=self.selector,
            sequence=self.sequence,
            tags=list(self.tags),
            body=_read_body(bundle_path, TRANSFORMATIONS_DIR, transformation_filename(self.uid)),
        )


class BundleStencilGroup(BaseSchema):
    uid: str
    name: str = ""
    tags: NullableList[str] = Field(default_factory=list)

    def as_stencil_group(self, bundle_path: Path) -> StencilGroup:
        return StencilGroup(
            name=self.name,
            tags=list(self.tags),
            rules=_read_body(bundle_path, STENCIL_GROUPS_DIR, stencil_group_filename(self.uid)),
        )


class BundleHelmRelease(BaseSchema):
    uid: str = ""
    chart_name: str
    display_name: str = ""
    version: str = ""
    repository_url: str = ""
    values_file: str = ""

    def as_release(self, bundle_path: Path) -> HelmRelease:
        values_file = self.values_file or helm_values_filename(self.chart_name)
        return HelmRelease(
            chart_name=self.chart_name,
            display_name=self.display_name,
            version=self.version,
            repository_url=self.repository_url,
            body=_read_body(bundle_path, HELM_RELEASES_DIR, values_file),
        )


class FormationBundle(BaseSchema):
    """The ``manifest.json`` document of a formation bundle."""

    version: str = BUNDLE_VERSION
    metadata: BundleMetadata = Field(default_factory=BundleMetadata)
    uid: str = ""
    name: str = ""
    tags: NullableList[str] = Field(default_factory=list)
    base_templates: NullableList[BundleBaseTemplate] = Field(default_factory=list)
    policies: NullableList[BundlePolicy] = Field(default_factory=list)
    transformations: NullableList[BundleTransformation] = Field(default_factory=list)
    stencil_groups: NullableList[BundleStencilGroup] = Field(default_factory=list)
    helm_releases: NullableList[BundleHelmRelease] = Field(default_factory=list)
    configurations: NullableList[str] = Field(default_factory=list, alias="configuration")

    @classmethod
    def from_formation(cls, formation: Formation, app: str, configurations: List[str]) -> "FormationBundle":
        """Describe ``formation`` as a bundle manifest.

        Stencils are grouped under the base template they belong to
        (``btr_uuid``); stencils that name no known base template are kept
        with the first one.
        """
        base_templates = [
            BundleBaseTemplate(name=btr.name, repo=btr.git_repo, branch=btr.git_branch)
            for btr in formation.base_templates
        ]
        index_by_uid = {btr.uid: idx for idx, btr in enumerate(formation.base_templates) if btr.uid}
        for stencil in formation.stencils:
            idx = index_by_uid.get(stencil.btr_uuid or "", 0)
            if not base_templates:
                raise BundleError(f"formation {formation.name} has stencils but no base template")
            base_templates[idx].stencils.append(
                BundleStencil(
                    uid=stencil.uid,
                    filename=stencil.filename,
                    template_filename=stencil.template_filename,
                    context_id=stencil.context_id,
                    tags=list(stencil.tags),
                    sequence=stencil.sequence,
                    inline=stencil.inline,
                )
            )

        return cls(
            metadata=BundleMetadata(app=app, timestamp=datetime.now(timezone.utc)),
            uid=formation.uid,
            name=formation.name,
            tags=list(formation.tags),
            base_templates=base_templates,
            policies=[
                BundlePolicy(uid=p.uid, name=p.name, selector=p.selector, sequence=p.sequence, tags=list(p.tags))
                for p in formation.policies
            ],
            transformations=[
                BundleTransformation(uid=t.uid, name=t.name, selector=t.selector, sequence=t.sequence, tags=list(t.tags))
                for t in formation.transformations
            ],
            stencil_groups=[
                BundleStencilGroup(uid=g.uid, name=g.name, tags=list(g.tags)) for g in formation.stencil_groups
            ],
            helm_releases=[
                BundleHelmRelease(
                    uid=r.uid,
                    chart_name=r.chart_name,
                    display_name=r.display_name,
                    version=r.version,
                    repository_url=r.repository_url,
                    values_file=helm_values_filename(r.chart_name),
                )
                for r in formation.helm_releases
            ],
            configurations=list(configurations),
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=4)
