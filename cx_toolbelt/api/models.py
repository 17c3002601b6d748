"""Domain models returned by ``Cloud66ApiClient``.

These mirror the subset of the v3 REST payloads the toolbelt consumes. Extra
fields are ignored (see ``BaseSchema``).
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, TypeVar

from pydantic import AliasChoices, BeforeValidator, Field, field_validator

from .base import BaseSchema
from .errors import Cloud66ApiError

LETS_ENCRYPT_SSL_CERTIFICATE_TYPE = "lets_encrypt"
MANUAL_SSL_CERTIFICATE_TYPE = "manual"

STACK_STATUS = {
    0: "Pending analysis",
    1: "Deployed successfully",
    2: "Deployment failed",
    3: "Analyzing",
    4: "Analyzed",
    5: "Queued for deployment",
    6: "Deploying",
    7: "Unable to analyze",
}

# stack status codes while a deployment is still in flight
STACK_BUSY_STATUSES = frozenset({0, 3, 5, 6})

# base template repository status codes
BTR_STATUS_AVAILABLE = 6
BTR_TERMINAL_STATUSES = frozenset({5, 6, 7})

T = TypeVar("T")


def _none_to_list(v: Any) -> Any:
    return [] if v is None else v


# the API sends null for empty collections
NullableList = Annotated[List[T], BeforeValidator(_none_to_list)]


class Account(BaseSchema):
    id: int
    name: str = ""
    owner: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return v or ""


class Stack(BaseSchema):
    uid: str
    name: str = ""
    environment: str = ""
    account_name: str = ""
    git: Optional[str] = None
    git_branch: Optional[str] = None
    framework: str = ""
    backend: str = ""
    status_code: int = Field(default=0, alias="status")
    health_code: int = Field(default=0, alias="health")
    is_cluster: bool = False
    is_inside_cluster: bool = False
    cluster_name: str = ""
    application_address: Optional[str] = None
    fqdn: Optional[str] = None
    redeploy_hook: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_activity: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("last_activity_iso", "last_activity")
    )

    @field_validator("environment", "account_name", "framework", "backend", "cluster_name", mode="before")
    @classmethod
    def _empty_str(cls, v):
        return v or ""

    @field_validator("last_activity", mode="before")
    @classmethod
    def _lenient_time(cls, v):
        # older payloads send a human formatted string here
        if isinstance(v, str):
            try:
                return datetime.fromisoformat(v.replace("Z", "+00:00"))
            except ValueError:
                return None
        return v

    @property
    def status(self) -> str:
        return STACK_STATUS.get(self.status_code, "Unknown")

    @property
    def is_busy(self) -> bool:
        return self.status_code in STACK_BUSY_STATUSES

    @property
    def stack_type(self) -> str:
        if self.is_cluster:
            return "kubernetes/cluster"
        if self.is_inside_cluster:
            return "kubernetes/in-cluster"
        if self.framework == "skycap":
            return "skycap"
        if self.backend == "docker":
            return "docker"
        if self.backend == "kubernetes":
            return "kubernetes/standalone"
        return "ruby/rack"

    @property
    def display_environment(self) -> str:
        if self.is_cluster or (not self.is_inside_cluster and self.framework == "skycap"):
            return "n/a"
        return self.environment or "n/a"

    @property
    def last_activity_or_created(self) -> Optional[datetime]:
        return self.last_activity or self.created_at


class Server(BaseSchema):
    uid: str
    name: str = ""
    address: Optional[str] = None
    server_type: Optional[str] = None
    server_roles: NullableList[str] = Field(default_factory=list)
    dns_record: Optional[str] = None
    health: Optional[int] = None

    def has_role(self, role: str) -> bool:
        return any(r.lower() == role.lower() for r in self.server_roles)

    @property
    def can_host_containers(self) -> bool:
        return self.has_role("docker") or self.has_role("kubes")


class Container(BaseSchema):
    uid: str
    name: Optional[str] = None
    server_uid: Optional[str] = None
    server_name: str = ""
    service_name: Optional[str] = None
    image: Optional[str] = None
    command: Optional[str] = None
    private_ip: Optional[str] = None
    docker_ip: Optional[str] = None
    health_state: Optional[int] = None
    health_message: Optional[str] = None
    started_at: Optional[datetime] = None


class Service(BaseSchema):
    name: str
    containers: NullableList[Container] = Field(default_factory=list)

    def server_container_counts(self) -> Dict[str, int]:
        """Number of containers of this service per server name, in first-seen order."""
        counts: Dict[str, int] = {}
        for container in self.containers:
            counts[container.server_name] = counts.get(container.server_name, 0) + 1
        return counts


class Snapshot(BaseSchema):
    uid: str
    triggered_by: str = ""
    triggered_at: Optional[datetime] = None
    action: str = ""
    gitref: Optional[str] = None

    @field_validator("triggered_by", "action", mode="before")
    @classmethod
    def _empty_str(cls, v):
        return v or ""


class RenderError(BaseSchema):
    text: str = ""
    stencil: str = ""
    severity: str = "error"
    line: Optional[int] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v):
        return str(v).lower() if v else "error"


class RenderedStencil(BaseSchema):
    filename: str
    content: str = ""
    sequence: int = 0


class Renders(BaseSchema):
    stencils: NullableList[RenderedStencil] = Field(default_factory=list)
    render_errors: NullableList[RenderError] = Field(
        default_factory=list, validation_alias=AliasChoices("render_errors", "errors")
    )

    def errors(self) -> List[RenderError]:
        return [e for e in self.render_errors if e.severity != "warning"]

    def warnings(self) -> List[RenderError]:
        return [e for e in self.render_errors if e.severity == "warning"]


class BaseTemplate(BaseSchema):
    uid: str = ""
    name: str = ""
    git_repo: str = ""
    git_branch: str = ""
    status_code: int = Field(default=0, alias="status")


class Stencil(BaseSchema):
    uid: str = ""
    filename: str
    template_filename: str = ""
    context_id: str = ""
    status: int = 0
    tags: NullableList[str] = Field(default_factory=list)
    body: str = ""
    sequence: int = 0
    inline: bool = False
    gitfile_path: str = ""
    btr_uuid: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("template_filename", "context_id", "body", "gitfile_path", mode="before")
    @classmethod
    def _empty_str(cls, v):
        return v or ""


class StencilGroup(BaseSchema):
    uid: str = ""
    name: str = ""
    tags: NullableList[str] = Field(default_factory=list)
    rules: str = ""


class Policy(BaseSchema):
    uid: str = ""
    name: str = ""
    selector: str = ""
    sequence: int = 0
    body: str = ""
    tags: NullableList[str] = Field(default_factory=list)


class Transformation(BaseSchema):
    uid: str = ""
    name: str = ""
    selector: str = ""
    sequence: int = 0
    body: str = ""
    tags: NullableList[str] = Field(default_factory=list)


class HelmRelease(BaseSchema):
    uid: str = ""
    chart_name: str = ""
    display_name: str = ""
    version: str = ""
    repository_url: str = ""
    body: str = ""


class Formation(BaseSchema):
    uid: str
    name: str = ""
    tags: NullableList[str] = Field(default_factory=list)
    base_templates: NullableList[BaseTemplate] = Field(default_factory=list)
    stencils: NullableList[Stencil] = Field(default_factory=list)
    stencil_groups: NullableList[StencilGroup] = Field(default_factory=list)
    policies: NullableList[Policy] = Field(default_factory=list)
    transformations: NullableList[Transformation] = Field(default_factory=list)
    helm_releases: NullableList[HelmRelease] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_stencil(self, filename: str) -> Optional[Stencil]:
        for stencil in self.stencils:
            if stencil.filename == filename:
                return stencil
        return None

    def find_base_template_index(self, repo: str, branch: str) -> int:
        for idx, btr in enumerate(self.base_templates):
            if btr.git_repo.strip() == repo.strip() and btr.git_branch.strip() == branch.strip():
                return idx
        return -1


class EnvVar(BaseSchema):
    id: Optional[int] = None
    key: str
    value: Any = None
    readonly: bool = False


class AsyncResult(BaseSchema):
    id: int
    user: Optional[str] = None
    resource_type: Optional[str] = None
    action: Optional[str] = None
    resource_id: Optional[str] = None
    started_via: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    finished_success: Optional[bool] = None
    finished_message: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None


class GenericResponse(BaseSchema):
    ok: bool = True
    message: str = ""


class SslCertificate(BaseSchema):
    uuid: Optional[str] = None
    name: Optional[str] = None
    type: str
    server_names: str = ""
    certificate: Optional[str] = None
    key: Optional[str] = None
    intermediate_certificate: Optional[str] = None
    status: Optional[int] = None
    expires_at: Optional[datetime] = None


class ConfigureFileVersion(BaseSchema):
    uid: str
    file_type: str = ""
    comments: str = ""
    body: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("comments", mode="before")
    @classmethod
    def _empty_str(cls, v):
        return v or ""


class ConfigurationFile(BaseSchema):
    type: str
    name: str = ""
    body: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("name", mode="before")
    @classmethod
    def _empty_str(cls, v):
        return v or ""


class WorkflowWrapper(BaseSchema):
    """Workflow document for a formation; ``workflow`` arrives base64 encoded."""

    workflow: str = ""

    def decoded(self) -> bytes:
        try:
            return base64.b64decode(self.workflow)
        except binascii.Error as e:
            raise Cloud66ApiError(f"unable to decode the formation workflow: {e}") from e


class Deployment(BaseSchema):
    id: int
    triggered_by: str = ""
    git_hash: Optional[str] = None
    is_deploying: bool = False
    is_head: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    status: Optional[int] = None

    @field_validator("triggered_by", mode="before")
    @classmethod
    def _empty_str(cls, v):
        return v or ""
