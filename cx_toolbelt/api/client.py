"""Cloud 66 REST API client

Overview
--------
Thin, focused HTTP client for the Cloud 66 v3 REST API. It exposes exactly the
endpoints the toolbelt commands need and returns typed models for every
response. It deliberately performs no rendering or printing; commands decide
how to present results.

Key features
------------
- Namespaced surface mirroring the API resources: ``stacks``, ``actions``,
  ``servers``, ``services``, ``snapshots``, ``formations``, ``env_vars``,
  ``base_templates``, ``ssl_certificates``, ``configure_files``,
  ``configurations`` and ``accounts``.
- Transparent pagination: list endpoints follow ``pagination.next`` until the
  last page.
- Responses are unwrapped from the ``{"response": ...}`` envelope.
- When an organization is selected, every request carries ``account_id``.

Errors
------
Non-2xx responses are raised as ``Cloud66ApiError`` (``Cloud66NotFoundError``
for 404, ``Cloud66AuthenticationError`` for 401/403). The message is the
server's ``error_description`` (or ``error``) when the body carries one.

Usage
-----
>>> client = Cloud66ApiClient("https://app.cloud66.com", access_token="...")
>>> stacks = client.stacks.list()
>>> formations = client.formations.list(stacks[0].uid, include_stencils=True)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx

from .. import __version__
from .errors import (
    AsyncActionError,
    Cloud66ApiError,
    Cloud66AuthenticationError,
    Cloud66NotFoundError,
)
from .models import (
    Account,
    AsyncResult,
    BaseTemplate,
    ConfigurationFile,
    ConfigureFileVersion,
    Deployment,
    EnvVar,
    Formation,
    GenericResponse,
    HelmRelease,
    Policy,
    Renders,
    Server,
    Service,
    Snapshot,
    SslCertificate,
    Stack,
    Stencil,
    StencilGroup,
    Transformation,
    WorkflowWrapper,
)

API_PREFIX = "/api/3"


class Cloud66ApiClient:
    """Thin HTTP client for the Cloud 66 v3 API.

    Responsibilities
    ----------------
    - Authenticate requests with a Bearer access token.
    - Scope requests to the selected organization (``account_id``).
    - Normalize envelopes and pagination, and map payloads to models.
    """

    def __init__(
        self,
        base_url: str,
        *,
        access_token: Optional[str] = None,
        account_id: Optional[int] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        poll_interval: float = 5.0,
    ) -> None:
        """Create an API client.

        Args:
            base_url: Base URL of the platform (e.g., ``https://app.cloud66.com``).
            access_token: OAuth access token sent as ``Authorization: Bearer``.
            account_id: Organization to scope every request to.
            timeout: Default HTTP timeout for the internal client.
            client: Optional preconfigured ``httpx.Client`` to use.
            poll_interval: Seconds between polls when waiting on async actions.
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.account_id = account_id
        self.poll_interval = poll_interval
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._logger = logging.getLogger(__name__)

        self.accounts = _AccountsNamespace(self)
        self.stacks = _StacksNamespace(self)
        self.actions = _ActionsNamespace(self)
        self.servers = _ServersNamespace(self)
        self.services = _ServicesNamespace(self)
        self.snapshots = _SnapshotsNamespace(self)
        self.formations = _FormationsNamespace(self)
        self.env_vars = _EnvVarsNamespace(self)
        self.base_templates = _BaseTemplatesNamespace(self)
        self.ssl_certificates = _SslCertificatesNamespace(self)
        self.configure_files = _ConfigureFilesNamespace(self)
        self.configurations = _ConfigurationsNamespace(self)

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Accept": "application/json",
            "User-Agent": f"cx/{__version__}",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> httpx.Response:
        query: Dict[str, Any] = {k: v for k, v in (params or {}).items() if v is not None}
        if self.account_id is not None:
            query["account_id"] = self.account_id
        try:
            self._logger.debug("Cloud66ApiClient.%s: %s %s params=%s", operation, method, path, query)
            r = self._client.request(
                method,
                self._url(path),
                headers=self._headers(),
                params=query or None,
                json=json,
            )
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._error_from_response(operation, e.response) from e
        except httpx.TransportError as e:
            raise Cloud66ApiError(f"{operation} failed: {e}") from e
        return r

    @staticmethod
    def _error_from_response(operation: str, response: httpx.Response) -> Cloud66ApiError:
        try:
            details: Any = response.json()
        except ValueError:
            details = response.text
        message = f"{operation} failed: {response.status_code}"
        if isinstance(details, dict):
            message = str(details.get("error_description") or details.get("error") or message)
        if response.status_code == 404:
            return Cloud66NotFoundError(message, details=details)
        if response.status_code in (401, 403):
            return Cloud66AuthenticationError(message, status_code=response.status_code, details=details)
        return Cloud66ApiError(message, status_code=response.status_code, details=details)

    @staticmethod
    def _unwrap(r: httpx.Response) -> Any:
        if not r.content:
            return None
        body = r.json()
        if isinstance(body, dict) and "response" in body:
            return body["response"]
        return body

    def _get(self, path: str, *, operation: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._unwrap(self._request("GET", path, operation=operation, params=params))

    def _get_all(self, path: str, *, operation: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """GET every page of a list endpoint and concatenate the items."""
        items: List[Any] = []
        page = 1
        while True:
            query = dict(params or {})
            query["page"] = page
            r = self._request("GET", path, operation=operation, params=query)
            body = r.json() if r.content else None
            payload = body.get("response") if isinstance(body, dict) else body
            if isinstance(payload, list):
                items.extend(payload)
            pagination = body.get("pagination") if isinstance(body, dict) else None
            next_page = pagination.get("next") if isinstance(pagination, dict) else None
            if not next_page or int(next_page) <= page:
                break
            page = int(next_page)
        self._logger.debug("Cloud66ApiClient.%s: got %d items", operation, len(items))
        return items

    def _post(self, path: str, *, operation: str, json: Optional[Any] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._unwrap(self._request("POST", path, operation=operation, json=json, params=params))

    def _put(self, path: str, *, operation: str, json: Optional[Any] = None) -> Any:
        return self._unwrap(self._request("PUT", path, operation=operation, json=json))


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


class _Namespace:
    def __init__(self, client: Cloud66ApiClient) -> None:
        self._client = client


class _AccountsNamespace(_Namespace):
    def list(self) -> List[Account]:
        """List the organizations the token has access to (``GET /accounts.json``)."""
        items = self._client._get_all("/accounts.json", operation="list_accounts")
        return [Account.model_validate(x) for x in items]


class _StacksNamespace(_Namespace):
    def list(self, predicate: Optional[Callable[[Stack], bool]] = None) -> List[Stack]:
        """List every stack (``GET /stacks.json``), optionally keeping only those matching ``predicate``."""
        items = self._client._get_all("/stacks.json", operation="list_stacks")
        stacks = [Stack.model_validate(x) for x in items]
        if predicate is None:
            return stacks
        return [s for s in stacks if predicate(s)]

    def get(self, stack_uid: str) -> Stack:
        data = self._client._get(f"/stacks/{stack_uid}.json", operation="get_stack")
        return Stack.model_validate(data)

    def find_by_name(self, name: str, environment: str = "") -> List[Stack]:
        """Stacks named exactly ``name`` (case-insensitive), optionally in an environment.

        Raises:
            Cloud66NotFoundError: No stack has that name.
        """
        env = environment.lower()

        def _matches(stack: Stack) -> bool:
            if stack.name.lower() != name.lower():
                return False
            return not env or stack.environment.lower().startswith(env)

        stacks = self.list(_matches)
        if not stacks:
            raise Cloud66NotFoundError(f"Stack '{name}' not found")
        return stacks

    def create(
        self,
        name: str,
        service_yaml: str,
        *,
        environment: Optional[str] = None,
        manifest_yaml: Optional[str] = None,
    ) -> Stack:
        """Create a Maestro (docker) stack (``POST /stacks.json``)."""
        payload: Dict[str, Any] = {"name": name, "service_yaml": service_yaml}
        if environment:
            payload["environment"] = environment
        if manifest_yaml:
            payload["manifest_yaml"] = manifest_yaml
        data = self._client._post("/stacks.json", operation="create_stack", json=payload)
        return Stack.model_validate(data)

    def redeploy(
        self,
        stack_uid: str,
        *,
        git_ref: Optional[str] = None,
        services: Optional[Iterable[str]] = None,
        deploy_strategy: Optional[str] = None,
        deployment_profile: Optional[str] = None,
    ) -> GenericResponse:
        """Enqueue a redeployment (``POST /stacks/{uid}/deployments.json``)."""
        payload: Dict[str, Any] = {}
        if git_ref:
            payload["git_ref"] = git_ref
        service_list = list(services or [])
        if service_list:
            payload["services"] = service_list
        if deploy_strategy:
            payload["deploy_strategy"] = deploy_strategy
        if deployment_profile:
            payload["deployment_profile"] = deployment_profile
        data = self._client._post(f"/stacks/{stack_uid}/deployments.json", operation="redeploy", json=payload)
        return GenericResponse.model_validate(data or {})

    def deployments(self, stack_uid: str) -> List[Deployment]:
        items = self._client._get_all(f"/stacks/{stack_uid}/deployments.json", operation="list_deployments")
        return [Deployment.model_validate(x) for x in items]


class _ActionsNamespace(_Namespace):
    def invoke(self, stack_uid: str, command: str, **args: Any) -> AsyncResult:
        """Start an async stack action (``POST /stacks/{uid}/actions.json``)."""
        payload: Dict[str, Any] = {"command": command}
        payload.update({k: v for k, v in args.items() if v is not None})
        data = self._client._post(f"/stacks/{stack_uid}/actions.json", operation=f"action_{command}", json=payload)
        return AsyncResult.model_validate(data)

    def get(self, stack_uid: str, action_id: int) -> AsyncResult:
        data = self._client._get(f"/stacks/{stack_uid}/actions/{action_id}.json", operation="get_action")
        return AsyncResult.model_validate(data)

    def wait(
        self,
        stack_uid: str,
        action_id: int,
        *,
        timeout: float = 600.0,
        interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> AsyncResult:
        """Poll an async action until it finishes.

        Raises:
            AsyncActionError: The action finished unsuccessfully or did not finish within ``timeout``.
        """
        step = self._client.poll_interval if interval is None else interval
        deadline = time.monotonic() + timeout
        while True:
            result = self.get(stack_uid, action_id)
            if result.finished:
                if result.finished_success is False:
                    raise AsyncActionError(action_id, result.finished_message or f"action {action_id} failed")
                return result
            if time.monotonic() >= deadline:
                raise AsyncActionError(action_id, f"timed out waiting for action {action_id} to finish")
            sleep(step)


class _ServersNamespace(_Namespace):
    def list(self, stack_uid: str) -> List[Server]:
        items = self._client._get_all(f"/stacks/{stack_uid}/servers.json", operation="list_servers")
        return [Server.model_validate(x) for x in items]


class _ServicesNamespace(_Namespace):
    def list(self, stack_uid: str, server_uid: Optional[str] = None) -> List[Service]:
        items = self._client._get_all(
            f"/stacks/{stack_uid}/services.json",
            operation="list_services",
            params={"server_uid": server_uid},
        )
        return [Service.model_validate(x) for x in items]

    def get(self, stack_uid: str, service_name: str, server_uid: Optional[str] = None) -> Optional[Service]:
        """Return the named service, or ``None`` when the stack has no such service."""
        try:
            data = self._client._get(
                f"/stacks/{stack_uid}/services/{service_name}.json",
                operation="get_service",
                params={"server_uid": server_uid},
            )
        except Cloud66NotFoundError:
            return None
        if not data:
            return None
        return Service.model_validate(data)

    def action(self, stack_uid: str, service_name: str, action: str, server_uid: Optional[str] = None) -> AsyncResult:
        return self._client.actions.invoke(stack_uid, action, service_name=service_name, server_uid=server_uid)

    def scale(self, stack_uid: str, service_name: str, count: str) -> AsyncResult:
        """Scale a service to an absolute (``"2"``) or relative (``"[+2]"``) container count."""
        return self._client.actions.invoke(stack_uid, "service_scale", service_name=service_name, count=count)


class _SnapshotsNamespace(_Namespace):
    def list(self, stack_uid: str) -> List[Snapshot]:
        items = self._client._get_all(f"/stacks/{stack_uid}/snapshots.json", operation="list_snapshots")
        return [Snapshot.model_validate(x) for x in items]

    def render(
        self,
        stack_uid: str,
        snapshot_uid: str,
        formation_uid: str,
        *,
        files: Optional[List[str]] = None,
        use_latest: bool = True,
        filter_name: Optional[str] = None,
    ) -> Renders:
        """Render a formation against a snapshot.

        API
        ---
        - Method/Path: ``GET /stacks/{uid}/snapshots/{snapshot}/formations/{formation}/renders.json``
        - Query: ``files[]`` (repeatable), ``use_latest``, ``filter``.
        """
        params: Dict[str, Any] = {"use_latest": _bool_param(use_latest), "filter": filter_name or None}
        if files:
            params["files[]"] = list(files)
        data = self._client._get(
            f"/stacks/{stack_uid}/snapshots/{snapshot_uid}/formations/{formation_uid}/renders.json",
            operation="render_snapshot",
            params=params,
        )
        return Renders.model_validate(data or {})


class _FormationsNamespace(_Namespace):
    def _path(self, stack_uid: str, formation_uid: str, resource: str) -> str:
        return f"/stacks/{stack_uid}/formations/{formation_uid}/{resource}.json"

    def list(self, stack_uid: str, include_stencils: bool = False) -> List[Formation]:
        items = self._client._get_all(
            f"/stacks/{stack_uid}/formations.json",
            operation="list_formations",
            params={"include_stencils": _bool_param(include_stencils)},
        )
        return [Formation.model_validate(x) for x in items]

    def create(
        self,
        stack_uid: str,
        name: str,
        template_repo: str,
        template_branch: str,
        tags: Optional[List[str]] = None,
    ) -> Formation:
        payload = {
            "name": name,
            "template_base": template_repo,
            "template_branch": template_branch,
            "tags": list(tags or []),
        }
        data = self._client._post(f"/stacks/{stack_uid}/formations.json", operation="create_formation", json=payload)
        return Formation.model_validate(data)

    def create_with_base_templates(
        self,
        stack_uid: str,
        name: str,
        base_templates: List[BaseTemplate],
        tags: Optional[List[str]] = None,
    ) -> Formation:
        """Create a formation backed by several base template repositories."""
        payload = {
            "name": name,
            "base_templates": [{"name": b.name, "repo": b.git_repo, "branch": b.git_branch} for b in base_templates],
            "tags": list(tags or []),
        }
        data = self._client._post(f"/stacks/{stack_uid}/formations.json", operation="create_formation", json=payload)
        return Formation.model_validate(data)

    def update_stencil(self, stack_uid: str, formation_uid: str, stencil_uid: str, message: str, body: str) -> Stencil:
        data = self._client._put(
            f"/stacks/{stack_uid}/formations/{formation_uid}/stencils/{stencil_uid}.json",
            operation="update_stencil",
            json={"message": message, "body": body},
        )
        return Stencil.model_validate(data)

    def add_stencils(
        self, stack_uid: str, formation_uid: str, btr_uuid: str, stencils: List[Stencil], message: str
    ) -> List[Stencil]:
        payload = {
            "btr_uuid": btr_uuid,
            "message": message,
            "stencils": [
                s.model_dump(
                    include={"filename", "template_filename", "context_id", "tags", "body", "sequence", "inline"}
                )
                for s in stencils
            ],
        }
        data = self._client._post(self._path(stack_uid, formation_uid, "stencils"), operation="add_stencils", json=payload)
        return [Stencil.model_validate(x) for x in (data or [])]

    def add_policies(self, stack_uid: str, formation_uid: str, policies: List[Policy], message: str) -> List[Policy]:
        payload = {
            "message": message,
            "policies": [p.model_dump(include={"name", "selector", "sequence", "body", "tags"}) for p in policies],
        }
        data = self._client._post(self._path(stack_uid, formation_uid, "policies"), operation="add_policies", json=payload)
        return [Policy.model_validate(x) for x in (data or [])]

    def add_transformations(
        self, stack_uid: str, formation_uid: str, transformations: List[Transformation], message: str
    ) -> List[Transformation]:
        payload = {
            "message": message,
            "transformations": [
                t.model_dump(include={"name", "selector", "sequence", "body", "tags"}) for t in transformations
            ],
        }
        data = self._client._post(
            self._path(stack_uid, formation_uid, "transformations"), operation="add_transformations", json=payload
        )
        return [Transformation.model_validate(x) for x in (data or [])]

    def add_helm_releases(
        self, stack_uid: str, formation_uid: str, releases: List[HelmRelease], message: str
    ) -> List[HelmRelease]:
        payload = {
            "message": message,
            "helm_releases": [
                r.model_dump(include={"chart_name", "display_name", "version", "repository_url", "body"})
                for r in releases
            ],
        }
        data = self._client._post(
            self._path(stack_uid, formation_uid, "helm_releases"), operation="add_helm_releases", json=payload
        )
        return [HelmRelease.model_validate(x) for x in (data or [])]

    def add_stencil_groups(
        self, stack_uid: str, formation_uid: str, groups: List[StencilGroup], message: str
    ) -> List[StencilGroup]:
        payload = {
            "message": message,
            "stencil_groups": [g.model_dump(include={"name", "tags", "rules"}) for g in groups],
        }
        data = self._client._post(
            self._path(stack_uid, formation_uid, "stencil_groups"), operation="add_stencil_groups", json=payload
        )
        return [StencilGroup.model_validate(x) for x in (data or [])]

    def render_stencil(
        self, stack_uid: str, snapshot_uid: str, formation_uid: str, stencil_uid: str, body: str
    ) -> Renders:
        """Render uncommitted stencil content against a snapshot."""
        data = self._client._post(
            f"/stacks/{stack_uid}/snapshots/{snapshot_uid}/formations/{formation_uid}/stencils/{stencil_uid}/render.json",
            operation="render_stencil",
            json={"body": body},
        )
        return Renders.model_validate(data or {})

    def workflow(self, stack_uid: str, formation_uid: str, snapshot_uid: str, use_latest: bool) -> bytes:
        """Download the deploy workflow document for a formation (decoded from base64)."""
        data = self._client._get(
            self._path(stack_uid, formation_uid, "workflows/default"),
            operation="get_workflow",
            params={"snapshot_uid": snapshot_uid, "use_latest": _bool_param(use_latest)},
        )
        return WorkflowWrapper.model_validate(data or {}).decoded()


class _EnvVarsNamespace(_Namespace):
    def list(self, stack_uid: str) -> List[EnvVar]:
        items = self._client._get_all(f"/stacks/{stack_uid}/environments.json", operation="list_env_vars")
        return [EnvVar.model_validate(x) for x in items]

    def create(self, stack_uid: str, key: str, value: str) -> Optional[AsyncResult]:
        data = self._client._post(
            f"/stacks/{stack_uid}/environments.json",
            operation="create_env_var",
            json={"key": key, "value": value},
        )
        if not data:
            return None
        return AsyncResult.model_validate(data)


class _BaseTemplatesNamespace(_Namespace):
    def list(self) -> List[BaseTemplate]:
        items = self._client._get_all("/base_templates.json", operation="list_base_templates")
        return [BaseTemplate.model_validate(x) for x in items]

    def create(self, name: str, git_repo: str, git_branch: str) -> BaseTemplate:
        data = self._client._post(
            "/base_templates.json",
            operation="create_base_template",
            json={"name": name, "git_repo": git_repo, "git_branch": git_branch},
        )
        return BaseTemplate.model_validate(data)


class _SslCertificatesNamespace(_Namespace):
    _FIELDS = {"type", "server_names", "certificate", "key", "intermediate_certificate"}

    def list(self, stack_uid: str) -> List[SslCertificate]:
        items = self._client._get_all(f"/stacks/{stack_uid}/ssl_certificates.json", operation="list_ssl_certificates")
        return [SslCertificate.model_validate(x) for x in items]

    def create(self, stack_uid: str, certificate: SslCertificate) -> SslCertificate:
        data = self._client._post(
            f"/stacks/{stack_uid}/ssl_certificates.json",
            operation="create_ssl_certificate",
            json=certificate.model_dump(include=self._FIELDS, exclude_none=True),
        )
        return SslCertificate.model_validate(data)

    def update(self, stack_uid: str, uuid: str, certificate: SslCertificate) -> SslCertificate:
        data = self._client._put(
            f"/stacks/{stack_uid}/ssl_certificates/{uuid}.json",
            operation="update_ssl_certificate",
            json=certificate.model_dump(include=self._FIELDS, exclude_none=True),
        )
        return SslCertificate.model_validate(data)


def _file_type(filename: str) -> str:
    # service.yml -> service_yml
    return filename.replace(".", "_")


class _ConfigureFilesNamespace(_Namespace):
    """Versioned ``service.yml`` / ``manifest.yml`` of a stack."""

    def versions(self, stack_uid: str, filename: str) -> List[ConfigureFileVersion]:
        items = self._client._get_all(
            f"/stacks/{stack_uid}/configure_files/{_file_type(filename)}/versions.json",
            operation="list_configure_file_versions",
        )
        return [ConfigureFileVersion.model_validate(x) for x in items]

    def download(self, stack_uid: str, filename: str, version_uid: str) -> ConfigureFileVersion:
        data = self._client._get(
            f"/stacks/{stack_uid}/configure_files/{_file_type(filename)}/versions/{version_uid}.json",
            operation="download_configure_file",
        )
        return ConfigureFileVersion.model_validate(data)

    def upload(self, stack_uid: str, filename: str, body: str, comments: str = "") -> ConfigureFileVersion:
        data = self._client._post(
            f"/stacks/{stack_uid}/configure_files/{_file_type(filename)}/versions.json",
            operation="upload_configure_file",
            json={"body": body, "comments": comments},
        )
        return ConfigureFileVersion.model_validate(data)


class _ConfigurationsNamespace(_Namespace):
    """Typed configuration files of a stack (nginx, database configs, ...)."""

    def list(self, stack_uid: str) -> List[ConfigurationFile]:
        items = self._client._get_all(f"/stacks/{stack_uid}/configurations.json", operation="list_configurations")
        return [ConfigurationFile.model_validate(x) for x in items]

    def download(self, stack_uid: str, config_type: str) -> ConfigurationFile:
        data = self._client._get(
            f"/stacks/{stack_uid}/configurations/{config_type}.json", operation="download_configuration"
        )
        return ConfigurationFile.model_validate(data)

    def upload(
        self,
        stack_uid: str,
        config_type: str,
        body: str,
        *,
        apply: bool = True,
        commit_message: Optional[str] = None,
    ) -> ConfigurationFile:
        payload: Dict[str, Any] = {"body": body, "apply": apply}
        if commit_message:
            payload["commit_message"] = commit_message
        data = self._client._put(
            f"/stacks/{stack_uid}/configurations/{config_type}.json",
            operation="upload_configuration",
            json=payload,
        )
        return ConfigurationFile.model_validate(data)

    def apply(self, stack_uid: str, config_type: str) -> GenericResponse:
        data = self._client._post(
            f"/stacks/{stack_uid}/configurations/{config_type}/apply.json", operation="apply_configuration"
        )
        return GenericResponse.model_validate(data or {})
