"""Per-invocation command state: settings, profile, API client and targeting.

``CxState`` is created once by the root callback and stored on the typer
context. It resolves the organization, stack and server a command acts on,
from flags first, then ``.cx.yml``, then the environment and finally the
local git checkout.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

import typer

from ..api.auth import load_access_token
from ..api.client import Cloud66ApiClient
from ..api.models import Account, Server, Stack
from ..core.config import Settings
from ..core.dotfile import DotYaml, read_dot_yaml
from ..core.profiles import Profile, Profiles
from ..errors import CxError, NameNotFoundError
from ..util.matching import fuzzy_find

logger = logging.getLogger(__name__)

NO_STACK_MESSAGE = "No stack specified. Either use --stack flag, .cx.yml file or cd to a stack directory"


def _git(*args: str, cwd: Optional[Path] = None) -> str:
    try:
        proc = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        logger.debug("git is not installed")
        return ""
    if proc.returncode != 0:
        return ""
    return proc.stdout.strip()


def remote_git_url(cwd: Optional[Path] = None) -> str:
    return _git("config", "--get", "remote.origin.url", cwd=cwd)


def local_git_branch(cwd: Optional[Path] = None) -> str:
    return _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)


def find_server(servers: List[Server], search: str) -> Optional[Server]:
    """Find a server by uid or address, else by full or partial name."""
    for server in servers:
        if server.uid == search or (server.address and server.address == search):
            return server
    if not servers:
        return None
    try:
        return servers[fuzzy_find([s.name for s in servers], search)]
    except NameNotFoundError:
        return None


class CxState:
    """State shared by the commands of one ``cx`` invocation.

    Args:
        settings: Environment-backed settings.
        profile_name: ``--profile`` value; the last used profile when empty.
        org_name: ``--org`` value; the profile's organization when empty.
        debug: ``--debug`` flag.
        client: Preconfigured API client. Built from the profile when omitted.
        cwd: Directory holding ``.cx.yml`` and the git checkout.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        profile_name: Optional[str] = None,
        org_name: Optional[str] = None,
        debug: bool = False,
        client: Optional[Cloud66ApiClient] = None,
        cwd: Optional[Path] = None,
    ) -> None:
        self.settings = settings
        self.profile_name = profile_name
        self.org_name = org_name
        self.debug = debug
        self.cwd = cwd or Path.cwd()
        self._client = client
        self._client_ready = False
        self._profiles: Optional[Profiles] = None
        self._dot_yaml: Optional[DotYaml] = None
        self._dot_yaml_read = False
        self._account: Optional[Account] = None
        self._stack: Optional[Stack] = None

    @property
    def profiles(self) -> Profiles:
        if self._profiles is None:
            self._profiles = Profiles.read(self.settings.profiles_path)
        return self._profiles

    def save_profiles(self) -> None:
        self.settings.ensure_home()
        self.profiles.write(self.settings.profiles_path)

    @property
    def profile(self) -> Profile:
        return self.profiles.select(self.profile_name)

    @property
    def dot_yaml(self) -> Optional[DotYaml]:
        if not self._dot_yaml_read:
            self._dot_yaml = read_dot_yaml(self.cwd)
            self._dot_yaml_read = True
        return self._dot_yaml

    @property
    def client(self) -> Cloud66ApiClient:
        """The API client, authenticated and scoped to the selected organization."""
        if self._client is None:
            profile = self.profile
            home = self.settings.ensure_home()
            token = load_access_token(home / profile.token_file, self.settings.token)
            self._client = Cloud66ApiClient(
                profile.base_url,
                access_token=token,
                timeout=self.settings.http_timeout,
            )
        if not self._client_ready:
            self._client_ready = True
            account = self.org()
            if account is not None:
                self._client.account_id = account.id
        return self._client

    def argument(self, name: str, value: Optional[str]) -> Optional[str]:
        """A flag value, falling back to the ``.cx.yml`` argument of the same name."""
        if value:
            return value
        if self.dot_yaml is not None:
            return self.dot_yaml.get(name)
        return None

    def org(self) -> Optional[Account]:
        """The organization from ``--org`` or the profile, fuzzy matched by name."""
        if self._account is not None:
            return self._account
        search = self.org_name or self.profile.organization
        if not search:
            return None
        client = self.client
        if self._account is not None:
            return self._account
        accounts = client.accounts.list()
        names = []
        for account in accounts:
            if not account.name:
                raise CxError(
                    "one or more of the organizations you are a member of doesn't have a name. "
                    "Please make sure you name the organizations"
                )
            names.append(account.name)
        self._account = accounts[fuzzy_find(names, search)]
        return self._account

    def _match_stack(self, stack_arg: str, env_filter: Callable[[Stack], bool]) -> Stack:
        stacks = self.client.stacks.list(env_filter)
        return stacks[fuzzy_find([s.name for s in stacks], stack_arg)]

    def stack(self, stack_arg: Optional[str] = None, environment: Optional[str] = None) -> Optional[Stack]:
        """Resolve the target stack, or ``None`` when nothing identifies one."""
        if self._stack is not None:
            return self._stack

        env = (environment or "").lower()

        def exact_env(stack: Stack) -> bool:
            return not env or stack.environment.lower() == env

        def prefix_env(stack: Stack) -> bool:
            return not env or stack.environment.lower().startswith(env)

        search = self.argument("stack", stack_arg)
        if search:
            try:
                self._stack = self._match_stack(search, exact_env)
            except CxError:
                self._stack = self._match_stack(search, prefix_env)
            if environment:
                typer.echo(f"({self._stack.environment})")
            return self._stack

        if self.settings.stack:
            # exact name only
            stacks = self.client.stacks.find_by_name(self.settings.stack)
            self._stack = stacks[0]
            return self._stack

        self._stack = self.stack_from_git_remote(remote_git_url(self.cwd), local_git_branch(self.cwd))
        return self._stack

    def stack_from_git_remote(self, url: str, branch: str) -> Optional[Stack]:
        if not url:
            return None
        logger.debug("looking up stack for git remote %s (%s)", url, branch)
        for stack in self.client.stacks.list():
            if stack.git == url and (not branch or stack.git_branch == branch):
                return stack
        return None

    def must_stack(self, stack_arg: Optional[str] = None, environment: Optional[str] = None) -> Stack:
        stack = self.stack(stack_arg, environment)
        if stack is None:
            raise CxError(NO_STACK_MESSAGE)
        return stack

    def must_server(self, stack: Stack, name: str, ignore_containers: bool = False) -> Server:
        """Resolve ``name`` to a server of ``stack``.

        Unless ``ignore_containers`` is set, the server must be able to host
        containers (docker or kubes role).
        """
        server = find_server(self.client.servers.list(stack.uid), name)
        if server is None:
            raise CxError(f"Server '{name}' not found")
        if not ignore_containers and not server.can_host_containers:
            raise CxError(f"Server '{name}' is not a docker server")
        typer.echo(f"Server: {server.name}")
        return server


def get_state(ctx: typer.Context) -> CxState:
    state = ctx.obj
    if isinstance(state, CxState):
        return state
    state = CxState(Settings())
    ctx.obj = state
    return state
