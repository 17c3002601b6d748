from __future__ import annotations

import pytest

from cx_toolbelt.api.models import Server, Stack
from cx_toolbelt.cli.state import NO_STACK_MESSAGE, CxState, find_server
from cx_toolbelt.core.config import Settings
from cx_toolbelt.errors import CxError

STACKS = [
    {"uid": "s-prod", "name": "shop", "environment": "production", "git": "git@x:shop.git", "git_branch": "main"},
    {"uid": "s-stg", "name": "shop", "environment": "staging", "git": "git@x:shop.git", "git_branch": "develop"},
    {"uid": "s-blog", "name": "blog", "environment": "production"},
]

SERVERS = [
    {"uid": "srv-1", "name": "lion", "address": "10.0.0.1", "server_roles": ["docker"]},
    {"uid": "srv-2", "name": "lynx", "address": "10.0.0.2", "server_roles": ["web"]},
]


@pytest.fixture
def stacks_api(fake_api):
    fake_api.add("GET", "/stacks.json", fake_api.listing(STACKS))
    return fake_api


def test_no_stack_anywhere(cx_state: CxState) -> None:
    with pytest.raises(CxError, match=NO_STACK_MESSAGE):
        cx_state.must_stack()


def test_stack_flag_prefers_exact_environment(cx_state: CxState, stacks_api) -> None:
    assert cx_state.must_stack("shop", "staging").uid == "s-stg"


def test_stack_environment_prefix_fallback(cx_state: CxState, stacks_api, capsys) -> None:
    assert cx_state.must_stack("sho", "prod").uid == "s-prod"
    assert capsys.readouterr().out == "(production)\n"


def test_stack_is_cached(cx_state: CxState, stacks_api) -> None:
    first = cx_state.must_stack("blog")
    assert cx_state.must_stack("shop") is first
    assert len(stacks_api.calls("GET", "/stacks.json")) == 1


def test_ambiguous_stack(cx_state: CxState, stacks_api) -> None:
    with pytest.raises(CxError, match="ambiguous"):
        cx_state.must_stack("shop")


def test_stack_from_dot_yaml(cx_state: CxState, stacks_api) -> None:
    (cx_state.cwd / ".cx.yml").write_text("args:\n  stack: blog\n")
    assert cx_state.must_stack().uid == "s-blog"


def test_stack_from_environment_variable(tmp_path, cx_home, api_client, stacks_api) -> None:
    state = CxState(Settings(cx_home=cx_home, CXSTACK="blog"), client=api_client, cwd=tmp_path)
    assert state.must_stack().uid == "s-blog"


def test_stack_from_git_remote(cx_state: CxState, stacks_api) -> None:
    assert cx_state.stack_from_git_remote("git@x:shop.git", "develop").uid == "s-stg"
    assert cx_state.stack_from_git_remote("git@x:shop.git", "").uid == "s-prod"
    assert cx_state.stack_from_git_remote("git@x:other.git", "main") is None
    assert cx_state.stack_from_git_remote("", "main") is None


def test_org_scopes_client(tmp_path, cx_home, fake_api, api_client) -> None:
    fake_api.add("GET", "/accounts.json", fake_api.listing([{"id": 7, "name": "Acme Inc"}, {"id": 8, "name": "Other"}]))
    fake_api.add("GET", "/stacks.json", fake_api.listing([]))
    state = CxState(Settings(cx_home=cx_home), org_name="acme", client=api_client, cwd=tmp_path)

    state.client.stacks.list()

    assert state.org().id == 7
    [request] = fake_api.calls("GET", "/stacks.json")
    assert request.url.params["account_id"] == "7"


def test_org_without_name_is_rejected(tmp_path, cx_home, fake_api, api_client) -> None:
    fake_api.add("GET", "/accounts.json", fake_api.listing([{"id": 7, "name": None}]))
    state = CxState(Settings(cx_home=cx_home), org_name="acme", client=api_client, cwd=tmp_path)
    with pytest.raises(CxError, match="doesn't have a name"):
        state.client


def test_find_server() -> None:
    servers = [Server.model_validate(s) for s in SERVERS]
    assert find_server(servers, "10.0.0.2").uid == "srv-2"
    assert find_server(servers, "srv-1").uid == "srv-1"
    assert find_server(servers, "lio").uid == "srv-1"
    assert find_server(servers, "tiger") is None
    with pytest.raises(CxError, match="ambiguous"):
        find_server(servers, "l")
    assert find_server([], "lion") is None


def test_must_server(cx_state: CxState, fake_api, capsys) -> None:
    fake_api.add("GET", "/stacks/s-prod/servers.json", fake_api.listing(SERVERS))
    stack = Stack.model_validate(STACKS[0])

    assert cx_state.must_server(stack, "lion").uid == "srv-1"
    assert capsys.readouterr().out == "Server: lion\n"
    with pytest.raises(CxError, match="Server 'lynx' is not a docker server"):
        cx_state.must_server(stack, "lynx")
    assert cx_state.must_server(stack, "lynx", ignore_containers=True).uid == "srv-2"
    with pytest.raises(CxError, match="Server 'tiger' not found"):
        cx_state.must_server(stack, "tiger")
