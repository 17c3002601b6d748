from __future__ import annotations

import json as _json
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import httpx
import pytest
from typer.testing import CliRunner

from cx_toolbelt.api.client import Cloud66ApiClient
from cx_toolbelt.cli.state import CxState
from cx_toolbelt.core.config import Settings

Handler = Callable[[httpx.Request], httpx.Response]
Reply = Union[None, Dict[str, Any], List[Any], Handler]


class FakeCloud66:
    """Routes ``(method, path)`` to canned replies and records every request.

    Paths are given without the ``/api/3`` prefix. Unknown routes answer 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Tuple[int, Reply]] = {}
        self.requests: List[httpx.Request] = []

    @staticmethod
    def listing(items: List[Any], next_page: Optional[int] = None) -> Dict[str, Any]:
        """A paginated list body the way the API returns it."""
        return {"response": items, "count": len(items), "pagination": {"next": next_page}}

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return _json.loads(request.content.decode("utf-8")) if request.content else None

    def add(self, method: str, path: str, reply: Reply = None, status: int = 200) -> "FakeCloud66":
        self.routes[(method.upper(), path)] = (status, reply)
        return self

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and _api_path(r) == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, _api_path(request)))
        if route is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})
        status, reply = route
        if callable(reply):
            return reply(request)
        if reply is None:
            return httpx.Response(status)
        return httpx.Response(status, json=reply)

    def client(self, **kwargs: Any) -> Cloud66ApiClient:
        transport = httpx.MockTransport(self.handler)
        return Cloud66ApiClient(
            "http://mock",
            access_token="token",
            client=httpx.Client(transport=transport),
            poll_interval=0,
            **kwargs,
        )


def _api_path(request: httpx.Request) -> str:
    path = request.url.path
    return path[len("/api/3") :] if path.startswith("/api/3") else path


@pytest.fixture(autouse=True)
def _global_offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    allowed_prefixes: Iterable[str] = (
        "http://mock",
        "https://mock",
        "http://localhost",
        "http://127.0.0.1",
    )

    orig_sync = httpx._client.Client.request

    def _is_allowed(url_str: str) -> bool:
        return any(url_str.startswith(p) for p in allowed_prefixes)

    def offline_sync(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return orig_sync(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard: {url_str}")

    monkeypatch.setattr(httpx._client.Client, "request", offline_sync, raising=True)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    for name in ("CX_HOME", "CLOUD66_TOKEN", "CXSTACK", "CXDEBUG", "CX_LOG_LEVEL", "CX_LOG_FORMAT", "CX_LOG_TO_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_api() -> FakeCloud66:
    return FakeCloud66()


@pytest.fixture
def api_client(fake_api: FakeCloud66) -> Cloud66ApiClient:
    return fake_api.client()


@pytest.fixture
def cx_home(tmp_path: Path) -> Path:
    return tmp_path / "cxhome"


@pytest.fixture
def cx_state(tmp_path: Path, cx_home: Path, api_client: Cloud66ApiClient) -> CxState:
    work = tmp_path / "work"
    work.mkdir()
    return CxState(Settings(cx_home=cx_home), client=api_client, cwd=work)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


STACK = {
    "uid": "stk-1",
    "name": "shop",
    "environment": "production",
    "account_name": "acme",
    "backend": "docker",
    "status": 1,
    "created_at": "2024-01-02T10:00:00Z",
}


@pytest.fixture
def with_stack(fake_api: FakeCloud66) -> Dict[str, Any]:
    """Register a single ``shop`` stack so ``-s shop`` resolves."""
    fake_api.add("GET", "/stacks.json", fake_api.listing([STACK]))
    return STACK
