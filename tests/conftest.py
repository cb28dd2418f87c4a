"""Shared test fixtures for pkceauth.

Provides isolated config directories, in-memory stores, scripted
launchers that play the part of the user's browser, and a fake provider
built on :class:`httpx.MockTransport`. Fixtures are discovered by pytest
automatically.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from pkceauth.exceptions import UserCancelled
from pkceauth.launchers import Launcher
from pkceauth.models import ClientConfig
from pkceauth.output import reset_output
from pkceauth.storage import MemoryStore


AUTH_URL = "https://auth.example.com/authorize"
TOKEN_URL = "https://auth.example.com/token"
USERINFO_URL = "https://auth.example.com/userinfo"
REVOKE_URL = "https://auth.example.com/revoke"
REDIRECT_URI = "http://127.0.0.1:8765/callback"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager keeps references to sys.stdout/sys.stderr from when
    it was created; CliRunner swaps those streams per invocation.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and token files to a temporary directory.

    Points the XDG directories at subdirectories of tmp_path, clears the
    ``PKCEAUTH_*`` variables, and changes the working directory to
    tmp_path.
    """
    monkeypatch.setattr("pkceauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["PKCEAUTH_CLIENT", "PKCEAUTH_CLIENT_ID"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


def make_config(**overrides: Any) -> ClientConfig:
    """ClientConfig with explicit endpoints so no discovery happens."""
    values: dict[str, Any] = {
        "name": "test",
        "client_id": "client-123",
        "authorization_endpoint": AUTH_URL,
        "token_endpoint": TOKEN_URL,
        "redirect_uri": REDIRECT_URI,
        "scopes": ["openid", "email"],
    }
    values.update(overrides)
    return ClientConfig(**values)


@pytest.fixture
def client_config() -> ClientConfig:
    return make_config()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


def make_id_token(claims: dict[str, Any]) -> str:
    """Unsigned compact JWT carrying ``claims``."""

    def _segment(data: dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_segment({'alg': 'none'})}.{_segment(claims)}.sig"


# ---------------------------------------------------------------------------
# Scripted launchers
# ---------------------------------------------------------------------------


class ScriptedLauncher(Launcher):
    """Answers the authorization request like a browser would.

    ``respond(authorization_url, params)`` returns the query parameters to
    put on the redirect, or ``None`` to simulate the user closing the page.
    By default it approves with code ``"auth-code"`` and echoes ``state``.
    """

    def __init__(
        self,
        respond: Optional[Callable[[str, dict[str, str]], Optional[dict[str, str]]]] = None,
    ) -> None:
        self.respond = respond or (lambda url, params: {"code": "auth-code", "state": params["state"]})
        self.calls: list[dict[str, str]] = []

    def launch(self, authorization_url: str, redirect_uri: str, timeout: Optional[float] = None) -> str:
        params = {k: v[0] for k, v in parse_qs(urlparse(authorization_url).query).items()}
        self.calls.append(params)
        answer = self.respond(authorization_url, params)
        if answer is None:
            raise UserCancelled()
        return f"{redirect_uri}?{urlencode(answer)}"


@pytest.fixture
def launcher() -> ScriptedLauncher:
    return ScriptedLauncher()


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """Token, userinfo and revocation endpoints backed by httpx.MockTransport.

    Each handler can be replaced per test. Every request is recorded in
    :attr:`requests`.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_responses: list[httpx.Response] = []
        self.userinfo = {"sub": "user-1", "email": "ada@example.com", "name": "Ada"}
        self.revoke_status = 200

    def queue_token(self, status_code: int = 200, **body: Any) -> None:
        if status_code == 200:
            body.setdefault("access_token", f"access-{len(self.token_responses) + 1}")
            body.setdefault("expires_in", 3600)
        self.token_responses.append(httpx.Response(status_code, json=body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.startswith(TOKEN_URL):
            if not self.token_responses:
                return httpx.Response(500, json={"error": "server_error"})
            return self.token_responses.pop(0)
        if url.startswith(USERINFO_URL):
            return httpx.Response(200, json=self.userinfo)
        if url.startswith(REVOKE_URL):
            return httpx.Response(self.revoke_status)
        return httpx.Response(404)

    def form(self, index: int = -1) -> dict[str, str]:
        """Decode the form body of a recorded request."""
        body = self.requests[index].content.decode("utf-8")
        return {k: v[0] for k, v in parse_qs(body).items()}

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def http_client(provider: FakeProvider):
    client = provider.client()
    yield client
    client.close()
