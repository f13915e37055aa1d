"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import os
import socket
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from pkce_login.config import Config, LogLevel
from pkce_login.oauth.pkce import ChallengeMethod, verify_code_challenge

CLIENT_ID = "13c885a8-f46a-4424-82d2-883cf7ccfe49"
AUTH_SERVER_URL = "https://auth.example.com"
TOKEN_URL = f"{AUTH_SERVER_URL}/oauth/token"


def port_is_free(port: int, host: str = "127.0.0.1") -> bool:
    """Check that nothing is listening on a port any more."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        # TIME_WAIT leftovers from served requests don't count as a listener
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def callback_port(url: str) -> int:
    """Extract the loopback port from an authorization URL's redirect_uri."""
    redirect_uri = dict(parse_qsl(urlsplit(url).query))["redirect_uri"]
    port = urlsplit(redirect_uri).port
    assert port is not None
    return port


class FakeAuthorizationServer:
    """Plays the authorization server, the token endpoint and the user's browser.

    ``present`` returns immediately and lets a background task follow the
    authorization URL and deliver the redirect to the loopback receiver.
    ``handle_token`` validates the exchange like a real server would,
    including the PKCE check against the challenge it was given.
    """

    def __init__(
        self,
        client_id: str = CLIENT_ID,
        *,
        code: str = "test-code",
        accepted_code: str | None = None,
        access_token: str = "test-token",
        deny: str | None = None,
        state_override: str | None = None,
        callback_params: dict[str, str] | None = None,
    ) -> None:
        self.client_id = client_id
        self.code = code
        self.accepted_code = accepted_code or code
        self.access_token = access_token
        self.deny = deny
        self.state_override = state_override
        self.callback_params = callback_params
        self.authorize_requests: list[dict[str, str]] = []
        self.token_requests: list[dict[str, str]] = []
        self.callback_responses: list[httpx.Response] = []
        self.code_challenge: str | None = None
        self.redirect_uri: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def present(self, url: str, cancel: asyncio.Event) -> None:
        task = asyncio.create_task(self._browse(url))
        self._tasks.add(task)

    async def _browse(self, url: str) -> None:
        query = dict(parse_qsl(urlsplit(url).query))
        self.authorize_requests.append(query)
        self.redirect_uri = query["redirect_uri"]
        self.code_challenge = query["code_challenge"]

        params: dict[str, str]
        if self.callback_params is not None:
            params = self.callback_params
        elif self.deny:
            params = {"error": self.deny, "error_description": "The user denied access"}
        else:
            params = {"code": self.code, "state": self.state_override or query["state"]}

        async with httpx.AsyncClient(trust_env=False) as client:
            response = await client.get(self.redirect_uri, params=params)
        self.callback_responses.append(response)

    def handle_token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.token_requests.append(form)

        if (
            form.get("grant_type") != "authorization_code"
            or form.get("client_id") != self.client_id
            or form.get("code") != self.accepted_code
            or form.get("redirect_uri") != self.redirect_uri
            or "client_secret" in form
        ):
            return httpx.Response(400, json={"error": "invalid_grant"})

        if self.code_challenge is None or not verify_code_challenge(
            form.get("code_verifier", ""), self.code_challenge, ChallengeMethod.S256
        ):
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "PKCE verification failed"},
            )

        return httpx.Response(
            200,
            json={"access_token": self.access_token, "token_type": "bearer"},
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
        )

    @property
    def callback_port(self) -> int:
        """Port of the loopback receiver the last redirect went to."""
        assert self.redirect_uri is not None
        port = urlsplit(self.redirect_uri).port
        assert port is not None
        return port

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle_token))

    async def drain(self) -> None:
        """Wait for the simulated browser to finish."""
        await asyncio.gather(*self._tasks)


@pytest.fixture
def default_config() -> Config:
    """Create a default configuration for testing."""
    return Config()


@pytest.fixture
def login_config() -> Config:
    """Create a configuration with login settings for testing."""
    return Config(
        log_level=LogLevel.DEBUG,
        auth_server_url=AUTH_SERVER_URL,
        client_id=CLIENT_ID,
        scope="*",
        login_timeout=5,
        open_browser=False,
    )


@pytest.fixture
def fake_server() -> FakeAuthorizationServer:
    """Create a fake authorization server that approves the login."""
    return FakeAuthorizationServer()


def token_form(request: httpx.Request) -> dict[str, Any]:
    """Decode a form-encoded token request body."""
    return dict(parse_qsl(request.content.decode()))


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Isolate a test from PKCE_LOGIN_* variables and .env files."""
    for key in list(os.environ):
        if key.startswith("PKCE_LOGIN_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)

    yield

    # load_dotenv writes straight into os.environ
    for key in list(os.environ):
        if key.startswith("PKCE_LOGIN_"):
            del os.environ[key]
