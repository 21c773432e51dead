"""Shared fixtures: a controllable clock, stores and a scripted token endpoint."""

from __future__ import annotations

import json
import socket
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from workspace_auth.accounts.models import CredentialRecord
from workspace_auth.accounts.oauth import OAuthExchangeClient
from workspace_auth.accounts.token_store import TokenStore

START_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = START_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class TokenEndpoint:
    """Scripted stand-in for Google's token endpoint.

    Each queued item is either a ``(status, json_body)`` tuple or an
    exception instance to raise from the transport.
    """

    def __init__(self) -> None:
        self.responses: list[tuple[int, dict] | Exception] = []
        self.requests: list[httpx.Request] = []

    def queue(self, *items: tuple[int, dict] | Exception) -> None:
        self.responses.extend(items)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"unexpected request to {request.url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body)

    def form(self, index: int = -1) -> dict[str, str]:
        return dict(httpx.QueryParams(self.requests[index].content.decode()))


@pytest.fixture
def occupied_port():
    """A TCP port with a listening socket already bound to it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("0.0.0.0", 0))
        sock.listen()
        yield sock.getsockname()[1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials_path(tmp_path: Path) -> Path:
    return tmp_path / "credentials"


@pytest.fixture
def token_store(credentials_path: Path) -> TokenStore:
    return TokenStore(credentials_path)


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
async def oauth_client(token_endpoint: TokenEndpoint, clock: FakeClock):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint.handler))
    client = OAuthExchangeClient(
        client_id="test-client-id.apps.googleusercontent.com",
        client_secret="test-client-secret",
        redirect_uri="http://localhost:8080/oauth2callback",
        http_client=http_client,
        clock=clock,
    )
    yield client
    await client.aclose()
    await http_client.aclose()


@pytest.fixture
def make_record(clock: FakeClock) -> Callable[..., CredentialRecord]:
    def _make(
        *,
        access_token: str = "ya29.current",
        refresh_token: str | None = "1//refresh",
        expires_in_ms: int | None = HOUR_MS,
        scope: str = "https://www.googleapis.com/auth/gmail.readonly",
    ) -> CredentialRecord:
        return CredentialRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            scope=scope,
            expiry_epoch_ms=None if expires_in_ms is None else clock() + expires_in_ms,
        )

    return _make


def token_response(**overrides) -> dict:
    body = {
        "access_token": "ya29.refreshed",
        "expires_in": 3600,
        "scope": "https://www.googleapis.com/auth/gmail.readonly",
        "token_type": "Bearer",
    }
    body.update(overrides)
    return body


def write_raw_token(store: TokenStore, email: str, payload: dict) -> None:
    path = store.token_path(email)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
