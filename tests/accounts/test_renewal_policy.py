"""Tests for the token renewal policy."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from conftest import HOUR_MS, write_raw_token

from workspace_auth.accounts.models import TokenResolution, TokenStatus
from workspace_auth.accounts.renewal import (
    TOKEN_EXPIRY_BUFFER_MS,
    TokenRenewalPolicy,
    ensure_usable,
    is_revoked_grant_error,
    require_scopes,
)
from workspace_auth.errors import (
    AuthRequiredError,
    ScopeError,
    TemporaryAuthError,
    TokenPersistenceError,
    TokenRefreshError,
)

pytestmark = pytest.mark.unit

EMAIL = "user@example.com"


@pytest.fixture
def policy(token_store, oauth_client, clock):
    return TokenRenewalPolicy(token_store, oauth_client, clock=clock)


def _refreshed(access_token: str = "ya29.refreshed") -> tuple[int, dict]:
    return (200, {"access_token": access_token, "expires_in": 3600})


class TestClassification:
    async def test_no_token(self, policy):
        resolution = await policy.resolve(EMAIL)
        assert resolution.status is TokenStatus.NO_TOKEN
        assert resolution.usable is False

    async def test_missing_expiry_is_invalid(self, policy, token_store):
        write_raw_token(token_store, EMAIL, {"access_token": "ya29.x", "refresh_token": "1//r"})
        resolution = await policy.resolve(EMAIL)
        assert resolution.status is TokenStatus.INVALID

    async def test_valid_token_is_not_refreshed(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=HOUR_MS))

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.VALID
        assert resolution.usable is True
        assert resolution.credential.access_token == "ya29.current"
        assert token_endpoint.requests == []

    async def test_inside_buffer_refreshes(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=TOKEN_EXPIRY_BUFFER_MS - 1))
        token_endpoint.queue(_refreshed())

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.REFRESHED
        stored = await token_store.load(EMAIL)
        assert stored.access_token == "ya29.refreshed"
        assert stored.refresh_token == "1//refresh"

    async def test_exactly_at_buffer_edge_refreshes(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=TOKEN_EXPIRY_BUFFER_MS))
        token_endpoint.queue(_refreshed())
        assert (await policy.resolve(EMAIL)).status is TokenStatus.REFRESHED

    async def test_expired_without_refresh_token(self, policy, token_store, make_record):
        await token_store.save(EMAIL, make_record(refresh_token=None, expires_in_ms=-1))

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.EXPIRED
        assert resolution.can_retry is False

    async def test_force_refresh_on_valid_token(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record())
        token_endpoint.queue(_refreshed("ya29.forced"))

        resolution = await policy.resolve(EMAIL, force_refresh=True)

        assert resolution.status is TokenStatus.REFRESHED
        assert resolution.credential.access_token == "ya29.forced"

    @pytest.mark.parametrize("expires_in_ms", [-HOUR_MS, -1, 0])
    async def test_expired_token_never_valid(
        self, policy, token_store, make_record, token_endpoint, expires_in_ms
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=expires_in_ms))
        token_endpoint.queue(_refreshed())
        assert (await policy.resolve(EMAIL)).status is not TokenStatus.VALID

    async def test_corrupt_file_is_error(self, policy, token_store):
        path = token_store.token_path(EMAIL)
        path.parent.mkdir(parents=True)
        path.write_text("garbage", encoding="utf-8")

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.ERROR
        assert resolution.reason

    async def test_undecodable_file_is_error(self, policy, token_store):
        path = token_store.token_path(EMAIL)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xff\xfe\x00")

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.ERROR
        assert not resolution.usable


class TestRefreshFailures:
    async def test_invalid_grant_is_permanent(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=-1))
        token_endpoint.queue(
            (
                400,
                {"error": "invalid_grant", "error_description": "Token has been revoked."},
            )
        )

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.REFRESH_FAILED
        assert resolution.can_retry is False
        assert len(token_endpoint.requests) == 1

    async def test_transient_then_success(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=-1))
        token_endpoint.queue(httpx.ConnectError("network down"), _refreshed())

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.REFRESHED
        assert len(token_endpoint.requests) == 2

    async def test_two_transient_failures_can_retry(
        self, policy, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=-1))
        token_endpoint.queue((503, {"error": "backend_error"}), (503, {"error": "backend_error"}))

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.REFRESH_FAILED
        assert resolution.can_retry is True
        assert len(token_endpoint.requests) == 2
        stored = await token_store.load(EMAIL)
        assert stored.access_token == "ya29.current"

    async def test_persist_failure_is_error(
        self, token_store, oauth_client, clock, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record(expires_in_ms=-1))
        token_endpoint.queue(_refreshed())

        class FailingSaveStore(type(token_store)):
            async def save(self, email, record):
                raise TokenPersistenceError("Failed to save token", code="TOKEN_SAVE_ERROR")

        failing = FailingSaveStore(token_store.credentials_path)
        policy = TokenRenewalPolicy(failing, oauth_client, clock=clock)

        resolution = await policy.resolve(EMAIL)

        assert resolution.status is TokenStatus.ERROR


@pytest.mark.parametrize(
    ("message", "revoked"),
    [
        ("Google OAuth token refresh failed (400): error=invalid_grant", True),
        ("Token has been REVOKED", True),
        ("token not found", True),
        ("Google OAuth token refresh request failed: timed out", False),
    ],
)
def test_is_revoked_grant_error(message, revoked):
    assert is_revoked_grant_error(TokenRefreshError(message)) is revoked


async def test_forget_drops_idle_lock_only(policy):
    await policy.resolve(EMAIL)
    assert EMAIL in policy._locks

    async with policy._locks[EMAIL]:
        policy.forget(EMAIL)
        assert EMAIL in policy._locks

    policy.forget(EMAIL)
    assert EMAIL not in policy._locks
    policy.forget(EMAIL)


async def test_concurrent_resolves_share_one_refresh(
    policy, token_store, make_record, token_endpoint
):
    await token_store.save(EMAIL, make_record(expires_in_ms=-1))
    token_endpoint.queue(_refreshed())

    results = await asyncio.gather(*(policy.resolve(EMAIL) for _ in range(5)))

    assert len(token_endpoint.requests) == 1
    assert results[0].status is TokenStatus.REFRESHED
    assert all(r.status is TokenStatus.VALID for r in results[1:])
    assert {r.credential.access_token for r in results} == {"ya29.refreshed"}


class TestHelpers:
    def test_require_scopes(self, make_record):
        resolution = TokenResolution(
            status=TokenStatus.VALID, credential=make_record(scope="a b")
        )
        require_scopes(resolution, ["a"])

        with pytest.raises(ScopeError) as exc_info:
            require_scopes(resolution, ["a", "c"])
        assert exc_info.value.missing_scopes == ["c"]
        assert exc_info.value.code == "SCOPE_ERROR"

    def test_ensure_usable(self, make_record):
        record = make_record()
        usable = TokenResolution(status=TokenStatus.REFRESHED, credential=record)
        assert ensure_usable(usable, EMAIL) is record

        with pytest.raises(TemporaryAuthError) as exc_info:
            ensure_usable(
                TokenResolution(status=TokenStatus.REFRESH_FAILED, can_retry=True), EMAIL
            )
        assert exc_info.value.code == "TEMPORARY_AUTH_ERROR"

        with pytest.raises(AuthRequiredError) as exc_info:
            ensure_usable(TokenResolution(status=TokenStatus.NO_TOKEN), EMAIL)
        assert exc_info.value.code == "AUTH_REQUIRED"
        assert exc_info.value.token_resolution.status is TokenStatus.NO_TOKEN
