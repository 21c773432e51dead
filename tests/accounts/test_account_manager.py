"""Tests for account-level operations."""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from workspace_auth.accounts.callback import CallbackCorrelator
from workspace_auth.accounts.client_cache import AuthenticatedClientCache
from workspace_auth.accounts.manager import AccountManager
from workspace_auth.accounts.models import TokenStatus
from workspace_auth.accounts.registry import AccountRegistry
from workspace_auth.accounts.renewal import TokenRenewalPolicy
from workspace_auth.errors import (
    AccountError,
    AuthorizationDeniedError,
    AuthRequiredError,
    ServiceRequestError,
    TemporaryAuthError,
)
from workspace_auth.scopes import default_scope_registry

pytestmark = pytest.mark.unit

EMAIL = "user@example.com"


@pytest.fixture
def correlator():
    correlator = CallbackCorrelator()
    yield correlator
    correlator.cancel_all()


@pytest.fixture
def policy(token_store, oauth_client, clock):
    return TokenRenewalPolicy(token_store, oauth_client, clock=clock)


@pytest.fixture
def cache(policy):
    return AuthenticatedClientCache(policy)


@pytest.fixture
def manager(tmp_path, token_store, policy, oauth_client, correlator, cache):
    return AccountManager(
        registry=AccountRegistry(tmp_path / "accounts.json"),
        store=token_store,
        policy=policy,
        oauth_client=oauth_client,
        correlator=correlator,
        scopes=default_scope_registry(),
        client_cache=cache,
    )


class TestStatus:
    async def test_list_accounts_with_status(self, manager, token_store, make_record):
        await manager.registry.add(EMAIL, "work", "Work")
        await manager.registry.add("new@example.com", "home", "Home")
        await token_store.save(EMAIL, make_record())

        accounts = {account.email: account for account in await manager.list_accounts()}

        assert accounts[EMAIL].auth_status.valid is True
        assert accounts[EMAIL].auth_status.auth_url is None
        missing = accounts["new@example.com"].auth_status
        assert missing.valid is False
        assert missing.status is TokenStatus.NO_TOKEN
        assert missing.reason == "No token found"
        query = parse_qs(urlparse(missing.auth_url).query)
        assert query["login_hint"] == ["new@example.com"]

    async def test_validate_registers_new_account(self, manager):
        account = await manager.validate_account(EMAIL, "work", "Work inbox")

        assert account.category == "work"
        assert account.auth_status.reason == "New account requires authentication"
        assert await manager.registry.get(EMAIL) is not None

    async def test_validate_unknown_without_details(self, manager):
        with pytest.raises(AccountError) as exc_info:
            await manager.validate_account("ghost@example.com")
        assert exc_info.value.code == "ACCOUNT_NOT_FOUND"

    async def test_status_url_reused_while_pending(self, manager):
        await manager.registry.add(EMAIL, "work", "Work")
        first = await manager.validate_account(EMAIL)
        second = await manager.validate_account(EMAIL)
        assert first.auth_status.auth_url == second.auth_status.auth_url


class TestAuthorization:
    async def test_full_flow(self, manager, correlator, token_store, token_endpoint):
        token_endpoint.queue(
            (200, {"access_token": "ya29.first", "refresh_token": "1//r", "expires_in": 3600})
        )
        request = manager.authorize(EMAIL)
        completion = asyncio.create_task(manager.complete_authorization(EMAIL, request))
        await asyncio.sleep(0)

        correlator.deliver(code="auth-code", state=request.pending.state)
        record = await completion

        assert record.access_token == "ya29.first"
        assert (await token_store.load(EMAIL)).refresh_token == "1//r"
        assert token_endpoint.form()["code"] == "auth-code"

    async def test_denied(self, manager, correlator):
        request = manager.authorize(EMAIL)
        completion = asyncio.create_task(manager.complete_authorization(EMAIL))
        await asyncio.sleep(0)

        correlator.deliver(error="access_denied", state=request.pending.state)

        with pytest.raises(AuthorizationDeniedError):
            await completion

    async def test_complete_without_authorize(self, manager):
        with pytest.raises(AccountError) as exc_info:
            await manager.complete_authorization(EMAIL)
        assert exc_info.value.code == "NO_AUTH_IN_PROGRESS"


async def test_remove_account_revokes_and_deletes(
    manager, token_store, make_record, token_endpoint, cache, policy
):
    await manager.registry.add(EMAIL, "work", "Work")
    await token_store.save(EMAIL, make_record())
    await cache.get(EMAIL, "gmail", lambda auth: object())
    token_endpoint.queue((200, {}))

    await manager.remove_account(EMAIL)

    assert await token_store.load(EMAIL) is None
    assert await manager.registry.get(EMAIL) is None
    assert cache.size == 0
    assert "revoke" in str(token_endpoint.requests[-1].url)
    assert EMAIL not in policy._locks


class TestWithTokenRenewal:
    async def test_runs_operation(self, manager, token_store, make_record):
        await token_store.save(EMAIL, make_record())

        async def operation():
            return "done"

        assert await manager.with_token_renewal(EMAIL, operation) == "done"

    async def test_permanent_failure_before_operation(self, manager):
        called = False

        async def operation():
            nonlocal called
            called = True

        with pytest.raises(AuthRequiredError) as exc_info:
            await manager.with_token_renewal(EMAIL, operation)
        assert exc_info.value.code == "TOKEN_RENEWAL_FAILED"
        assert called is False

    async def test_401_retries_after_forced_refresh(
        self, manager, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record())
        token_endpoint.queue((200, {"access_token": "ya29.new", "expires_in": 3600}))
        attempts = 0

        async def operation():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise ServiceRequestError(service="gmail", status_code=401, message="expired")
            return "ok"

        assert await manager.with_token_renewal(EMAIL, operation) == "ok"
        assert attempts == 2
        assert (await token_store.load(EMAIL)).access_token == "ya29.new"

    async def test_401_then_transient_refresh_failure(
        self, manager, token_store, make_record, token_endpoint
    ):
        await token_store.save(EMAIL, make_record())
        token_endpoint.queue((503, {"error": "backend_error"}), (503, {"error": "backend_error"}))

        async def operation():
            raise ServiceRequestError(service="gmail", status_code=401, message="expired")

        with pytest.raises(TemporaryAuthError):
            await manager.with_token_renewal(EMAIL, operation)

    async def test_other_errors_propagate(self, manager, token_store, make_record):
        await token_store.save(EMAIL, make_record())

        async def operation():
            raise ServiceRequestError(service="gmail", status_code=404, message="gone")

        with pytest.raises(ServiceRequestError):
            await manager.with_token_renewal(EMAIL, operation)
