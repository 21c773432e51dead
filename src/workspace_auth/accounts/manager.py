"""Account-level operations over the credential lifecycle.

:class:`AccountManager` ties the registry, renewal policy, OAuth client and
callback correlator together into the operations tool handlers call:
listing and validating accounts (with an authorization URL when the account
has no usable credential), running the authorization flow, removing an
account, and running a downstream operation with token renewal.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from workspace_auth.accounts.callback import CallbackCorrelator, PendingAuthorization
from workspace_auth.accounts.client_cache import AuthenticatedClientCache
from workspace_auth.accounts.models import (
    Account,
    AuthStatus,
    CredentialRecord,
    TokenResolution,
    TokenStatus,
)
from workspace_auth.accounts.oauth import OAuthExchangeClient
from workspace_auth.accounts.registry import AccountRegistry
from workspace_auth.accounts.renewal import TokenRenewalPolicy, ensure_usable
from workspace_auth.accounts.token_store import TokenStore
from workspace_auth.core.logging import account_context
from workspace_auth.errors import AccountError, AuthRequiredError, ServiceRequestError
from workspace_auth.scopes import ScopeRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AuthorizationRequest:
    """An authorization URL and the waiter its redirect will settle."""

    email: str
    url: str
    pending: PendingAuthorization


class AccountManager:
    def __init__(
        self,
        *,
        registry: AccountRegistry,
        store: TokenStore,
        policy: TokenRenewalPolicy,
        oauth_client: OAuthExchangeClient,
        correlator: CallbackCorrelator,
        scopes: ScopeRegistry,
        client_cache: AuthenticatedClientCache | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._policy = policy
        self._oauth = oauth_client
        self._correlator = correlator
        self._scopes = scopes
        self._client_cache = client_cache
        self._authorizations: dict[str, AuthorizationRequest] = {}

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Account status
    # ------------------------------------------------------------------

    async def list_accounts(self) -> list[Account]:
        """All registered accounts with their current authentication status."""
        accounts = await self._registry.list_all()
        result: list[Account] = []
        for account in accounts:
            with account_context(account.email):
                resolution = await self._policy.resolve(account.email)
                status = await self._auth_status(account.email, resolution)
            result.append(account.model_copy(update={"auth_status": status}))
        logger.debug("Found %d accounts", len(result))
        return result

    async def validate_account(
        self,
        email: str,
        category: str | None = None,
        description: str | None = None,
    ) -> Account:
        """Return *email* with its authentication status.

        An unknown account is registered when both *category* and
        *description* are given.

        Raises
        ------
        AccountError
            ``ACCOUNT_NOT_FOUND`` for an unknown account without the details
            needed to register it, or any registry error.
        """
        with account_context(email):
            account = await self._registry.get(email)
            is_new = account is None and bool(category) and bool(description)
            if is_new:
                logger.info("Creating new account during validation")
                assert category is not None and description is not None
                account = await self._registry.add(email, category, description)
            elif account is None:
                raise AccountError(
                    "Account not found",
                    code="ACCOUNT_NOT_FOUND",
                    resolution="Please provide category and description for new accounts",
                )

            resolution = await self._policy.validate_token(email)
            status = await self._auth_status(email, resolution, is_new=is_new)
            logger.debug("Account validation complete. Status: %s", resolution.status)
            return account.model_copy(update={"auth_status": status})

    async def _auth_status(
        self,
        email: str,
        resolution: TokenResolution,
        *,
        is_new: bool = False,
    ) -> AuthStatus:
        if resolution.usable:
            return AuthStatus(valid=True, status=resolution.status)

        if resolution.status is TokenStatus.NO_TOKEN:
            reason = "New account requires authentication" if is_new else "No token found"
        elif resolution.status is TokenStatus.ERROR:
            reason = "Authentication error occurred"
        else:
            reason = resolution.reason
        request = self.authorize(email)
        return AuthStatus(
            valid=False,
            status=resolution.status,
            reason=reason,
            auth_url=request.url,
            can_retry=resolution.can_retry,
        )

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    def authorize(self, email: str) -> AuthorizationRequest:
        """Start (or reuse) the authorization flow for *email*.

        Must be called from the event loop the callback server runs on.
        """
        existing = self._authorizations.get(email)
        if existing is not None and not existing.pending.done:
            return existing

        pending = self._correlator.start_wait()
        url = self._oauth.build_authorization_url(
            self._scopes.all_scopes(),
            state=pending.state,
            login_hint=email,
        )
        request = AuthorizationRequest(email=email, url=url, pending=pending)
        self._authorizations[email] = request
        logger.info("Starting authentication for %s", email)
        return request

    async def complete_authorization(
        self,
        email: str,
        request: AuthorizationRequest | None = None,
    ) -> CredentialRecord:
        """Wait for the redirect, exchange the code and persist the credential.

        Raises
        ------
        AccountError
            ``NO_AUTH_IN_PROGRESS`` when :meth:`authorize` was not called.
        AuthorizationDeniedError, AuthorizationTimeoutError
            The redirect reported an error or never arrived.
        CodeExchangeError, TokenPersistenceError
            The code could not be exchanged or the credential saved.
        """
        request = request or self._authorizations.get(email)
        if request is None:
            raise AccountError(
                "No authentication in progress",
                code="NO_AUTH_IN_PROGRESS",
                resolution="Call authorize first and open the returned URL",
            )

        with account_context(email):
            try:
                code = await request.pending.wait()
            finally:
                if self._authorizations.get(email) is request:
                    del self._authorizations[email]

            record = await self._oauth.exchange_code(code)
            await self._store.save(email, record)
            if self._client_cache is not None:
                self._client_cache.evict_account(email)
            logger.info("Authentication completed successfully")
            return record

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_account(self, email: str) -> None:
        """Remove *email* from the registry, revoke and delete its token."""
        with account_context(email):
            if await self._registry.get(email) is None:
                raise AccountError(
                    "Account not found",
                    code="ACCOUNT_NOT_FOUND",
                    resolution="Cannot remove non-existent account",
                )

            record = await self._store.load(email)
            if record is not None:
                token = record.refresh_token or record.access_token
                if not await self._oauth.revoke(token):
                    logger.warning("Token revocation failed; deleting local token anyway")
            await self._store.delete(email)
            self._policy.forget(email)
            if self._client_cache is not None:
                self._client_cache.evict_account(email)
            await self._registry.remove(email)
            logger.info("Successfully removed account")

    # ------------------------------------------------------------------
    # Operations with renewal
    # ------------------------------------------------------------------

    async def with_token_renewal(
        self,
        email: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *operation* for *email* after making sure its token is renewed.

        A transient renewal failure lets the operation proceed.  If the
        operation fails with HTTP 401, one forced renewal is attempted and the
        operation is retried once.

        Raises
        ------
        AuthRequiredError
            Renewal failed permanently (``TOKEN_RENEWAL_FAILED`` up front,
            ``AUTH_REQUIRED`` after a 401).
        TemporaryAuthError
            The post-401 renewal failed transiently.
        """
        with account_context(email):
            resolution = await self._policy.resolve(email)
            if not resolution.usable:
                if resolution.can_retry:
                    logger.warning(
                        "Token renewal failed but may be temporary - proceeding with operation"
                    )
                else:
                    raise AuthRequiredError(
                        "Token renewal failed",
                        code="TOKEN_RENEWAL_FAILED",
                        resolution=resolution.reason or "Please re-authenticate your account",
                        token_resolution=resolution,
                    )

            try:
                return await operation()
            except ServiceRequestError as exc:
                if exc.status_code != 401:
                    raise
                logger.warning("Received 401 during operation, attempting final token renewal")

            final = await self._policy.resolve(email, force_refresh=True)
            ensure_usable(final, email)
            return await operation()
