"""Per-account, per-API memoization of authenticated downstream clients.

A client is built once for each ``(email, service_name)`` pair, after the
renewal policy has produced a usable credential, and then reused without
revalidation for the lifetime of the cache.  Clients do not hold credential
objects: they receive an :class:`AccountAuth` handle and ask it for a bearer
token per request, so a refresh never mutates anything shared.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from workspace_auth.accounts.models import CredentialRecord
from workspace_auth.accounts.renewal import TokenRenewalPolicy, ensure_usable, require_scopes
from workspace_auth.core.metrics import record_client_cache_lookup
from workspace_auth.errors import ClientNotInitializedError

logger = logging.getLogger(__name__)

ClientFactory = Callable[["AccountAuth"], Any]


class AccountAuth:
    """Bearer-token source for one account.

    Holds the last credential it saw and asks the renewal policy again only
    when that credential is inside the expiry buffer or a refresh is forced.
    """

    def __init__(
        self,
        email: str,
        policy: TokenRenewalPolicy,
        credential: CredentialRecord | None = None,
    ) -> None:
        self._email = email
        self._policy = policy
        self._credential = credential
        self._lock = asyncio.Lock()

    @property
    def email(self) -> str:
        return self._email

    async def access_token(self, *, force_refresh: bool = False) -> str:
        """Return a usable access token, refreshing through the policy if needed.

        Raises
        ------
        AuthRequiredError
            The account has no usable credential.
        TemporaryAuthError
            A refresh failed transiently.
        """
        credential = self._credential
        if not force_refresh and credential is not None and self._policy.is_fresh(credential):
            return credential.access_token

        async with self._lock:
            credential = self._credential
            if not force_refresh and credential is not None and self._policy.is_fresh(credential):
                return credential.access_token
            resolution = await self._policy.resolve(self._email, force_refresh=force_refresh)
            self._credential = ensure_usable(resolution, self._email)
            return self._credential.access_token

    async def authorization_header(self, *, force_refresh: bool = False) -> dict[str, str]:
        token = await self.access_token(force_refresh=force_refresh)
        return {"Authorization": f"Bearer {token}"}


class AuthenticatedClientCache:
    """Memoizes one client per ``(email, service_name)``."""

    def __init__(self, policy: TokenRenewalPolicy) -> None:
        self._policy = policy
        self._clients: dict[tuple[str, str], Any] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._closed = False

    @property
    def size(self) -> int:
        return len(self._clients)

    def __contains__(self, key: object) -> bool:
        return key in self._clients

    async def get(
        self,
        email: str,
        service_name: str,
        factory: ClientFactory,
        *,
        required_scopes: Iterable[str] = (),
    ) -> Any:
        """Return the cached client for *email*/*service_name*, building it on a miss.

        Parameters
        ----------
        factory:
            Called with an :class:`AccountAuth` for the account; may be sync
            or async.
        required_scopes:
            Checked against the credential before the client is built.

        Raises
        ------
        ClientNotInitializedError
            The cache has been closed.
        AuthRequiredError
            No usable credential (``TemporaryAuthError`` when a refresh
            failed transiently).
        ScopeError
            The credential lacks one of *required_scopes*.
        """
        self._ensure_open()
        key = (email, service_name)
        client = self._clients.get(key)
        if client is not None:
            record_client_cache_lookup(service_name, "hit")
            return client

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            self._ensure_open()
            client = self._clients.get(key)
            if client is not None:
                record_client_cache_lookup(service_name, "hit")
                return client

            record_client_cache_lookup(service_name, "miss")
            resolution = await self._policy.validate_token(email)
            credential = ensure_usable(resolution, email)
            require_scopes(resolution, required_scopes)

            client = factory(AccountAuth(email, self._policy, credential))
            if inspect.isawaitable(client):
                client = await client
            self._clients[key] = client
            logger.info("Created %s client for %s", service_name, email)
            return client

    def evict_account(self, email: str) -> int:
        """Drop every cached client of *email* (used when an account is removed)."""
        keys = [key for key in self._clients if key[0] == email]
        for key in keys:
            del self._clients[key]
            self._locks.pop(key, None)
        return len(keys)

    def clear(self) -> None:
        self._clients.clear()
        self._locks.clear()

    async def close(self) -> None:
        """Close every cached client that supports it and refuse further use."""
        self._closed = True
        clients = list(self._clients.values())
        self.clear()
        for client in clients:
            closer: Callable[[], Awaitable[None] | None] | None = getattr(client, "aclose", None)
            if closer is None:
                continue
            try:
                result = closer()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Failed to close cached client %r", client, exc_info=True)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClientNotInitializedError("Client cache has been closed")
