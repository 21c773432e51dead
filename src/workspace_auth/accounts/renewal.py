"""Token renewal policy: decide whether a stored credential is usable.

Given the stored record and the current time the policy returns one of the
:class:`~workspace_auth.accounts.models.TokenStatus` values, refreshing the
access token when it is inside the expiry buffer.

Refresh failures are classified in two tiers:

- the provider says the grant itself is gone (``invalid_grant``, revoked,
  not found) → ``REFRESH_FAILED`` with ``can_retry=False``; the user has to
  go through the consent screen again.
- anything else is treated as transient → one more attempt; a second
  failure is ``REFRESH_FAILED`` with ``can_retry=True``.

Resolution for a given account is single-flight: concurrent callers queue on
a per-account :class:`asyncio.Lock` and re-read the store once they hold it,
so only the first of them talks to the token endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from workspace_auth.accounts.models import CredentialRecord, TokenResolution, TokenStatus
from workspace_auth.accounts.oauth import OAuthExchangeClient
from workspace_auth.accounts.token_store import TokenStore
from workspace_auth.clock import Clock, epoch_ms
from workspace_auth.core.metrics import record_refresh_attempt, record_token_resolution
from workspace_auth.errors import (
    AuthRequiredError,
    ScopeError,
    TemporaryAuthError,
    TokenPersistenceError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_BUFFER_MS = 5 * 60 * 1000

_REVOKED_GRANT_MARKERS = ("invalid_grant", "revoked", "not found")


def is_revoked_grant_error(exc: BaseException) -> bool:
    """True when a refresh error means the refresh token itself is unusable."""
    message = str(exc).lower()
    return any(marker in message for marker in _REVOKED_GRANT_MARKERS)


def require_scopes(resolution: TokenResolution, required: Iterable[str]) -> None:
    """Raise :class:`ScopeError` if *resolution* lacks any of *required*."""
    granted = resolution.granted_scopes
    missing = [scope for scope in required if scope not in granted]
    if missing:
        raise ScopeError(missing)


def ensure_usable(resolution: TokenResolution, email: str) -> CredentialRecord:
    """Return the credential of a usable *resolution* or raise.

    Raises
    ------
    TemporaryAuthError
        The refresh failed transiently and may succeed later.
    AuthRequiredError
        Any other non-usable status; the account must be re-authorized.
    """
    if resolution.usable:
        assert resolution.credential is not None
        return resolution.credential
    reason = resolution.reason or resolution.status.value
    if resolution.status is TokenStatus.REFRESH_FAILED and resolution.can_retry:
        raise TemporaryAuthError(
            f"Temporary authentication failure for {email}: {reason}",
            token_resolution=resolution,
        )
    raise AuthRequiredError(
        f"Authentication required for {email}: {reason}",
        token_resolution=resolution,
    )


class TokenRenewalPolicy:
    """Produces a usable credential for an account, refreshing when needed."""

    def __init__(
        self,
        store: TokenStore,
        oauth_client: OAuthExchangeClient,
        *,
        clock: Clock = epoch_ms,
        expiry_buffer_ms: int = TOKEN_EXPIRY_BUFFER_MS,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._clock = clock
        self._expiry_buffer_ms = expiry_buffer_ms
        self._locks: dict[str, asyncio.Lock] = {}

    def is_fresh(self, record: CredentialRecord) -> bool:
        """True when *record* is outside the expiry buffer right now."""
        return not record.expires_within(self._clock(), self._expiry_buffer_ms)

    async def resolve(self, email: str, *, force_refresh: bool = False) -> TokenResolution:
        """Resolve the credential for *email*.

        Parameters
        ----------
        email:
            Account whose stored credential should be evaluated.
        force_refresh:
            Refresh even when the access token looks valid (used after the
            downstream API answered 401).
        """
        lock = self._locks.setdefault(email, asyncio.Lock())
        async with lock:
            resolution = await self._resolve_locked(email, force_refresh=force_refresh)
        record_token_resolution(resolution.status)
        logger.debug("Token resolution for %s: %s", email, resolution.status)
        return resolution

    def forget(self, email: str) -> None:
        """Drop per-account state for a removed account."""
        lock = self._locks.get(email)
        if lock is not None and not lock.locked():
            del self._locks[email]

    async def validate_token(self, email: str) -> TokenResolution:
        """Collaborator-facing name for :meth:`resolve`."""
        return await self.resolve(email)

    async def _resolve_locked(self, email: str, *, force_refresh: bool) -> TokenResolution:
        try:
            record = await self._store.load(email)
        except TokenPersistenceError as exc:
            logger.error("Token load failed for %s: %s", email, exc)
            return TokenResolution(status=TokenStatus.ERROR, reason=exc.message)

        if record is None:
            return TokenResolution(status=TokenStatus.NO_TOKEN, reason="No token found")

        if record.expiry_epoch_ms is None:
            return TokenResolution(status=TokenStatus.INVALID, reason="Invalid token format")

        if not force_refresh and self.is_fresh(record):
            return TokenResolution(status=TokenStatus.VALID, credential=record)

        if not record.refresh_token:
            return TokenResolution(
                status=TokenStatus.EXPIRED,
                reason="Token expired and no refresh token available",
            )

        return await self._refresh(email, record)

    async def _refresh(self, email: str, record: CredentialRecord) -> TokenResolution:
        assert record.refresh_token is not None
        try:
            refreshed = await self._oauth.refresh(record.refresh_token, previous=record)
        except TokenRefreshError as first_error:
            if is_revoked_grant_error(first_error):
                record_refresh_attempt("revoked")
                logger.error("Refresh token for %s is invalid or revoked", email)
                return TokenResolution(
                    status=TokenStatus.REFRESH_FAILED,
                    reason="Refresh token is invalid or revoked",
                    can_retry=False,
                )

            record_refresh_attempt("transient_error")
            logger.warning("First refresh attempt failed for %s, trying once more", email)
            try:
                refreshed = await self._oauth.refresh(record.refresh_token, previous=record)
            except TokenRefreshError:
                record_refresh_attempt("transient_error")
                logger.error(
                    "Both refresh attempts failed for %s; refresh token may still be valid",
                    email,
                )
                return TokenResolution(
                    status=TokenStatus.REFRESH_FAILED,
                    reason="Token refresh failed, temporary error",
                    can_retry=True,
                )

        record_refresh_attempt("success")
        try:
            await self._store.save(email, refreshed)
        except TokenPersistenceError as exc:
            logger.error("Refreshed token for %s could not be persisted: %s", email, exc)
            return TokenResolution(status=TokenStatus.ERROR, reason=exc.message)

        logger.info("Token refreshed successfully for %s", email)
        return TokenResolution(status=TokenStatus.REFRESHED, credential=refreshed)
