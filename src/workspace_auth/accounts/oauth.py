"""OAuth2 authorization-code grant against Google's endpoints.

Three network operations, each taking the credential it needs as an explicit
argument (there is no shared, mutable OAuth client object):

- :meth:`OAuthExchangeClient.build_authorization_url` (no I/O)
- :meth:`OAuthExchangeClient.exchange_code`
- :meth:`OAuthExchangeClient.refresh`

Refresh failures carry the provider's error code (``invalid_grant`` etc.) in
the exception message so the renewal policy can tell a revoked grant from a
transient blip. Secret material is never logged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlencode

import httpx

from workspace_auth.accounts.models import CredentialRecord
from workspace_auth.clock import Clock, epoch_ms
from workspace_auth.config import WorkspaceAuthConfig
from workspace_auth.errors import (
    ClientNotInitializedError,
    CodeExchangeError,
    TokenRefreshError,
    WorkspaceAuthError,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

_DEFAULT_TIMEOUT_SECONDS = 15.0


def format_google_error(response: httpx.Response) -> str:
    """Extract a compact Google API/OAuth error summary from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        nested_error = payload.get("error")
        # Google API error shape:
        # {"error": {"code": 404, "message": "...", "status": "..."}}
        if isinstance(nested_error, dict):
            parts: list[str] = []
            status = nested_error.get("status")
            if isinstance(status, str) and status:
                parts.append(f"status={status}")
            message = nested_error.get("message")
            if isinstance(message, str) and message.strip():
                parts.append(f"message={' '.join(message.split())[:200]}")
            if parts:
                return ", ".join(parts)
        # OAuth token endpoint error shape:
        # {"error": "invalid_grant", "error_description": "..."}
        if isinstance(nested_error, str) and nested_error:
            description = payload.get("error_description")
            if isinstance(description, str) and description:
                return f"error={nested_error}, description={description}"
            return f"error={nested_error}"

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


class OAuthExchangeClient:
    """Builds authorization URLs and talks to the Google token endpoint."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = epoch_ms,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._owns_http_client = http_client is None
        self._http_client: httpx.AsyncClient | None = http_client or httpx.AsyncClient(
            timeout=_DEFAULT_TIMEOUT_SECONDS
        )
        self._clock = clock
        logger.info("OAuth client initialized with callback: %s", redirect_uri)

    @classmethod
    def from_config(
        cls,
        config: WorkspaceAuthConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = epoch_ms,
    ) -> OAuthExchangeClient:
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.callback_url,
            http_client=http_client,
            clock=clock,
        )

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    # ------------------------------------------------------------------
    # Authorization URL
    # ------------------------------------------------------------------

    def build_authorization_url(
        self,
        scopes: Iterable[str],
        *,
        state: str,
        login_hint: str | None = None,
    ) -> str:
        """Return the consent-screen URL for *scopes*.

        ``access_type=offline`` and ``prompt=consent`` force Google to issue a
        refresh token even for previously-consented accounts.
        """
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        if login_hint:
            params["login_hint"] = login_hint
        logger.debug("Authorization URL generated (state=%s...)", state[:8])
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str) -> CredentialRecord:
        """Exchange an authorization code for a new credential record.

        Raises
        ------
        CodeExchangeError
            If the exchange fails for any reason. Never retried.
        """
        logger.info("Exchanging authorization code for tokens")
        payload = await self._post_token(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            },
            error_cls=CodeExchangeError,
            operation="authorization code exchange",
        )
        try:
            record = CredentialRecord.from_token_response(payload, now_ms=self._clock())
        except ValueError as exc:
            raise CodeExchangeError(f"Invalid token response: {exc}") from exc
        if record.refresh_token is None:
            logger.warning("Token response did not include a refresh token")
        logger.info("Successfully obtained tokens from auth code")
        return record

    async def refresh(
        self,
        refresh_token: str,
        *,
        previous: CredentialRecord | None = None,
    ) -> CredentialRecord:
        """Obtain a fresh access token for *refresh_token*.

        Raises
        ------
        TokenRefreshError
            With the provider error code in the message (e.g. ``invalid_grant``).
        """
        logger.info("Refreshing access token")
        payload = await self._post_token(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            error_cls=TokenRefreshError,
            operation="token refresh",
        )
        if not payload.get("refresh_token"):
            # Google omits the refresh token on refresh; keep the one we used.
            payload = {**payload, "refresh_token": refresh_token}
        try:
            record = CredentialRecord.from_token_response(
                payload, now_ms=self._clock(), previous=previous
            )
        except ValueError as exc:
            raise TokenRefreshError(f"Invalid token response: {exc}") from exc
        logger.info("Successfully refreshed access token")
        return record

    async def revoke(self, token: str) -> bool:
        """Best-effort revocation of *token*; returns ``True`` on HTTP 200."""
        client = self._ensure_open()
        try:
            response = await client.post(GOOGLE_REVOKE_URL, data={"token": token})
        except httpx.HTTPError as exc:
            logger.warning("Token revocation request failed: %s", exc)
            return False
        if response.status_code != 200:
            logger.warning(
                "Token revocation rejected (%d): %s",
                response.status_code,
                format_google_error(response),
            )
            return False
        return True

    async def aclose(self) -> None:
        client, self._http_client = self._http_client, None
        if client is not None and self._owns_http_client:
            await client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise ClientNotInitializedError("OAuth client is closed")
        return self._http_client

    async def _post_token(
        self,
        data: dict[str, str],
        *,
        error_cls: type[WorkspaceAuthError],
        operation: str,
    ) -> dict[str, Any]:
        client = self._ensure_open()
        try:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.error("Google OAuth %s request failed: %s", operation, exc)
            raise error_cls(f"Google OAuth {operation} request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = format_google_error(response)
            logger.error(
                "Google OAuth %s failed (%d): %s", operation, response.status_code, detail
            )
            raise error_cls(f"Google OAuth {operation} failed ({response.status_code}): {detail}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise error_cls(f"Google OAuth {operation} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise error_cls(f"Google OAuth {operation} returned an unexpected payload shape")
        return payload
