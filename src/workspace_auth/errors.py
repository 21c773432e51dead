"""Error taxonomy for the workspace auth core.

Every domain error carries a stable ``code`` (machine-readable, safe to
return to tool callers) and a ``resolution`` hint for the human operator.
Messages never include token material.
"""

from __future__ import annotations

from typing import Any


class WorkspaceAuthError(Exception):
    """Base error for credential, authorization and client-cache failures."""

    default_code = "WORKSPACE_AUTH_ERROR"
    default_resolution = "Check the server logs for details."

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        resolution: str | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.resolution = resolution or self.default_resolution
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "resolution": self.resolution}


class ConfigError(WorkspaceAuthError):
    """Raised when required configuration is missing or malformed (fatal at startup)."""

    default_code = "AUTH_CONFIG_ERROR"
    default_resolution = "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be provided."


class TokenPersistenceError(WorkspaceAuthError):
    """Raised when a token file cannot be read, parsed, written or deleted."""

    default_code = "TOKEN_PERSISTENCE_ERROR"
    default_resolution = "Please ensure the credentials directory is readable and writable."


class CodeExchangeError(WorkspaceAuthError):
    """Raised when an authorization code cannot be exchanged for tokens."""

    default_code = "AUTH_CODE_ERROR"
    default_resolution = "Please ensure the authorization code is valid and not expired."


class TokenRefreshError(WorkspaceAuthError):
    """Raised when the token endpoint rejects or fails a refresh request."""

    default_code = "TOKEN_REFRESH_ERROR"
    default_resolution = "Please re-authenticate the account."


class ScopeError(WorkspaceAuthError):
    """Raised when a credential lacks a scope required by the calling operation."""

    default_code = "SCOPE_ERROR"
    default_resolution = "Re-run authorization and grant all requested permissions."

    def __init__(self, missing_scopes: list[str]) -> None:
        self.missing_scopes = missing_scopes
        super().__init__(
            "Insufficient permissions",
            resolution=f"Missing required scopes: {', '.join(missing_scopes)}",
        )


class AuthRequiredError(WorkspaceAuthError):
    """Raised when no usable credential exists and full re-authorization is needed.

    ``token_resolution`` holds the renewal-policy result that caused it, when
    there is one.
    """

    default_code = "AUTH_REQUIRED"
    default_resolution = "Please authenticate the account."

    def __init__(
        self,
        message: str,
        *,
        token_resolution: Any = None,
        code: str | None = None,
        resolution: str | None = None,
    ) -> None:
        self.token_resolution = token_resolution
        super().__init__(message, code=code, resolution=resolution)


class TemporaryAuthError(AuthRequiredError):
    """Raised when a refresh failed transiently; the caller may retry later."""

    default_code = "TEMPORARY_AUTH_ERROR"
    default_resolution = "Please try again later."


class ClientNotInitializedError(WorkspaceAuthError):
    """Raised when a cache or OAuth client is used outside its lifetime."""

    default_code = "CLIENT_ERROR"
    default_resolution = "Please ensure the service is initialized."


class AuthorizationTimeoutError(WorkspaceAuthError):
    """Raised when no authorization redirect arrives before the deadline."""

    default_code = "AUTH_TIMEOUT"
    default_resolution = "Restart the authorization flow and complete it within 5 minutes."


class AuthorizationDeniedError(WorkspaceAuthError):
    """Raised when the provider redirect reports an error (e.g. access_denied)."""

    default_code = "AUTH_DENIED"
    default_resolution = "Restart the authorization flow and approve the requested access."


class AccountError(WorkspaceAuthError):
    """Raised for account registry failures (unknown, duplicate, invalid email, I/O)."""

    default_code = "ACCOUNT_ERROR"


class ServiceRequestError(WorkspaceAuthError):
    """Raised when a downstream Google API request fails."""

    default_code = "SERVICE_ERROR"

    def __init__(self, *, service: str, status_code: int, message: str) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"Google {service} API request failed ({status_code}): {message}")


class AttachmentExpiredError(WorkspaceAuthError):
    """Raised when attachment metadata is no longer in the index."""

    default_code = "ATTACHMENT_EXPIRED"
    default_resolution = "Request the message again to refresh its attachments."
