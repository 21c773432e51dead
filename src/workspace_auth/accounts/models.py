"""Credential and account models.

``CredentialRecord`` is the persisted OAuth2 token set for one account.
Its ``expiry_epoch_ms`` is always an absolute epoch-millisecond timestamp;
``expires_in`` durations from the token endpoint are converted when a record
is built from a token response.

Token material never appears in ``repr``/``str`` output.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator

DEFAULT_EXPIRES_IN_SECONDS = 3600

# ---------------------------------------------------------------------------
# Credential record
# ---------------------------------------------------------------------------


class CredentialRecord(BaseModel):
    """OAuth2 access/refresh token pair plus metadata for one account."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    scope: frozenset[str] = frozenset()
    token_type: str = "Bearer"
    # Older token files written by the Node adapter use ``expiry_date``.
    expiry_epoch_ms: int | None = Field(
        default=None,
        validation_alias=AliasChoices("expiry_epoch_ms", "expiry_date"),
    )
    last_refresh_epoch_ms: int | None = None

    @field_validator("scope", mode="before")
    @classmethod
    def _split_scope(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            return frozenset(part for part in value.split() if part)
        return value

    @field_validator("refresh_token", mode="before")
    @classmethod
    def _blank_refresh_token_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def __repr__(self) -> str:
        return (
            f"CredentialRecord("
            f"access_token=<REDACTED>, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"scope={sorted(self.scope)!r}, "
            f"token_type={self.token_type!r}, "
            f"expiry_epoch_ms={self.expiry_epoch_ms!r})"
        )

    __str__ = __repr__

    @property
    def scope_string(self) -> str:
        return " ".join(sorted(self.scope))

    def expires_within(self, now_ms: int, buffer_ms: int) -> bool:
        """True when the token is expired or will expire within *buffer_ms*.

        A record without an expiry is treated as expiring.
        """
        if self.expiry_epoch_ms is None:
            return True
        return not (now_ms + buffer_ms < self.expiry_epoch_ms)

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        *,
        now_ms: int,
        previous: CredentialRecord | None = None,
    ) -> CredentialRecord:
        """Build a record from a Google token endpoint response.

        Refresh responses usually omit ``refresh_token`` and sometimes
        ``scope``; those are carried over from *previous*.

        Raises
        ------
        ValueError
            If the payload has no non-empty ``access_token``.
        """
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ValueError("token response is missing a non-empty access_token")

        expiry_raw = payload.get("expiry_date")
        if isinstance(expiry_raw, int) and not isinstance(expiry_raw, bool) and expiry_raw > 0:
            expiry_epoch_ms = expiry_raw
        else:
            expiry_epoch_ms = now_ms + _coerce_expires_in_seconds(payload.get("expires_in")) * 1000

        refresh_token = payload.get("refresh_token") or None
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token
        scope = payload.get("scope")
        if scope is None and previous is not None:
            scope = previous.scope

        return cls(
            access_token=access_token.strip(),
            refresh_token=refresh_token,
            scope=scope,
            token_type=payload.get("token_type") or "Bearer",
            expiry_epoch_ms=expiry_epoch_ms,
            last_refresh_epoch_ms=now_ms,
        )


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str):
        try:
            parsed = int(value)
        except ValueError:
            return DEFAULT_EXPIRES_IN_SECONDS
        return parsed if parsed > 0 else DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


# ---------------------------------------------------------------------------
# Token status
# ---------------------------------------------------------------------------


class TokenStatus(StrEnum):
    """Outcome of resolving the stored credential for an account."""

    NO_TOKEN = "NO_TOKEN"
    """No credential has ever been stored; the authorization flow is required."""

    VALID = "VALID"
    """The stored access token is usable as-is."""

    REFRESHED = "REFRESHED"
    """The access token was refreshed and persisted."""

    EXPIRED = "EXPIRED"
    """Expired with no refresh token; full re-authorization is required."""

    REFRESH_FAILED = "REFRESH_FAILED"
    """Refresh failed; ``can_retry`` tells transient from revoked."""

    INVALID = "INVALID"
    """The stored record has no expiry and cannot be evaluated."""

    ERROR = "ERROR"
    """Persistence or unexpected failure while resolving."""


_USABLE_STATUSES = frozenset({TokenStatus.VALID, TokenStatus.REFRESHED})


class TokenResolution(BaseModel):
    """Result of :meth:`TokenRenewalPolicy.resolve`."""

    model_config = ConfigDict(frozen=True)

    status: TokenStatus
    credential: CredentialRecord | None = None
    reason: str | None = None
    can_retry: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def usable(self) -> bool:
        """``True`` iff the credential can be used for a downstream call."""
        return self.status in _USABLE_STATUSES and self.credential is not None

    @property
    def granted_scopes(self) -> frozenset[str]:
        return self.credential.scope if self.credential is not None else frozenset()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AuthStatus(BaseModel):
    """Authentication status attached to an account when listed or validated."""

    valid: bool
    status: TokenStatus
    reason: str | None = None
    auth_url: str | None = None
    can_retry: bool = False


class Account(BaseModel):
    """A configured Google account the adapter may act for."""

    model_config = ConfigDict(extra="ignore")

    email: str
    category: str = ""
    description: str = ""
    auth_status: AuthStatus | None = None
