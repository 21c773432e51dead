"""Environment-driven configuration for the workspace auth runtime.

Reads OAuth client credentials, callback routing and persistence paths from
environment variables and returns a validated, frozen
:class:`WorkspaceAuthConfig`.

Environment variables:
  GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET  : OAuth client (required)
  OAUTH_CALLBACK_URL / GOOGLE_OAUTH_CALLBACK_URI / OAUTH_REDIRECT_URI
                                           : external callback override
  OAUTH_SERVER_PORT / WORKSPACE_MCP_PORT   : local callback port (default 8080)
  CREDENTIALS_PATH                         : token persistence root
  ACCOUNTS_PATH                            : accounts.json location
  WORKSPACE_AUTH_LOG_LEVEL / WORKSPACE_AUTH_LOG_FORMAT
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workspace_auth.errors import ConfigError

DEFAULT_CALLBACK_PORT = 8080
DEFAULT_CALLBACK_PATH = "/oauth2callback"
_DEFAULT_BASE_DIR = Path.home() / ".mcp" / "google-workspace-mcp"
DEFAULT_CREDENTIALS_PATH = _DEFAULT_BASE_DIR / "credentials"
DEFAULT_ACCOUNTS_PATH = _DEFAULT_BASE_DIR / "accounts.json"

_EXTERNAL_CALLBACK_VARS = ("OAUTH_CALLBACK_URL", "GOOGLE_OAUTH_CALLBACK_URI", "OAUTH_REDIRECT_URI")
_PORT_VARS = ("OAUTH_SERVER_PORT", "WORKSPACE_MCP_PORT")


class WorkspaceAuthConfig(BaseModel):
    """Validated runtime configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    external_callback_url: str | None = None
    callback_port: int = DEFAULT_CALLBACK_PORT
    callback_host: str = "0.0.0.0"
    credentials_path: Path = DEFAULT_CREDENTIALS_PATH
    accounts_path: Path = DEFAULT_ACCOUNTS_PATH
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"

    @field_validator("client_id", "client_secret")
    @classmethod
    def _normalize_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized

    def __repr__(self) -> str:
        return (
            f"WorkspaceAuthConfig(client_id={self.client_id!r}, client_secret=<REDACTED>, "
            f"callback_url={self.callback_url!r}, credentials_path={str(self.credentials_path)!r})"
        )

    __str__ = __repr__

    @property
    def uses_external_callback(self) -> bool:
        return self.external_callback_url is not None

    @property
    def callback_url(self) -> str:
        """Redirect URI registered with Google for this process."""
        if self.external_callback_url:
            return self.external_callback_url
        return f"http://localhost:{self.callback_port}{DEFAULT_CALLBACK_PATH}"

    @classmethod
    def from_env(cls, **overrides: Any) -> WorkspaceAuthConfig:
        """Build the config from the process environment.

        Keyword *overrides* take precedence over environment values.

        Raises
        ------
        ConfigError
            If the OAuth client credentials are missing or a numeric variable
            cannot be parsed.
        """
        client_id = os.environ.get("GOOGLE_CLIENT_ID", "").strip()
        client_secret = os.environ.get("GOOGLE_CLIENT_SECRET", "").strip()
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLIENT_ID", overrides.get("client_id", client_id)),
                ("GOOGLE_CLIENT_SECRET", overrides.get("client_secret", client_secret)),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing OAuth credentials: {', '.join(missing)}")

        external_callback_url = next(
            (
                os.environ[name].strip()
                for name in _EXTERNAL_CALLBACK_VARS
                if os.environ.get(name, "").strip()
            ),
            None,
        )

        port_str = next(
            (os.environ[name] for name in _PORT_VARS if os.environ.get(name, "").strip()),
            str(DEFAULT_CALLBACK_PORT),
        )
        try:
            callback_port = int(port_str)
        except ValueError as exc:
            raise ConfigError(f"OAUTH_SERVER_PORT must be an integer, got: {port_str}") from exc

        log_format = os.environ.get("WORKSPACE_AUTH_LOG_FORMAT", "text").strip().lower()
        if log_format not in ("text", "json"):
            raise ConfigError(
                f"WORKSPACE_AUTH_LOG_FORMAT must be 'text' or 'json', got: {log_format}"
            )

        config_kwargs: dict[str, Any] = {
            "client_id": client_id,
            "client_secret": client_secret,
            "external_callback_url": external_callback_url,
            "callback_port": callback_port,
            "credentials_path": Path(
                os.environ.get("CREDENTIALS_PATH") or DEFAULT_CREDENTIALS_PATH
            ).expanduser(),
            "accounts_path": Path(
                os.environ.get("ACCOUNTS_PATH") or DEFAULT_ACCOUNTS_PATH
            ).expanduser(),
            "log_level": os.environ.get("WORKSPACE_AUTH_LOG_LEVEL", "INFO").strip().upper(),
            "log_format": log_format,
        }
        config_kwargs.update(overrides)
        try:
            return cls(**config_kwargs)
        except ValueError as exc:
            raise ConfigError(f"Invalid workspace auth configuration: {exc}") from exc
