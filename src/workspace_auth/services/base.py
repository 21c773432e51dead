"""Shared request plumbing for the typed Google API clients."""

from __future__ import annotations

import logging
from typing import Any, ClassVar
from urllib.parse import quote

import httpx

from workspace_auth.accounts.client_cache import AccountAuth
from workspace_auth.accounts.oauth import format_google_error
from workspace_auth.errors import ServiceRequestError

logger = logging.getLogger(__name__)

# ServiceRequestError.status_code for a request that never got a response.
TRANSPORT_ERROR_STATUS = 0


def path_segment(value: str) -> str:
    """Quote *value* for use as a single URL path segment."""
    return quote(value, safe="")


class GoogleApiClient:
    """Bearer-authenticated JSON client for one Google API and one account.

    Subclasses set ``service_name``, ``base_url`` and ``required_scopes``.
    A 401 response is retried once with a forced token refresh.
    """

    service_name: ClassVar[str]
    base_url: ClassVar[str]
    required_scopes: ClassVar[tuple[str, ...]] = ()

    def __init__(self, auth: AccountAuth, http_client: httpx.AsyncClient) -> None:
        self._auth = auth
        self._http_client = http_client

    @property
    def email(self) -> str:
        return self._auth.email

    async def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request_json("GET", path, params=params)

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self.base_url}{normalized_path}"
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        response = await self._request_once(method, url, params, json_body, force_refresh=False)
        if response.status_code == 401:
            logger.info("%s API returned 401, retrying with refreshed token", self.service_name)
            response = await self._request_once(method, url, params, json_body, force_refresh=True)

        if response.status_code < 200 or response.status_code >= 300:
            raise ServiceRequestError(
                service=self.service_name,
                status_code=response.status_code,
                message=format_google_error(response),
            )
        if response.status_code == 204:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise ServiceRequestError(
                service=self.service_name,
                status_code=response.status_code,
                message="invalid JSON in successful response",
            ) from exc
        if not isinstance(payload, dict):
            raise ServiceRequestError(
                service=self.service_name,
                status_code=response.status_code,
                message="expected a JSON object",
            )
        return payload

    async def _request_once(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        *,
        force_refresh: bool,
    ) -> httpx.Response:
        headers = await self._auth.authorization_header(force_refresh=force_refresh)
        headers["Accept"] = "application/json"
        try:
            return await self._http_client.request(
                method, url, params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ServiceRequestError(
                service=self.service_name,
                status_code=TRANSPORT_ERROR_STATUS,
                message=f"request failed: {exc}",
            ) from exc
