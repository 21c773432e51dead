"""People API: the account's contact connections."""

from __future__ import annotations

from typing import Any

from workspace_auth.scopes import CONTACTS_READONLY
from workspace_auth.services.base import GoogleApiClient

GOOGLE_PEOPLE_API_BASE_URL = "https://people.googleapis.com/v1"

DEFAULT_PERSON_FIELDS = "names,emailAddresses,phoneNumbers"


class ContactsService(GoogleApiClient):
    service_name = "contacts"
    base_url = GOOGLE_PEOPLE_API_BASE_URL
    required_scopes = (CONTACTS_READONLY,)

    async def list_connections(
        self,
        *,
        person_fields: str = DEFAULT_PERSON_FIELDS,
        page_size: int = 100,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        payload = await self._get_json(
            "/people/me/connections",
            params={
                "personFields": person_fields,
                "pageSize": page_size,
                "pageToken": page_token,
            },
        )
        return {
            "connections": payload.get("connections") or [],
            "nextPageToken": payload.get("nextPageToken"),
            "totalItems": payload.get("totalItems", 0),
        }
