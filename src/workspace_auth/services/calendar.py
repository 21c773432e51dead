"""Calendar API: event listing and event details."""

from __future__ import annotations

from typing import Any

import httpx

from workspace_auth.accounts.client_cache import AccountAuth
from workspace_auth.attachments.transformer import AttachmentResponseTransformer
from workspace_auth.scopes import CALENDAR_READONLY
from workspace_auth.services.base import GoogleApiClient, path_segment

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"


def _normalize_event(event: dict[str, Any]) -> dict[str, Any]:
    # Calendar attachments are Drive files: fileId/title rather than id/name.
    attachments = event.get("attachments")
    if not isinstance(attachments, list):
        return event
    normalized = dict(event)
    normalized["attachments"] = [
        {
            "id": attachment.get("fileId"),
            "name": attachment.get("title"),
            "mimeType": attachment.get("mimeType"),
        }
        for attachment in attachments
        if isinstance(attachment, dict)
    ]
    return normalized


class CalendarService(GoogleApiClient):
    service_name = "calendar"
    base_url = GOOGLE_CALENDAR_API_BASE_URL
    required_scopes = (CALENDAR_READONLY,)

    def __init__(
        self,
        auth: AccountAuth,
        http_client: httpx.AsyncClient,
        *,
        transformer: AttachmentResponseTransformer,
    ) -> None:
        super().__init__(auth, http_client)
        self._transformer = transformer

    async def list_events(
        self,
        calendar_id: str = "primary",
        *,
        time_min: str | None = None,
        time_max: str | None = None,
        query: str | None = None,
        max_results: int = 10,
    ) -> list[dict[str, Any]]:
        """Upcoming single events in start-time order; ``time_*`` are RFC 3339 strings."""
        payload = await self._get_json(
            f"/calendars/{path_segment(calendar_id)}/events",
            params={
                "timeMin": time_min,
                "timeMax": time_max,
                "q": query,
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        items = [_normalize_event(item) for item in payload.get("items") or []]
        return self._transformer.transform(items)

    async def get_event(self, event_id: str, calendar_id: str = "primary") -> dict[str, Any]:
        event = await self._get_json(
            f"/calendars/{path_segment(calendar_id)}/events/{path_segment(event_id)}"
        )
        return self._transformer.transform(_normalize_event(event))
