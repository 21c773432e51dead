"""Drive API: file listing."""

from __future__ import annotations

from typing import Any

from workspace_auth.scopes import DRIVE_READONLY
from workspace_auth.services.base import GoogleApiClient

GOOGLE_DRIVE_API_BASE_URL = "https://www.googleapis.com/drive/v3"

_FILE_FIELDS = "nextPageToken, files(id, name, mimeType, modifiedTime, size, webViewLink)"


class DriveService(GoogleApiClient):
    service_name = "drive"
    base_url = GOOGLE_DRIVE_API_BASE_URL
    required_scopes = (DRIVE_READONLY,)

    async def list_files(
        self,
        *,
        query: str | None = None,
        page_size: int = 10,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        payload = await self._get_json(
            "/files",
            params={
                "q": query,
                "pageSize": page_size,
                "pageToken": page_token,
                "fields": _FILE_FIELDS,
            },
        )
        return {
            "files": payload.get("files") or [],
            "nextPageToken": payload.get("nextPageToken"),
        }
