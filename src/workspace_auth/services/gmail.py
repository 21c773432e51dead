"""Gmail API: message listing, message details and attachment download."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import httpx

from workspace_auth.accounts.client_cache import AccountAuth
from workspace_auth.attachments.index import AttachmentMetadataIndex
from workspace_auth.attachments.transformer import AttachmentResponseTransformer
from workspace_auth.errors import AttachmentExpiredError
from workspace_auth.scopes import GMAIL_READONLY
from workspace_auth.services.base import GoogleApiClient, path_segment

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"

_SUMMARY_HEADERS = {"subject": "subject", "from": "from", "to": "to", "date": "date"}


def _iter_parts(part: dict[str, Any]) -> Iterator[dict[str, Any]]:
    yield part
    for child in part.get("parts") or []:
        if isinstance(child, dict):
            yield from _iter_parts(child)


def summarize_message(message: dict[str, Any]) -> dict[str, Any]:
    """Flatten a ``format=full`` Gmail message into the tool-facing shape."""
    payload = message.get("payload") or {}
    summary: dict[str, Any] = {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "labelIds": message.get("labelIds") or [],
        "snippet": message.get("snippet", ""),
    }
    for header in payload.get("headers") or []:
        key = _SUMMARY_HEADERS.get(str(header.get("name", "")).lower())
        if key is not None:
            summary[key] = header.get("value", "")

    attachments = []
    for part in _iter_parts(payload):
        body = part.get("body") or {}
        if part.get("filename") and body.get("attachmentId"):
            attachments.append(
                {
                    "id": body["attachmentId"],
                    "name": part["filename"],
                    "mimeType": part.get("mimeType"),
                    "size": body.get("size", 0),
                }
            )
    summary["attachments"] = attachments
    return summary


class GmailService(GoogleApiClient):
    service_name = "gmail"
    base_url = GMAIL_API_BASE_URL
    required_scopes = (GMAIL_READONLY,)

    def __init__(
        self,
        auth: AccountAuth,
        http_client: httpx.AsyncClient,
        *,
        index: AttachmentMetadataIndex,
        transformer: AttachmentResponseTransformer,
    ) -> None:
        super().__init__(auth, http_client)
        self._index = index
        self._transformer = transformer

    async def list_messages(
        self,
        *,
        query: str | None = None,
        max_results: int = 10,
        label_ids: list[str] | None = None,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        """List message ids matching *query* (Gmail search syntax, passed through)."""
        payload = await self._get_json(
            "/messages",
            params={
                "q": query,
                "maxResults": max_results,
                "labelIds": label_ids,
                "pageToken": page_token,
            },
        )
        return {
            "messages": payload.get("messages") or [],
            "nextPageToken": payload.get("nextPageToken"),
            "resultSizeEstimate": payload.get("resultSizeEstimate", 0),
        }

    async def get_message(self, message_id: str) -> dict[str, Any]:
        """Message summary with attachments reduced to their names."""
        message = await self._get_json(
            f"/messages/{path_segment(message_id)}", params={"format": "full"}
        )
        return self._transformer.transform(summarize_message(message))

    async def get_attachment(self, message_id: str, filename: str) -> dict[str, Any]:
        """Download an attachment previously listed by :meth:`get_message`.

        Raises
        ------
        AttachmentExpiredError
            The attachment is no longer indexed; fetch the message again.
        """
        record = self._index.get(message_id, filename)
        if record is None:
            raise AttachmentExpiredError(
                f"Attachment metadata not found for {filename!r} on message {message_id}"
            )
        payload = await self._get_json(
            f"/messages/{path_segment(message_id)}"
            f"/attachments/{path_segment(record.original_provider_id)}"
        )
        return {
            "name": record.filename,
            "mimeType": record.mime_type,
            "size": payload.get("size", record.size),
            "data": payload.get("data", ""),
        }
