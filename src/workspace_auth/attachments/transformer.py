"""Hide provider attachment ids from tool responses.

Any mapping in a response that has an ``id`` and an ``attachments`` list is
treated as a message (or event); each attachment with an ``id`` and ``name``
is recorded in the index under that message id and the list is replaced by
``[{"name": ...}]``.  The input is never mutated.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from workspace_auth.attachments.cleanup import AttachmentCleanupScheduler
from workspace_auth.attachments.index import DEFAULT_MIME_TYPE, AttachmentMetadataIndex

EXPIRED_PLACEHOLDER_NAME = "Attachments expired - Request message again to view"
UNKNOWN_FILE_NAME = "Unknown file"


def refresh_placeholder() -> list[dict[str, str]]:
    """Attachment list shown when the indexed metadata has expired."""
    return [{"name": EXPIRED_PLACEHOLDER_NAME}]


class AttachmentResponseTransformer:
    def __init__(
        self,
        index: AttachmentMetadataIndex,
        scheduler: AttachmentCleanupScheduler | None = None,
    ) -> None:
        self._index = index
        self._scheduler = scheduler

    def transform(self, response: Any) -> Any:
        """Return a copy of *response* with attachment lists simplified."""
        result, indexed = self._walk(response)
        if indexed and self._scheduler is not None:
            self._scheduler.notify_activity()
        return result

    def _walk(self, value: Any) -> tuple[Any, bool]:
        if isinstance(value, list):
            items = [self._walk(item) for item in value]
            return [item for item, _ in items], any(flag for _, flag in items)
        if not isinstance(value, Mapping):
            return value, False

        transformed = dict(value)
        indexed = False
        attachments = transformed.get("attachments")
        simplified = "id" in transformed and isinstance(attachments, list)
        if simplified:
            message_id = str(transformed["id"])
            for attachment in attachments:
                if not isinstance(attachment, Mapping):
                    continue
                if attachment.get("id") and attachment.get("name"):
                    self._index.add(
                        message_id,
                        {
                            "id": attachment["id"],
                            "name": attachment["name"],
                            "mimeType": attachment.get("mimeType") or DEFAULT_MIME_TYPE,
                            "size": attachment.get("size") or 0,
                        },
                    )
                    indexed = True
            transformed["attachments"] = [
                {
                    "name": (
                        attachment.get("name") if isinstance(attachment, Mapping) else None
                    )
                    or UNKNOWN_FILE_NAME
                }
                for attachment in attachments
            ]

        for key, nested in transformed.items():
            if simplified and key == "attachments":
                continue
            if isinstance(nested, list | Mapping):
                transformed[key], nested_indexed = self._walk(nested)
                indexed = indexed or nested_indexed
        return transformed, indexed
