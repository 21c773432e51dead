"""Bounded, TTL-limited index of attachment metadata.

Tool responses show attachments by filename only; the provider's opaque
attachment id is kept here under ``(message_id, filename)`` so a later
download request can be resolved.  The index never holds more than
``capacity`` records: inserting a new key at capacity first sweeps expired
records, then evicts the oldest by insertion time.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from workspace_auth.clock import Clock, epoch_ms
from workspace_auth.core.metrics import record_attachment_evictions

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 256
DEFAULT_TTL_MS = 60 * 60 * 1000
DEFAULT_MIME_TYPE = "application/octet-stream"

AttachmentKey = tuple[str, str]


class AttachmentMetadataRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: str
    filename: str
    original_provider_id: str
    mime_type: str = DEFAULT_MIME_TYPE
    size: int = 0
    inserted_at_epoch_ms: int

    @property
    def key(self) -> AttachmentKey:
        return (self.message_id, self.filename)


class AttachmentMetadataIndex:
    """In-memory ``(message_id, filename) -> record`` map with TTL and capacity bounds."""

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Clock = epoch_ms,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._records: dict[AttachmentKey, AttachmentMetadataRecord] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    @property
    def size(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def add(self, message_id: str, attachment: Mapping[str, Any]) -> AttachmentMetadataRecord:
        """Insert or overwrite the record for ``(message_id, attachment["name"])``.

        *attachment* must carry ``id`` and ``name``; ``mimeType`` and ``size``
        are optional.
        """
        filename = attachment["name"]
        key = (message_id, filename)

        if key not in self._records and len(self._records) >= self._capacity:
            self.clean_expired()
            if len(self._records) >= self._capacity:
                self._evict_oldest()

        record = AttachmentMetadataRecord(
            message_id=message_id,
            filename=filename,
            original_provider_id=attachment["id"],
            mime_type=attachment.get("mimeType") or DEFAULT_MIME_TYPE,
            size=attachment.get("size") or 0,
            inserted_at_epoch_ms=self._clock(),
        )
        # Overwrites keep their dict slot; eviction order comes from the timestamp.
        self._records[key] = record
        return record

    def get(self, message_id: str, filename: str) -> AttachmentMetadataRecord | None:
        """Return the live record, deleting it instead if it has expired."""
        key = (message_id, filename)
        record = self._records.get(key)
        if record is None:
            return None
        if self._is_expired(record, self._clock()):
            del self._records[key]
            record_attachment_evictions("expired")
            return None
        return record

    def clean_expired(self) -> int:
        """Remove every expired record; returns how many were removed."""
        now = self._clock()
        expired = [key for key, record in self._records.items() if self._is_expired(record, now)]
        for key in expired:
            del self._records[key]
        if expired:
            record_attachment_evictions("expired", len(expired))
            logger.debug("Removed %d expired attachment records", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._records.clear()

    def _evict_oldest(self) -> None:
        by_age = sorted(self._records.values(), key=lambda record: record.inserted_at_epoch_ms)
        evicted = 0
        for record in by_age:
            if len(self._records) < self._capacity:
                break
            del self._records[record.key]
            evicted += 1
        record_attachment_evictions("capacity", evicted)
        logger.debug("Evicted %d attachment records at capacity", evicted)

    def _is_expired(self, record: AttachmentMetadataRecord, now_ms: int) -> bool:
        return now_ms - record.inserted_at_epoch_ms > self._ttl_ms
