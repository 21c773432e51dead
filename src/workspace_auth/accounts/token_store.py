"""File-backed credential storage, one JSON document per account.

Layout::

    <credentials_path>/<sanitized-email>.token.json

where every character of the email outside ``[A-Za-z0-9]`` is replaced by
``-``. Storage is pure: no expiry policy lives here.

Blocking file I/O runs in a worker thread via ``asyncio.to_thread`` so only
the calling task suspends.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path

from pydantic import ValidationError

from workspace_auth.accounts.models import CredentialRecord
from workspace_auth.errors import TokenPersistenceError

logger = logging.getLogger(__name__)

_UNSAFE_EMAIL_CHARS = re.compile(r"[^a-zA-Z0-9]")
TOKEN_FILE_SUFFIX = ".token.json"


def sanitize_email(email: str) -> str:
    return _UNSAFE_EMAIL_CHARS.sub("-", email)


class TokenStore:
    """Persists and retrieves one :class:`CredentialRecord` per account email."""

    def __init__(self, credentials_path: Path | str) -> None:
        self._credentials_path = Path(credentials_path)

    @property
    def credentials_path(self) -> Path:
        return self._credentials_path

    def token_path(self, email: str) -> Path:
        return self._credentials_path / f"{sanitize_email(email)}{TOKEN_FILE_SUFFIX}"

    async def save(self, email: str, record: CredentialRecord) -> None:
        """Write *record* for *email*, replacing any previous file.

        Raises
        ------
        TokenPersistenceError
            If the directory or file cannot be written.
        """
        logger.info("Saving token for account: %s", email)
        path = self.token_path(email)
        payload = record.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write_atomic, path, payload)
        except OSError as exc:
            raise TokenPersistenceError(
                "Failed to save token",
                code="TOKEN_SAVE_ERROR",
                resolution="Please ensure the credentials directory is writable",
            ) from exc
        logger.debug("Token saved at: %s", path)

    async def load(self, email: str) -> CredentialRecord | None:
        """Return the stored record for *email*, or ``None`` if none exists.

        Raises
        ------
        TokenPersistenceError
            If the file exists but cannot be read or parsed.
        """
        logger.debug("Loading token for account: %s", email)
        path = self.token_path(email)
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TokenPersistenceError(
                "Failed to load token",
                code="TOKEN_LOAD_ERROR",
                resolution="Please ensure the token file exists and is readable",
            ) from exc

        try:
            return CredentialRecord.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise TokenPersistenceError(
                "Stored token file is malformed",
                code="TOKEN_LOAD_ERROR",
                resolution="Remove the token file and re-authenticate the account",
            ) from exc

    async def delete(self, email: str) -> bool:
        """Delete the stored record for *email*.

        Returns ``True`` if a file was removed, ``False`` if none existed.
        """
        logger.info("Deleting token for account: %s", email)
        path = self.token_path(email)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise TokenPersistenceError(
                "Failed to delete token",
                code="TOKEN_DELETE_ERROR",
                resolution="Please ensure you have permission to delete the token file",
            ) from exc
        return True

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.tmp")
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
