"""``accounts.json`` registry of the Google accounts the adapter may act for.

File shape::

    {"accounts": [{"email": "...", "category": "...", "description": "..."}]}

The file is created empty on first load.  Authentication status is never
persisted; it is computed per request by :class:`AccountManager`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path

from pydantic import BaseModel, ValidationError

from workspace_auth.accounts.models import Account
from workspace_auth.errors import AccountError

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


class _AccountsFile(BaseModel):
    accounts: list[Account] = []


class AccountRegistry:
    """Async, file-backed account registry.

    Mutations are serialized with an :class:`asyncio.Lock` and written back
    atomically.
    """

    def __init__(self, accounts_path: Path | str) -> None:
        self._path = Path(accounts_path)
        self._accounts: dict[str, Account] | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> None:
        """(Re)read the accounts file, creating an empty one if missing.

        Raises
        ------
        AccountError
            ``ACCOUNTS_READ_ERROR`` / ``ACCOUNTS_PARSE_ERROR``.
        """
        async with self._lock:
            await self._load_locked()

    async def list_all(self) -> list[Account]:
        accounts = await self._ensure_loaded()
        return list(accounts.values())

    async def get(self, email: str) -> Account | None:
        accounts = await self._ensure_loaded()
        return accounts.get(email)

    async def add(self, email: str, category: str, description: str) -> Account:
        """Add a new account.

        Raises
        ------
        AccountError
            ``INVALID_EMAIL`` or ``DUPLICATE_ACCOUNT``.
        """
        logger.info("Adding new account: %s", email)
        if not is_valid_email(email):
            raise AccountError(
                "Invalid email format",
                code="INVALID_EMAIL",
                resolution="Please provide a valid email address",
            )
        await self._ensure_loaded()
        async with self._lock:
            assert self._accounts is not None
            if email in self._accounts:
                raise AccountError(
                    "Account already exists",
                    code="DUPLICATE_ACCOUNT",
                    resolution="Use update to modify existing accounts",
                )
            account = Account(email=email, category=category, description=description)
            self._accounts[email] = account
            await self._save_locked()
        return account

    async def update(
        self,
        email: str,
        *,
        category: str | None = None,
        description: str | None = None,
    ) -> Account:
        await self._ensure_loaded()
        async with self._lock:
            assert self._accounts is not None
            account = self._accounts.get(email)
            if account is None:
                raise AccountError(
                    "Account not found",
                    code="ACCOUNT_NOT_FOUND",
                    resolution="Please ensure the account exists before updating",
                )
            updates = {
                key: value
                for key, value in (("category", category), ("description", description))
                if value is not None
            }
            updated = account.model_copy(update=updates)
            self._accounts[email] = updated
            await self._save_locked()
        return updated

    async def remove(self, email: str) -> None:
        logger.info("Removing account: %s", email)
        await self._ensure_loaded()
        async with self._lock:
            assert self._accounts is not None
            if email not in self._accounts:
                raise AccountError(
                    "Account not found",
                    code="ACCOUNT_NOT_FOUND",
                    resolution="Cannot remove non-existent account",
                )
            del self._accounts[email]
            await self._save_locked()

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> dict[str, Account]:
        if self._accounts is None:
            async with self._lock:
                if self._accounts is None:
                    await self._load_locked()
        assert self._accounts is not None
        return self._accounts

    async def _load_locked(self) -> None:
        logger.debug("Loading accounts from %s", self._path)
        try:
            raw = await asyncio.to_thread(self._path.read_bytes)
        except FileNotFoundError:
            logger.info("Creating new accounts file at %s", self._path)
            self._accounts = {}
            await self._save_locked()
            return
        except OSError as exc:
            raise AccountError(
                "Failed to read accounts configuration",
                code="ACCOUNTS_READ_ERROR",
                resolution="Please ensure the accounts file is readable",
            ) from exc

        try:
            parsed = _AccountsFile.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise AccountError(
                "Failed to parse accounts configuration",
                code="ACCOUNTS_PARSE_ERROR",
                resolution="Please ensure the accounts file contains valid JSON",
            ) from exc
        self._accounts = {account.email: account for account in parsed.accounts}

    async def _save_locked(self) -> None:
        assert self._accounts is not None
        payload = json.dumps(
            {
                "accounts": [
                    account.model_dump(exclude={"auth_status"})
                    for account in self._accounts.values()
                ]
            },
            indent=2,
        )
        try:
            await asyncio.to_thread(self._write_atomic, self._path, payload)
        except OSError as exc:
            raise AccountError(
                "Failed to save accounts configuration",
                code="ACCOUNTS_SAVE_ERROR",
                resolution="Please ensure accounts.json is writable",
            ) from exc

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.tmp")
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
