"""Card API keys.

An API key is issued out-of-band for one card instance key (the renderer
issues it when it hands a card to a browser) and is later required for
client state writes and analytics submissions. The gate only consumes
records; it never creates them.
"""

from __future__ import annotations

import asyncio
import hmac
import secrets
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from server_components.errors import StorageError
from server_components.server_classes import APIKeyRecord
from server_components.utils import db_access

INVALID_KEY_MESSAGE = "Invalid card API key"


def generate_key() -> str:
    return secrets.token_urlsafe(24)


class APIKeyStore(Protocol):
    async def load(self, card_key: str) -> Optional[APIKeyRecord]: ...

    async def save(self, record: APIKeyRecord) -> None: ...


class InMemoryAPIKeyStore:
    def __init__(self) -> None:
        self._records: Dict[str, APIKeyRecord] = {}

    async def load(self, card_key: str) -> Optional[APIKeyRecord]:
        return self._records.get(card_key)

    async def save(self, record: APIKeyRecord) -> None:
        self._records[record.card_key] = record


class SQLiteAPIKeyStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def load(self, card_key: str) -> Optional[APIKeyRecord]:
        try:
            await asyncio.to_thread(db_access.init_db, self.db_path)
            row = await asyncio.to_thread(db_access.load_api_key, self.db_path, card_key)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not load API key: {exc}") from exc
        return APIKeyRecord(**row) if row else None

    async def save(self, record: APIKeyRecord) -> None:
        try:
            await asyncio.to_thread(db_access.init_db, self.db_path)
            await asyncio.to_thread(
                db_access.save_api_key, self.db_path, record.card_key, record.api_key, record.issued_at
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Could not save API key: {exc}") from exc


@dataclass(frozen=True)
class KeyValidation:
    valid: bool
    reason: Optional[str] = None


def is_live(record: APIKeyRecord, ttl: float, now: float) -> bool:
    if ttl <= 0:
        return True
    return now - record.issued_at < ttl


class APIKeyGate:
    """Validates a caller-supplied API key against the record for a card key.

    Fail-closed: a missing or expired record is invalid whatever was supplied.
    Rejection reasons never contain the expected key.
    """

    def __init__(
        self,
        store: APIKeyStore,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    async def validate(self, card_key: str, supplied: Optional[str]) -> KeyValidation:
        try:
            record = await self.store.load(card_key)
        except Exception as exc:
            detail = getattr(exc, "message", None) or str(exc)
            return KeyValidation(False, f"{INVALID_KEY_MESSAGE} - {detail}")

        if record is None or not is_live(record, self.ttl, self._clock()):
            return KeyValidation(False, INVALID_KEY_MESSAGE)
        if not supplied or not hmac.compare_digest(record.api_key.encode("utf-8"), supplied.encode("utf-8")):
            return KeyValidation(False, INVALID_KEY_MESSAGE)
        return KeyValidation(True)


class APIKeyIssuer:
    """Out-of-band issuance, used by whatever hands a card to a browser."""

    def __init__(
        self,
        store: APIKeyStore,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    async def issue(self, card_key: str) -> str:
        """The live key for `card_key`, or a freshly stored one."""
        now = self._clock()
        record = await self.store.load(card_key)
        if record is not None and is_live(record, self.ttl, now):
            return record.api_key
        record = APIKeyRecord(card_key=card_key, api_key=generate_key(), issued_at=now)
        await self.store.save(record)
        return record.api_key


def create_api_key_store(backend: str, db_path: str) -> APIKeyStore:
    if backend == "memory":
        return InMemoryAPIKeyStore()
    if backend == "sqlite":
        return SQLiteAPIKeyStore(db_path)
    raise ValueError(f"unknown API key backend: {backend!r}")
