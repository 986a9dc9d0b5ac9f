"""Card state persistence.

State is an opaque JSON value. Every ``set`` replaces the stored value
wholesale; concurrent writers on one key race and the last completed write
wins. Backend failures surface as StorageError, without retry.
"""

from __future__ import annotations

import asyncio
import copy
import sqlite3
from typing import Any, Dict, Optional, Protocol

from server_components.errors import StorageError
from server_components.utils import db_access


class StateStore(Protocol):
    async def get(self, card_key: str) -> Optional[Any]: ...

    async def set(self, card_key: str, state: Any) -> None: ...


class InMemoryStateStore:
    def __init__(self) -> None:
        self._items: Dict[str, Any] = {}

    async def get(self, card_key: str) -> Optional[Any]:
        value = self._items.get(card_key)
        return copy.deepcopy(value)

    async def set(self, card_key: str, state: Any) -> None:
        self._items[card_key] = copy.deepcopy(state)


class SQLiteStateStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def get(self, card_key: str) -> Optional[Any]:
        try:
            await asyncio.to_thread(db_access.init_db, self.db_path)
            return await asyncio.to_thread(db_access.load_card_state, self.db_path, card_key)
        except (sqlite3.Error, ValueError) as exc:
            raise StorageError(f"Could not load card state: {exc}") from exc

    async def set(self, card_key: str, state: Any) -> None:
        try:
            await asyncio.to_thread(db_access.init_db, self.db_path)
            await asyncio.to_thread(db_access.save_card_state, self.db_path, card_key, state)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise StorageError(f"Could not save card state: {exc}") from exc


def create_state_store(backend: str, db_path: str) -> StateStore:
    if backend == "memory":
        return InMemoryStateStore()
    if backend == "sqlite":
        return SQLiteStateStore(db_path)
    raise ValueError(f"unknown state backend: {backend!r}")
