"""Fire-and-forget analytics ingestion.

Event keys arrive already namespaced (``pack.card.item-key``) and are treated
as opaque strings. Events have no relationship to card state.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, List, Protocol, Set, Tuple

from server_components.errors import AnalyticsError
from server_components.server_classes import AnalyticsEvent
from server_components.utils import db_access


class AnalyticsStore(Protocol):
    async def record(self, event: AnalyticsEvent) -> None: ...


class InMemoryAnalyticsStore:
    def __init__(self) -> None:
        self.events: List[AnalyticsEvent] = []

    async def record(self, event: AnalyticsEvent) -> None:
        self.events.append(event)

    def list(self, prefix: str = "") -> List[AnalyticsEvent]:
        return [e for e in self.events if e.event_key.startswith(prefix)]


class SQLiteAnalyticsStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def record(self, event: AnalyticsEvent) -> None:
        await asyncio.to_thread(db_access.init_db, self.db_path)
        await asyncio.to_thread(
            db_access.insert_analytics_event,
            self.db_path,
            event.event_key,
            event.data,
            event.timestamp.timestamp(),
        )

    async def list(self, prefix: str = "", limit: int = 200) -> List[dict]:
        await asyncio.to_thread(db_access.init_db, self.db_path)
        return await asyncio.to_thread(db_access.list_analytics_events, self.db_path, prefix, limit)


class LoggingAnalyticsStore:
    """Stores nothing; every event becomes a log line."""

    def __init__(self, logger) -> None:
        self.logger = logger

    async def record(self, event: AnalyticsEvent) -> None:
        self.logger.info("analytics_event", event_key=event.event_key, data=event.data)


class AnalyticsRecorder:
    def __init__(self, store: AnalyticsStore, logger=None) -> None:
        self.store = store
        self.logger = logger
        self._inflight: Set[asyncio.Task] = set()

    async def add_event(self, event_key: str, data: Any = None) -> None:
        event = AnalyticsEvent(event_key=event_key, data=data)
        try:
            await self.store.record(event)
        except Exception as exc:
            if self.logger:
                self.logger.error("analytics_event_failed", event_key=event_key, error=str(exc))
            raise AnalyticsError(f"Could not record event {event_key}: {exc}") from exc

    async def add_events(self, events: Iterable[Tuple[str, Any]]) -> None:
        """Record a batch, one concurrent task per event.

        Returns once every event is recorded, or raises the first failure to
        complete. Submissions still running at that point are neither cancelled
        nor rolled back; they finish in the background (see `drain`).
        """
        tasks = [asyncio.create_task(self.add_event(key, data)) for key, data in events]
        if not tasks:
            return
        for task in tasks:
            self._inflight.add(task)
            task.add_done_callback(self._settled)

        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in tasks:
                if task in done and task.exception() is not None:
                    raise task.exception()

    def _settled(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled():
            task.exception()  # failures were already logged in add_event

    async def drain(self) -> None:
        """Wait for batch submissions left running after a failed `add_events`."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    @property
    def inflight(self) -> int:
        return len(self._inflight)


def create_analytics_store(backend: str, db_path: str, logger=None) -> AnalyticsStore:
    if backend == "memory":
        return InMemoryAnalyticsStore()
    if backend == "sqlite":
        return SQLiteAnalyticsStore(db_path)
    if backend == "log":
        return LoggingAnalyticsStore(logger)
    raise ValueError(f"unknown analytics backend: {backend!r}")
