"""Best-effort realtime push of card state to WebSocket subscribers."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Set

from fastapi import WebSocket


def state_message(card_key: str, state: Any) -> dict:
    return {"type": "state", "cardKey": card_key, "state": state}


class RealtimeSync:
    """Subscribers grouped by card instance key.

    Delivery is not guaranteed: a subscriber that fails to receive a push is
    dropped and the failure is only logged.
    """

    def __init__(self, logger=None):
        self.logger = logger
        self.subscribers: Dict[str, Set[WebSocket]] = {}

    async def connect(self, card_key: str, websocket: WebSocket):
        await websocket.accept()
        self.subscribers.setdefault(card_key, set()).add(websocket)

        if self.logger:
            self.logger.info(
                "realtime_subscriber_connected",
                card_key=card_key,
                total_subscribers=len(self.subscribers[card_key])
            )

    async def disconnect(self, card_key: str, websocket: WebSocket):
        subscribers = self.subscribers.get(card_key)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self.subscribers[card_key]

        if self.logger:
            self.logger.info(
                "realtime_subscriber_disconnected",
                card_key=card_key,
                total_subscribers=len(subscribers)
            )

    def subscriber_count(self, card_key: str) -> int:
        return len(self.subscribers.get(card_key, ()))

    async def push(self, card_key: str, state: Any) -> int:
        """Send `state` to every subscriber of `card_key`; returns how many got it."""
        subscribers = list(self.subscribers.get(card_key, ()))
        if not subscribers:
            return 0

        message = state_message(card_key, state)
        results = await asyncio.gather(
            *(ws.send_json(message) for ws in subscribers),
            return_exceptions=True
        )

        delivered = 0
        for websocket, result in zip(subscribers, results):
            if isinstance(result, Exception):
                if self.logger:
                    self.logger.warning("realtime_push_failed", card_key=card_key, error=str(result))
                await self.disconnect(card_key, websocket)
            else:
                delivered += 1
        return delivered
