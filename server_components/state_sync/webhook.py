"""Webhook-driven card state updates.

SILENT SUCCESS POLICY
    Webhook senders are third parties whose retry behaviour we do not control.
    Whatever happens here (unknown pack or card, malformed payload, a card
    without a webhook, a failing card callback, a failing store or push) the
    HTTP route answers ``200 {}``. Internal failures go to the webhook log and
    nowhere else. Do not turn these branches into error responses: that would
    reveal which packs exist and invite unbounded retries.

Webhook writes are trusted server-to-server calls and skip the API key gate.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from server_components.card_utils.pack import CardRegistry

from .keys import KeyDeriver
from .realtime import RealtimeSync
from .state_store import StateStore

SILENT_SUCCESS_BODY: dict = {}


class WebhookOutcome(str, Enum):
    CARD_NOT_FOUND = "card_not_found"
    NO_WEBHOOK = "no_webhook"
    CALLBACK_FAILED = "callback_failed"
    NO_STATE = "no_state"
    STATE_UPDATED = "state_updated"


@dataclass
class WebhookReport:
    """Internal record of one dispatch. Never sent to the webhook caller."""
    outcome: WebhookOutcome
    card_key: Optional[str] = None
    persisted: Optional[bool] = None
    pushed: Optional[bool] = None


def parse_payload(raw: Any, logger=None) -> Any:
    """JSON-decode a webhook body. Empty or malformed bodies become {}."""
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            if logger:
                logger.warning("webhook_payload_not_utf8", error=str(e))
            return {}
    if not isinstance(raw, str):
        return raw
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        if logger:
            logger.warning("webhook_payload_invalid_json", error=str(e))
        return {}


def unwrap_payload(payload: Any, logger=None) -> Any:
    """A JSON body of the form ``{"payload": "<json>"}`` carries the real payload."""
    if isinstance(payload, dict) and list(payload) == ["payload"] and isinstance(payload["payload"], str):
        return parse_payload(payload["payload"], logger)
    return payload


class WebhookDispatcher:
    def __init__(
        self,
        registry: CardRegistry,
        keys: KeyDeriver,
        state_store: StateStore,
        realtime: RealtimeSync,
        logger=None,
    ):
        self.registry = registry
        self.keys = keys
        self.state_store = state_store
        self.realtime = realtime
        self.logger = logger

    def _log(self, level: str, msg: str, **data):
        if self.logger:
            getattr(self.logger, level)(msg, **data)

    async def _persist(self, pack: str, card: str, card_key: str, state: Any) -> bool:
        try:
            await self.state_store.set(card_key, state)
        except Exception as e:
            self._log("error", "webhook_state_save_failed", pack=pack, card=card, card_key=card_key, error=str(e))
            return False
        return True

    async def _push(self, pack: str, card: str, card_key: str, state: Any) -> bool:
        try:
            delivered = await self.realtime.push(card_key, state)
        except Exception as e:
            self._log("error", "webhook_realtime_push_failed", pack=pack, card=card, card_key=card_key, error=str(e))
            return False
        self._log("debug", "webhook_realtime_pushed", card_key=card_key, delivered=delivered)
        return True

    async def dispatch(self, pack: str, card: str, raw_payload: Any) -> WebhookReport:
        module = self.registry.resolve(pack, card)
        if module is None:
            self._log("info", "webhook_card_not_found", pack=pack, card=card)
            return WebhookReport(WebhookOutcome.CARD_NOT_FOUND)

        payload = unwrap_payload(parse_payload(raw_payload, self.logger), self.logger)

        if not module.has_webhook:
            self._log("info", "webhook_not_supported", pack=pack, card=card)
            return WebhookReport(WebhookOutcome.NO_WEBHOOK)

        try:
            result = await module.invoke_webhook(payload)
        except Exception as e:
            self._log("error", "webhook_callback_raised", pack=pack, card=card,
                      error=str(e), error_type=type(e).__name__)
            return WebhookReport(WebhookOutcome.CALLBACK_FAILED)

        if result.error:
            self._log("error", "webhook_callback_error", pack=pack, card=card, error=result.error)
            return WebhookReport(WebhookOutcome.CALLBACK_FAILED)

        if result.state is None:
            return WebhookReport(WebhookOutcome.NO_STATE)

        card_key = self.keys.derive(pack, card, result.url_params)

        # persist and push are independent; neither waits on nor undoes the other
        legs = [self._persist(pack, card, card_key, result.state)]
        if module.client_state_support:
            legs.append(self._push(pack, card, card_key, result.state))
        outcomes = await asyncio.gather(*legs)

        report = WebhookReport(
            WebhookOutcome.STATE_UPDATED,
            card_key=card_key,
            persisted=outcomes[0],
            pushed=outcomes[1] if len(outcomes) > 1 else None,
        )
        self._log("info", "webhook_state_updated", pack=pack, card=card, card_key=card_key,
                  persisted=report.persisted, pushed=report.pushed)
        return report
