# uvicorn - serve the card state API
# uvicorn server_components.server:app --port 4000
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import json

from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

#logging stuff
from server_logs.loggers import server_logger, state_logger, webhook_logger, analytics_logger, realtime_logger
from server_logs.endpoints import router as logs_router
from server_logs.middleware import RequestLoggingMiddleware

from server_components.config import ServerConfig, get_version
from server_components.errors import AuthError, CardSyncError, NotFoundError, ParamError, StorageError
from server_components.server_classes import AnalyticsRequest, SaveStateRequest
from server_components.card_utils.catalog import CardCatalog, paginate
from server_components.card_utils.pack import CardRegistry
from server_components.card_utils.pack_utils import load_registry
from server_components.state_sync.analytics import AnalyticsRecorder, AnalyticsStore, create_analytics_store
from server_components.state_sync.api_keys import (
    APIKeyGate,
    APIKeyIssuer,
    APIKeyStore,
    create_api_key_store,
)
from server_components.state_sync.keys import KeyDeriver
from server_components.state_sync.realtime import RealtimeSync, state_message
from server_components.state_sync.state_store import StateStore, create_state_store
from server_components.state_sync.webhook import SILENT_SUCCESS_BODY, WebhookDispatcher

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@dataclass
class Services:
    config: ServerConfig
    registry: CardRegistry
    catalog: CardCatalog
    keys: KeyDeriver
    state_store: StateStore
    key_gate: APIKeyGate
    key_issuer: APIKeyIssuer
    realtime: RealtimeSync
    analytics: AnalyticsRecorder
    webhooks: WebhookDispatcher


def build_services(
    config: ServerConfig,
    registry: Optional[CardRegistry] = None,
    state_store: Optional[StateStore] = None,
    api_key_store: Optional[APIKeyStore] = None,
    analytics_store: Optional[AnalyticsStore] = None,
    logger=None,
) -> Services:
    """Wire every component. `logger` replaces all component loggers (tests)."""
    if registry is None:
        registry = load_registry(config.cards_path, base_url=config.base_url, logger=logger or server_logger)
    if state_store is None:
        state_store = create_state_store(config.state_backend, config.db_path)
    if api_key_store is None:
        api_key_store = create_api_key_store(config.state_backend, config.db_path)
    if analytics_store is None:
        analytics_store = create_analytics_store(config.analytics_backend, config.db_path, logger or analytics_logger)

    keys = KeyDeriver(config.card_secret)
    realtime = RealtimeSync(logger=logger or realtime_logger)
    return Services(
        config=config,
        registry=registry,
        catalog=CardCatalog(registry),
        keys=keys,
        state_store=state_store,
        key_gate=APIKeyGate(api_key_store, ttl=config.api_key_ttl),
        key_issuer=APIKeyIssuer(api_key_store, ttl=config.api_key_ttl),
        realtime=realtime,
        analytics=AnalyticsRecorder(analytics_store, logger=logger or analytics_logger),
        webhooks=WebhookDispatcher(registry, keys, state_store, realtime, logger=logger or webhook_logger),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _is_form(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.startswith(FORM_CONTENT_TYPES)


async def _read_fields(request: Request) -> Dict[str, Any]:
    """Body fields from a form post or a JSON object."""
    if _is_form(request):
        form = await request.form()
        return dict(form)
    try:
        body = await request.json()
    except ValueError:
        raise ParamError()
    if not isinstance(body, dict):
        raise ParamError()
    return body


def _parse_model(model: type, fields: Dict[str, Any]) -> BaseModel:
    try:
        return model.model_validate(fields)
    except ValidationError:
        raise ParamError()


def _parse_json_field(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError:
        raise ParamError()


def _namespaced_events(pack: str, card: str, events: Any) -> List[Tuple[str, Any]]:
    """`{key, data}` items (or a single item) to `(pack.card.key, data)` pairs."""
    items = events if isinstance(events, list) else [events]
    pairs = []
    for item in items:
        if not isinstance(item, dict) or "key" not in item:
            raise ParamError()
        pairs.append((f"{pack}.{card}.{item['key']}", item.get("data")))
    return pairs


async def _require_api_key(services: Services, card_key: str, api_key: str):
    result = await services.key_gate.validate(card_key, api_key)
    if not result.valid:
        raise AuthError(result.reason)


router = APIRouter()
dev_router = APIRouter()


@router.get("/api/count")
async def count(request: Request):
    services = get_services(request)
    return {"success": True, "count": services.catalog.count()}


@router.get("/api/cards")
async def list_cards(request: Request, q: str = "", page: Optional[str] = None):
    services = get_services(request)
    results = services.catalog.cards(q)
    return paginate(results, page).model_dump()


@router.get("/api/card")
async def get_card(request: Request, pack: str = "", card: str = ""):
    services = get_services(request)
    descriptor = services.catalog.card(pack, card)
    if descriptor is None:
        raise NotFoundError("Card not found")
    return {"success": True, "card": descriptor.model_dump(by_alias=True)}


@router.post("/api/card/state/save")
async def save_state(request: Request):
    services = get_services(request)
    req = _parse_model(SaveStateRequest, await _read_fields(request))
    state = _parse_json_field(req.state)

    await _require_api_key(services, req.cardKey, req.apiKey)

    try:
        await services.state_store.set(req.cardKey, state)
    except StorageError as e:
        state_logger.error("client_state_save_failed", card_key=req.cardKey, error=e.message)
        raise

    state_logger.info("client_state_saved", card_key=req.cardKey)
    return {"success": True}


@router.post("/api/card/analytics")
async def record_analytics(request: Request):
    services = get_services(request)
    req = _parse_model(AnalyticsRequest, await _read_fields(request))
    events = _namespaced_events(req.pack, req.card, _parse_json_field(req.events))

    await _require_api_key(services, req.cardKey, req.apiKey)

    # AnalyticsError propagates to the handler as a 500
    await services.analytics.add_events(events)

    analytics_logger.info("analytics_recorded", pack=req.pack, card=req.card, count=len(events))
    return {"success": True}


@dev_router.post("/api/card/key")
async def issue_card_key(request: Request):
    """Dev harness: derive a card instance key and issue its API key.

    In production keys are issued by the card renderer, never over HTTP.
    """
    services = get_services(request)
    fields = await _read_fields(request)
    pack, card = fields.get("pack"), fields.get("card")
    if not pack or not card:
        raise ParamError()
    params = fields.get("params") or {}
    if isinstance(params, str):
        params = _parse_json_field(params)
    if not isinstance(params, dict):
        raise ParamError()

    card_key = services.keys.derive(pack, card, params)
    api_key = await services.key_issuer.issue(card_key)
    return {"success": True, "cardKey": card_key, "apiKey": api_key}


@router.post("/webhook/{pack}/{card}")
async def process_webhook(pack: str, card: str, request: Request):
    # Always 200 {} - see the silent success policy in state_sync/webhook.py
    services = get_services(request)
    try:
        if _is_form(request):
            form = await request.form()
            raw = form.get("payload")
        else:
            raw = await request.body()
        report = await services.webhooks.dispatch(pack, card, raw)
        webhook_logger.debug("webhook_processed", pack=pack, card=card, outcome=report.outcome.value)
    except Exception as e:
        webhook_logger.error("webhook_unhandled_error", pack=pack, card=card, error=str(e))

    return JSONResponse(status_code=200, content=SILENT_SUCCESS_BODY)


@router.websocket("/realtime/{card_key}")
async def realtime_channel(websocket: WebSocket, card_key: str):
    """Live card state. Sends the stored state on connect, then every push."""
    services: Services = websocket.app.state.services
    realtime = services.realtime
    await realtime.connect(card_key, websocket)

    try:
        try:
            current = await services.state_store.get(card_key)
        except StorageError as e:
            realtime_logger.warning("realtime_initial_state_failed", card_key=card_key, error=e.message)
            current = None
        await websocket.send_json(state_message(card_key, current))

        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})

    except WebSocketDisconnect:
        realtime_logger.info("realtime_ws_disconnected", card_key=card_key)

    except Exception as e:
        realtime_logger.error("realtime_ws_error", card_key=card_key, error=str(e))

    finally:
        await realtime.disconnect(card_key, websocket)


def create_app(config: Optional[ServerConfig] = None, services: Optional[Services] = None) -> FastAPI:
    config = config or ServerConfig.from_env()
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        server_logger.info(
            "server_started",
            env=config.env,
            cards=len(services.registry),
            state_backend=config.state_backend,
            analytics_backend=config.analytics_backend,
        )
        yield
        # let analytics batches that outlived their request finish
        await services.analytics.drain()
        server_logger.info("server_stopped")

    app = FastAPI(title="Card State Sync", version=get_version(), lifespan=lifespan)
    app.state.config = config
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(RequestLoggingMiddleware, logger=server_logger)

    @app.exception_handler(CardSyncError)
    async def card_sync_error_handler(request: Request, exc: CardSyncError):
        if exc.status_code >= 500:
            server_logger.error("request_error", path=request.url.path, status=exc.status_code, error=exc.message)
        else:
            server_logger.warning("request_rejected", path=request.url.path, status=exc.status_code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": True, "message": exc.message})

    app.include_router(router)
    app.include_router(logs_router)
    if config.env != "prod":
        app.include_router(dev_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.config.port)
