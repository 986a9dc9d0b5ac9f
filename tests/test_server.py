import asyncio
import dataclasses
import json

import pytest
from fastapi.testclient import TestClient

from server_components.errors import StorageError
from server_components.server import build_services, create_app
from server_components.state_sync.analytics import InMemoryAnalyticsStore
from server_components.state_sync.state_store import InMemoryStateStore


class FailingStateStore(InMemoryStateStore):
    async def set(self, card_key, state):
        raise StorageError("Could not save card state: disk I/O error")


class FailingAnalyticsStore(InMemoryAnalyticsStore):
    async def record(self, event):
        if event.event_key.endswith(".bad"):
            raise RuntimeError("disk full")
        await super().record(event)


def issue_key(client, pack="news", card="headlines", params=None):
    response = client.post("/api/card/key", json={"pack": pack, "card": card, "params": params or {}})
    assert response.status_code == 200
    body = response.json()
    return body["cardKey"], body["apiKey"]


def stored_state(services, card_key):
    return asyncio.run(services.state_store.get(card_key))


# catalog

def test_count(client):
    assert client.get("/api/count").json() == {"success": True, "count": 5}


def test_cards_envelope(client):
    body = client.get("/api/cards").json()
    assert body["success"] is True
    assert body["total"] == 5
    assert body["page"] == 1
    assert body["pageCount"] == 1
    assert body["perPage"] == 20
    assert body["version"]
    assert [c["card"] for c in body["cards"]] == ["broken", "headlines", "quiet", "static", "upstream"]


def test_cards_filter_and_page(client):
    assert [c["card"] for c in client.get("/api/cards", params={"q": "HEADLINES"}).json()["cards"]] == ["headlines"]

    empty = client.get("/api/cards", params={"q": "nothing-like-this"}).json()
    assert empty["success"] is True
    assert empty["pageCount"] == 0
    assert empty["cards"] == []

    assert client.get("/api/cards", params={"page": "2"}).json()["cards"] == []
    assert client.get("/api/cards", params={"page": "junk"}).json()["page"] == 1


def test_card_lookup(client):
    body = client.get("/api/card", params={"pack": "news", "card": "headlines"}).json()
    assert body["success"] is True
    assert body["card"]["name"] == "Headlines"
    assert body["card"]["baseUrl"] == "http://cards.test/news/headlines"


@pytest.mark.parametrize("params", [
    {"pack": "news", "card": "nope"},
    {"pack": "secret", "card": "ops"},
    {},
])
def test_card_not_found(client, params):
    response = client.get("/api/card", params=params)
    assert response.status_code == 404
    assert response.json() == {"error": True, "message": "Card not found"}


# client state

def test_save_state(client, services):
    card_key, api_key = issue_key(client, params={"topic": "sport"})
    response = client.post("/api/card/state/save", json={
        "apiKey": api_key, "cardKey": card_key, "state": json.dumps({"seen": [1, 2]}),
    })
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert stored_state(services, card_key) == {"seen": [1, 2]}
    assert card_key == services.keys.derive("news", "headlines", {"topic": "sport"})


def test_save_state_as_form(client, services):
    card_key, api_key = issue_key(client)
    response = client.post("/api/card/state/save", data={
        "apiKey": api_key, "cardKey": card_key, "state": '"plain string"',
    })
    assert response.status_code == 200
    assert stored_state(services, card_key) == "plain string"


def test_save_state_overwrites(client, services):
    card_key, api_key = issue_key(client)
    for state in ({"a": 1}, {"b": 2}):
        client.post("/api/card/state/save", json={"apiKey": api_key, "cardKey": card_key, "state": json.dumps(state)})
    assert stored_state(services, card_key) == {"b": 2}


def test_save_state_wrong_key(client, services):
    card_key, _ = issue_key(client)
    response = client.post("/api/card/state/save", json={
        "apiKey": "guess", "cardKey": card_key, "state": "{}",
    })
    assert response.status_code == 400
    assert response.json() == {"error": True, "message": "Invalid card API key"}
    assert stored_state(services, card_key) is None


def test_save_state_without_issued_key(client):
    response = client.post("/api/card/state/save", json={
        "apiKey": "anything", "cardKey": "never-issued", "state": "{}",
    })
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid card API key"


@pytest.mark.parametrize("fields", [
    {"cardKey": "k", "state": "{}"},
    {"apiKey": "a", "state": "{}"},
    {"apiKey": "a", "cardKey": "k"},
    {"apiKey": "a", "cardKey": "k", "state": "{not json"},
])
def test_save_state_bad_params(client, fields):
    response = client.post("/api/card/state/save", json=fields)
    assert response.status_code == 400
    assert response.json() == {"error": True, "message": "Invalid parameters"}


def test_save_state_body_not_json(client):
    response = client.post("/api/card/state/save", content=b"[1, 2", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_save_state_backend_failure(config, capture_logger):
    services = build_services(config, state_store=FailingStateStore(), logger=capture_logger)
    with TestClient(create_app(config, services)) as client:
        card_key, api_key = issue_key(client)
        response = client.post("/api/card/state/save", json={
            "apiKey": api_key, "cardKey": card_key, "state": "{}",
        })
    assert response.status_code == 500
    assert response.json() == {"error": True, "message": "Could not save card state: disk I/O error"}


# analytics

def test_record_single_event(client, services):
    card_key, api_key = issue_key(client)
    response = client.post("/api/card/analytics", json={
        "apiKey": api_key, "cardKey": card_key, "pack": "news", "card": "headlines",
        "events": json.dumps({"key": "click", "data": {"story": 1}}),
    })
    assert response.status_code == 200
    assert response.json() == {"success": True}
    [event] = services.analytics.store.events
    assert event.event_key == "news.headlines.click"
    assert event.data == {"story": 1}


def test_record_event_batch(client, services):
    card_key, api_key = issue_key(client)
    events = [{"key": "view"}, {"key": "click", "data": 2}]
    response = client.post("/api/card/analytics", data={
        "apiKey": api_key, "cardKey": card_key, "pack": "news", "card": "headlines",
        "events": json.dumps(events),
    })
    assert response.status_code == 200
    assert sorted(e.event_key for e in services.analytics.store.events) == [
        "news.headlines.click", "news.headlines.view",
    ]


def test_record_events_wrong_key(client, services):
    card_key, _ = issue_key(client)
    response = client.post("/api/card/analytics", json={
        "apiKey": "guess", "cardKey": card_key, "pack": "news", "card": "headlines",
        "events": json.dumps({"key": "click"}),
    })
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid card API key"
    assert services.analytics.store.events == []


@pytest.mark.parametrize("events", ["{not json", json.dumps([{"data": 1}]), json.dumps("click")])
def test_record_events_bad_params(client, events):
    card_key, api_key = issue_key(client)
    response = client.post("/api/card/analytics", json={
        "apiKey": api_key, "cardKey": card_key, "pack": "news", "card": "headlines", "events": events,
    })
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid parameters"


def test_record_events_partial_failure(config, capture_logger):
    store = FailingAnalyticsStore()
    services = build_services(config, analytics_store=store, logger=capture_logger)
    with TestClient(create_app(config, services)) as client:
        card_key, api_key = issue_key(client)
        response = client.post("/api/card/analytics", json={
            "apiKey": api_key, "cardKey": card_key, "pack": "news", "card": "headlines",
            "events": json.dumps([{"key": "ok"}, {"key": "bad"}]),
        })
    assert response.status_code == 500
    assert response.json()["error"] is True
    assert "news.headlines.bad" in response.json()["message"]
    # leaving the client context drains the remaining submissions
    assert [e.event_key for e in store.events] == ["news.headlines.ok"]


# webhooks

@pytest.mark.parametrize("path", ["/webhook/nope/headlines", "/webhook/news/nope", "/webhook/news/static"])
def test_webhook_always_answers_empty_object(client, services, path):
    """Webhook senders must not learn which packs exist or that anything went
    wrong. If this starts returning 404 or 500 the silent success policy in
    state_sync/webhook.py has been broken.
    """
    response = client.post(path, json={"topic": "x"})
    assert response.status_code == 200
    assert response.json() == {}
    assert stored_state(services, services.keys.derive("news", "headlines", {"topic": "x"})) is None


def test_webhook_callback_failure_is_silent(client, capture_logger):
    response = client.post("/webhook/news/broken", json={})
    assert response.status_code == 200
    assert response.json() == {}
    assert capture_logger.find("webhook_callback_raised")[0]["error"] == "feed exploded"


def test_webhook_malformed_body(client):
    response = client.post("/webhook/news/headlines", content=b"{nope", headers={"Content-Type": "application/json"})
    assert response.status_code == 200
    assert response.json() == {}


def test_webhook_updates_state(client, services):
    response = client.post("/webhook/news/headlines", json={"topic": "sport", "headlines": ["goal"]})
    assert response.json() == {}
    card_key = services.keys.derive("news", "headlines", {"topic": "sport"})
    assert stored_state(services, card_key) == {"headlines": ["goal"]}


def test_webhook_form_payload_field(client, services):
    payload = json.dumps({"topic": "tech", "headlines": ["chip"]})
    response = client.post("/webhook/news/headlines", data={"payload": payload})
    assert response.status_code == 200
    card_key = services.keys.derive("news", "headlines", {"topic": "tech"})
    assert stored_state(services, card_key) == {"headlines": ["chip"]}


def test_webhook_json_payload_field(client, services):
    payload = json.dumps({"topic": "tech", "headlines": ["chip"]})
    response = client.post("/webhook/news/headlines", json={"payload": payload})
    assert response.status_code == 200
    assert response.json() == {}
    card_key = services.keys.derive("news", "headlines", {"topic": "tech"})
    assert stored_state(services, card_key) == {"headlines": ["chip"]}


def test_webhook_storage_failure_is_silent(config, capture_logger):
    services = build_services(config, state_store=FailingStateStore(), logger=capture_logger)
    with TestClient(create_app(config, services)) as client:
        response = client.post("/webhook/news/headlines", json={"topic": "x"})
    assert response.status_code == 200
    assert response.json() == {}
    assert capture_logger.find("webhook_state_save_failed")


# realtime

def test_realtime_receives_current_state_then_pushes(client, services):
    card_key = services.keys.derive("news", "headlines", {"topic": "sport"})
    client.post("/webhook/news/headlines", json={"topic": "sport", "headlines": ["first"]})

    with client.websocket_connect(f"/realtime/{card_key}") as ws:
        assert ws.receive_json() == {"type": "state", "cardKey": card_key, "state": {"headlines": ["first"]}}
        assert services.realtime.subscriber_count(card_key) == 1

        client.post("/webhook/news/headlines", json={"topic": "sport", "headlines": ["second"]})
        assert ws.receive_json()["state"] == {"headlines": ["second"]}

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_realtime_unknown_key_starts_empty(client):
    with client.websocket_connect("/realtime/unknown") as ws:
        assert ws.receive_json() == {"type": "state", "cardKey": "unknown", "state": None}


def test_realtime_ignores_other_instances(client, services):
    card_key = services.keys.derive("news", "headlines", {"topic": "sport"})
    with client.websocket_connect(f"/realtime/{card_key}") as ws:
        ws.receive_json()
        client.post("/webhook/news/headlines", json={"topic": "weather", "headlines": ["rain"]})
        ws.send_json({"type": "ping"})
        # nothing was queued for this instance before the pong
        assert ws.receive_json() == {"type": "pong"}


# plumbing

def test_key_route_is_dev_only(config, services):
    prod = create_app(dataclasses.replace(config, env="prod"), services)
    with TestClient(prod) as client:
        assert client.post("/api/card/key", json={"pack": "news", "card": "headlines"}).status_code == 404


def test_key_route_requires_pack_and_card(client):
    assert client.post("/api/card/key", json={"pack": "news"}).status_code == 400


def test_request_id_header(client):
    assert client.get("/api/count").headers["X-Request-Id"]


def test_admin_logs_read_back(client, config):
    from server_logs.file import FileLogger

    assert client.get("/admin/logs/tail", params={"log_type": "webhook"}).json()["lines"] == []

    file_logger = FileLogger(log_type="webhook", base_path=config.log_dir)
    file_logger.error("webhook_callback_raised", pack="news")
    file_logger.info("webhook_card_not_found", pack="weather")
    tail = client.get("/admin/logs/tail", params={"log_type": "webhook"}).json()
    assert json.loads(tail["lines"][0])["event"] == "webhook_callback_raised"

    found = client.get("/admin/logs/search", params={"log_type": "webhook", "level": "error"}).json()
    assert found["count"] == 1
    by_pack = client.get("/admin/logs/search", params={"log_type": "webhook", "pack": "weather"}).json()
    assert [json.loads(line)["event"] for line in by_pack["lines"]] == ["webhook_card_not_found"]
    assert client.get("/admin/logs/search", params={"log_type": "webhook", "contains": "NEWS"}).json()["count"] == 1
    assert [log["name"] for log in client.get("/admin/logs/available").json()["logs"]] == ["webhook"]
    assert client.get("/admin/logs/raw/secrets").status_code == 400
