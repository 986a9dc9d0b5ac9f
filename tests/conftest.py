import json
import textwrap
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from server_logs.base import Logger
from server_components.config import ServerConfig
from server_components.server import build_services, create_app


class CaptureLogger(Logger):
    """Keeps every event in memory instead of printing it."""

    def __init__(self):
        self.records = []

    def emit(self, level, msg, data):
        self.records.append((level, msg, data))

    def events(self, level=None):
        return [msg for lvl, msg, _ in self.records if level is None or lvl == level]

    def find(self, msg):
        return [data for _, m, data in self.records if m == msg]


HEADLINES_CARD = """
from server_components.card_utils.card import WebhookResult

name = "Headlines"
description = "Top stories for a topic"
inputs = {"topic": {"type": "string"}}
client_state_support = True

async def web_hook(payload):
    return WebhookResult(
        url_params={"topic": payload.get("topic", "all")},
        state={"headlines": payload.get("headlines", [])},
    )
"""

BROKEN_CARD = """
name = "Broken"
description = "Webhook always explodes"

def web_hook(payload):
    raise RuntimeError("feed exploded")
"""

STATIC_CARD = """
name = "Static"
description = "No webhook, only data"

def get_card_data(inputs, state):
    return {"hello": inputs.get("who", "world")}, state
"""

UPSTREAM_CARD = """
name = "Upstream"
description = "Reports an upstream error"

def web_hook(payload):
    return ("upstream down", None, None)
"""

QUIET_CARD = """
name = "Quiet"
description = "Stores state without realtime updates"

def web_hook(payload):
    return (None, {"id": str(payload.get("id", ""))}, {"n": payload.get("n", 0)})
"""

OPS_CARD = """
name = "Ops Dashboard"
description = "Internal only"

def web_hook(payload):
    return (None, {}, {"ok": True})
"""


def write_pack(root: Path, pack: str, cards: dict, hidden: bool = False) -> Path:
    pack_dir = root / pack
    pack_dir.mkdir(parents=True)
    (pack_dir / "pack.json").write_text(json.dumps({
        "pack_name": pack,
        "friendly_name": pack.title(),
        "hidden": hidden,
    }))
    for card, source in cards.items():
        (pack_dir / f"{card}.py").write_text(textwrap.dedent(source))
    return pack_dir


@pytest.fixture
def capture_logger():
    return CaptureLogger()


@pytest.fixture
def cards_dir(tmp_path):
    root = tmp_path / "cards"
    write_pack(root, "news", {
        "headlines": HEADLINES_CARD,
        "broken": BROKEN_CARD,
        "static": STATIC_CARD,
        "upstream": UPSTREAM_CARD,
        "quiet": QUIET_CARD,
    })
    write_pack(root, "secret", {"ops": OPS_CARD}, hidden=True)
    return root


@pytest.fixture
def config(tmp_path, cards_dir):
    return ServerConfig(
        env="dev",
        cards_directory=str(cards_dir),
        db_path=str(tmp_path / "db" / "test.db"),
        state_backend="memory",
        analytics_backend="memory",
        card_secret="test-secret",
        base_url="http://cards.test",
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def services(config, capture_logger):
    return build_services(config, logger=capture_logger)


@pytest.fixture
def app(config, services):
    return create_app(config, services)


@pytest.fixture
def client(app):
    # one portal for the whole test so websocket sessions and requests share a loop
    with TestClient(app) as c:
        yield c
