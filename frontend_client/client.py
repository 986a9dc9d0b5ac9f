import requests
import json
import threading
import time
import websocket


class CardSyncClient:
    """HTTP + WebSocket client for the card state API.

    Mirrors what a card's browser code does: save its state with the API key
    it was issued, record analytics events, and listen for realtime state.
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self._ws_app = None
        self._ws_thread = None
        self.is_subscribed = False

    def _get(self, path: str, params: dict = None):
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        return response.json()

    def _post(self, path: str, payload: dict):
        response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        return response.json()

    def count(self):
        return self._get("/api/count")

    def cards(self, q: str = "", page: int = 1):
        return self._get("/api/cards", params={"q": q, "page": page})

    def card(self, pack: str, card: str):
        return self._get("/api/card", params={"pack": pack, "card": card})

    def save_state(self, card_key: str, api_key: str, state):
        """Replace the stored state of a card instance."""
        payload = {
            "apiKey": api_key,
            "cardKey": card_key,
            "state": json.dumps(state),
        }
        return self._post("/api/card/state/save", payload)

    def record_events(self, card_key: str, api_key: str, pack: str, card: str, events):
        """Record one `{key, data}` event or a list of them."""
        payload = {
            "apiKey": api_key,
            "cardKey": card_key,
            "pack": pack,
            "card": card,
            "events": json.dumps(events),
        }
        return self._post("/api/card/analytics", payload)

    def send_webhook(self, pack: str, card: str, payload):
        response = self.session.post(
            f"{self.base_url}/webhook/{pack}/{card}",
            data=json.dumps(payload),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        return response.status_code

    def _to_ws_url(self, http_url: str) -> str:
        if http_url.startswith('https://'):
            return 'wss://' + http_url[len('https://'):]
        if http_url.startswith('http://'):
            return 'ws://' + http_url[len('http://'):]
        return http_url

    def subscribe(self, card_key: str, on_state, on_error=None, timeout: float = 5.0):
        """Listen for state pushes of one card instance.

        - `on_state`: callable receiving the decoded state each time it changes
          (the stored state is delivered first, None if there is none yet).
        - `timeout`: seconds to wait for the connection to open.

        Runs the websocket in a background thread until `unsubscribe()`.
        """
        ws_url = self._to_ws_url(f"{self.base_url}/realtime/{card_key}")

        def _on_open(ws):
            self.is_subscribed = True

        def _on_message(ws, message):
            try:
                data = json.loads(message)
            except ValueError:
                return
            if data.get("type") == "state":
                on_state(data.get("state"))

        def _on_close(ws, close_status_code, close_msg):
            self.is_subscribed = False

        def _on_error(ws, error):
            if on_error:
                on_error(error)

        self._ws_app = websocket.WebSocketApp(
            ws_url,
            on_open=_on_open,
            on_message=_on_message,
            on_close=_on_close,
            on_error=_on_error,
        )

        # run_forever blocks; run in background thread
        self._ws_thread = threading.Thread(target=self._ws_app.run_forever, daemon=True)
        self._ws_thread.start()

        start = time.time()
        while not self.is_subscribed and (time.time() - start) < timeout:
            time.sleep(0.05)

        return {'connected': self.is_subscribed}

    def ping(self):
        if not self.is_subscribed or not self._ws_app:
            return {'error': 'not_connected'}
        self._ws_app.send(json.dumps({"type": "ping"}))
        return {'sent': True}

    def unsubscribe(self):
        if self._ws_app:
            self._ws_app.close()
        if self._ws_thread:
            self._ws_thread.join(timeout=2.0)
        self._ws_app = None
        self._ws_thread = None
        self.is_subscribed = False

    def close(self):
        self.unsubscribe()
        self.session.close()
