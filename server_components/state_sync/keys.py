"""Card instance key derivation.

A card instance is one (pack, card, query parameters) combination. Its key
addresses the stored state, the issued API key and the realtime channel, so
derivation must be a pure function of its inputs.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit


def normalize_query(params: Optional[Mapping[str, Any]]) -> str:
    """Sorted, URL-encoded query string. Empty and None values are dropped."""
    if not params:
        return ""
    items = [(str(k), str(v)) for k, v in sorted(params.items(), key=lambda kv: str(kv[0])) if v not in (None, "")]
    return urlencode(items)


def card_route(pack: str, card: str, params: Optional[Mapping[str, Any]] = None) -> str:
    route = f"/{pack}/{card}"
    query = normalize_query(params)
    return f"{route}?{query}" if query else route


class KeyDeriver:
    """Derives card instance keys as HMAC-SHA256 over the normalized card route.

    Pack and card names are case-sensitive.
    """

    def __init__(self, secret: str = "#"):
        self._secret = secret.encode("utf-8")

    def derive(self, pack: str, card: str, params: Optional[Mapping[str, Any]] = None) -> str:
        route = card_route(pack, card, params)
        return hmac.new(self._secret, route.encode("utf-8"), hashlib.sha256).hexdigest()

    def derive_from_url(self, url: str) -> str:
        """Key for a card URL such as ``/weather/today?city=Oslo``.

        Entry point for the card renderer, which only has the requested URL
        when it looks up state and issues the API key for a card instance.
        """
        parts = urlsplit(url)
        segments = [s for s in parts.path.split("/") if s]
        if len(segments) < 2:
            raise ValueError(f"not a card route: {url!r}")
        pack, card = segments[-2], segments[-1]
        return self.derive(pack, card, dict(parse_qsl(parts.query)))
