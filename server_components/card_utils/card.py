# card module contract.
# A Card wraps one authored card module and the capabilities it declares:
# `get_card_data` (data generation), `web_hook` (webhook) and
# `client_state_support` (realtime sync eligibility). All are optional.
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from server_components.server_classes import CardDescriptor


@dataclass(frozen=True)
class WebhookResult:
    """What a webhook capability hands back: an error, or url params plus state."""
    url_params: Optional[Dict[str, Any]] = None
    state: Any = None
    error: Optional[str] = None


def coerce_webhook_result(value: Any) -> WebhookResult:
    """Accept a WebhookResult, an (error, url_params, state) tuple or None.

    url_params must be a mapping (or None) since it becomes the instance key's
    query string.
    """
    if isinstance(value, WebhookResult):
        result = value
    elif value is None:
        result = WebhookResult()
    elif isinstance(value, tuple) and len(value) == 3:
        error, url_params, state = value
        result = WebhookResult(url_params=url_params, state=state, error=str(error) if error else None)
    else:
        raise TypeError(f"web_hook returned {type(value).__name__}, expected WebhookResult or (error, url_params, state)")

    if result.url_params is not None and not isinstance(result.url_params, Mapping):
        raise TypeError(f"web_hook url_params must be a mapping, got {type(result.url_params).__name__}")
    return result


async def _call(fn: Callable, *args):
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Card:
    def __init__(
        self,
        pack: str,
        card: str,
        name: Optional[str] = None,
        description: str = "",
        icon: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        get_card_data: Optional[Callable] = None,
        web_hook: Optional[Callable] = None,
        client_state_support: bool = False,
        base_url: str = "",
    ):
        self.pack = pack
        self.card = card
        self.get_card_data = get_card_data
        self.web_hook = web_hook
        self.client_state_support = bool(client_state_support)

        card_url = f"{base_url}/{pack}/{card}"
        self.descriptor = CardDescriptor(
            pack=pack,
            card=card,
            name=name or card,
            description=description or "",
            icon=icon or f"{card_url}/icon.png",
            base_url=card_url,
            inputs=inputs or {},
        )

    @classmethod
    def from_module(cls, pack: str, card: str, module: Any, base_url: str = "") -> "Card":
        return cls(
            pack=pack,
            card=card,
            name=getattr(module, "name", None),
            description=getattr(module, "description", ""),
            icon=getattr(module, "icon", None),
            inputs=getattr(module, "inputs", None),
            get_card_data=getattr(module, "get_card_data", None),
            web_hook=getattr(module, "web_hook", None),
            client_state_support=getattr(module, "client_state_support", False),
            base_url=base_url,
        )

    @property
    def has_webhook(self) -> bool:
        return callable(self.web_hook)

    @property
    def has_card_data(self) -> bool:
        return callable(self.get_card_data)

    async def invoke_webhook(self, payload: Any) -> WebhookResult:
        """Run the webhook capability. Exceptions from the card propagate."""
        return coerce_webhook_result(await _call(self.web_hook, payload))

    async def invoke_card_data(self, inputs: Dict[str, Any], state: Any):
        """Run the data-generation capability; returns (view_model, new_state).

        Entry point for the card renderer, which lives outside this service: it
        loads the stored state, calls this and saves the new state back.
        """
        result = await _call(self.get_card_data, inputs, state)
        if isinstance(result, tuple):
            view_model, new_state = result
        else:
            view_model, new_state = result, state
        return view_model, new_state

    def __repr__(self):
        return f"Card({self.pack}/{self.card})"
