# Poll card. Votes arrive through the webhook from an external form service
# and are pushed live to every open copy of the poll.
from server_components.card_utils.card import WebhookResult

name = "Poll"
description = "Ask a question and watch the votes come in live."
inputs = {
    "question": {"type": "string", "description": "Question to ask", "required": True},
}

client_state_support = True


async def get_card_data(inputs, state):
    state = state or {"votes": {}}
    total = sum(state["votes"].values())
    return {"question": inputs.get("question"), "votes": state["votes"], "total": total}, state


async def web_hook(payload):
    # payload: {"question": "...", "votes": {"yes": 3, "no": 1}}
    question = payload.get("question") if isinstance(payload, dict) else None
    if not question:
        return WebhookResult(error="payload has no question")
    votes = payload.get("votes") or {}
    return WebhookResult(url_params={"question": question}, state={"votes": votes})
