name = "Counter"
description = "Counts how many times it has been shown."
inputs = {
    "label": {"type": "string", "description": "What is being counted"},
}


def get_card_data(inputs, state):
    count = (state or {}).get("count", 0) + 1
    return {"label": inputs.get("label", "views"), "count": count}, {"count": count}
