"""Card listing, lookup and pagination over the card registry."""

import math
from typing import Any, List, Optional

from server_components.config import get_version
from server_components.server_classes import CardDescriptor, CardPage

from .pack import CardRegistry

PAGE_SIZE = 20


def _parse_page(page: Any) -> int:
    # absent, falsy or unparseable -> first page
    if not page:
        return 1
    try:
        return int(page)
    except (TypeError, ValueError):
        return 1


def paginate(results: List[CardDescriptor], page: Any = None) -> CardPage:
    """Window `results` to one page of PAGE_SIZE.

    Out of range pages (including negative ones) are empty, never an error.
    """
    page = _parse_page(page)
    total = len(results)
    page_count = math.ceil(total / PAGE_SIZE)

    cards = []
    if 1 <= page <= page_count:
        start = (page - 1) * PAGE_SIZE
        cards = [c.summary() for c in results[start:start + PAGE_SIZE]]

    return CardPage(
        version=get_version(),
        total=total,
        page=page,
        pageCount=page_count,
        perPage=PAGE_SIZE,
        cards=cards,
    )


class CardCatalog:
    def __init__(self, registry: CardRegistry):
        self.registry = registry

    def cards(self, filter: Optional[str] = None) -> List[CardDescriptor]:
        """Visible cards ordered by (pack, card).

        `filter` is a case-insensitive substring matched against the card's
        name and description.
        """
        needle = (filter or "").lower()
        found = []
        for card in self.registry.visible_cards():
            descriptor = card.descriptor
            if needle and needle not in descriptor.name.lower() and needle not in descriptor.description.lower():
                continue
            found.append(descriptor)
        found.sort(key=lambda d: (d.pack, d.card))
        return found

    def count(self) -> int:
        return sum(1 for _ in self.registry.visible_cards())

    def card(self, pack: str, card: str) -> Optional[CardDescriptor]:
        # hidden packs are not part of the catalog
        for p in self.registry.packs():
            if p.pack_name == pack and not p.hidden:
                found = p.cards.get(card)
                return found.descriptor if found else None
        return None
