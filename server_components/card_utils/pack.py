# card packs and the card registry.
# Cards are resolved once, at load time, into a registry keyed by
# (pack, card). Nothing resolves card code by path per request.
from typing import Dict, Iterator, List, Optional

from .card import Card


class CardPack:
    """A named collection of cards.

    Hidden packs are still resolvable (webhooks reach them) but the catalog
    never lists their cards.
    """

    def __init__(self, pack_name: str, friendly_name: Optional[str] = None, hidden: bool = False):
        self.pack_name = pack_name
        self.friendly_name = friendly_name or pack_name
        self.hidden = hidden
        self.cards: Dict[str, Card] = {}

    def add_card(self, card: Card) -> None:
        if card.pack != self.pack_name:
            raise ValueError(f"card {card.card!r} belongs to pack {card.pack!r}, not {self.pack_name!r}")
        self.cards[card.card] = card

    def __len__(self):
        return len(self.cards)


class CardRegistry:
    def __init__(self):
        self._packs: Dict[str, CardPack] = {}

    def add_pack(self, pack: CardPack) -> None:
        self._packs[pack.pack_name] = pack

    def register(self, card: Card, hidden: bool = False) -> Card:
        """Register a single card, creating its pack on first use."""
        pack = self._packs.get(card.pack)
        if pack is None:
            pack = CardPack(card.pack, hidden=hidden)
            self._packs[card.pack] = pack
        pack.add_card(card)
        return card

    def resolve(self, pack_name: str, card_name: str) -> Optional[Card]:
        pack = self._packs.get(pack_name)
        if pack is None:
            return None
        return pack.cards.get(card_name)

    def packs(self) -> List[CardPack]:
        return list(self._packs.values())

    def visible_cards(self) -> Iterator[Card]:
        for pack in self._packs.values():
            if pack.hidden:
                continue
            yield from pack.cards.values()

    def __len__(self):
        return sum(len(p) for p in self._packs.values())
