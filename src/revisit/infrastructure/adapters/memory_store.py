"""
In-memory card repository.

Cards are stored in their serialized form so every load hands out a fresh
object, the same way a real store would.
"""

import threading
from typing import Any

from revisit.domain.errors import NotFoundError
from revisit.domain.models import Card
from revisit.domain.ports import CardRepository

from .codec import card_from_dict, card_to_dict


class InMemoryCardRepository(CardRepository):
    def __init__(self, cards: list[Card] | None = None):
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        for card in cards or []:
            self.save_card(card)

    def load_cards(self, student_id: str) -> list[Card]:
        with self._lock:
            records = [r for r in self._records.values() if r["student_id"] == student_id]
        return [card_from_dict(r) for r in records]

    def load_card(self, card_id: str) -> Card:
        with self._lock:
            record = self._records.get(card_id)
        if record is None:
            raise NotFoundError(f"Card {card_id} not found")
        return card_from_dict(record)

    def save_card(self, card: Card) -> None:
        record = card_to_dict(card)
        with self._lock:
            self._records[card.id] = record

    def __len__(self) -> int:
        return len(self._records)
