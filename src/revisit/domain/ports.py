"""
Ports (interfaces) for card persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod

from .clock import Clock, utc_now
from .models import Card


class CardRepository(ABC):
    """
    Port for loading and saving cards.

    Implementations:
        - InMemoryCardRepository: Process-local dict, used in tests and the default server.
        - JsonCardRepository: One JSON document per student on disk.
    """

    @abstractmethod
    def load_cards(self, student_id: str) -> list[Card]:
        """
        Load every card belonging to a student.

        Raises:
            StorageError: If the underlying store cannot be read.
        """
        pass

    @abstractmethod
    def load_card(self, card_id: str) -> Card:
        """
        Load a single card by id.

        Raises:
            NotFoundError: If no card has this id.
            StorageError: If the underlying store cannot be read.
        """
        pass

    @abstractmethod
    def save_card(self, card: Card) -> None:
        """
        Insert or replace a card.

        Raises:
            StorageError: If the write fails.
        """
        pass


__all__ = ["CardRepository", "Clock", "utc_now"]
