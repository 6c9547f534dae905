"""
Session-scoped models. Sessions are ephemeral and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .models import Card, CardStatus, ReviewResult


class SessionState(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class SessionResult:
    """One answered card inside a session."""

    card_id: str
    quality: int
    time_spent: float
    correct: bool
    result: ReviewResult
    reviewed_at: datetime


@dataclass(frozen=True)
class SessionStats:
    total_cards: int
    completed_cards: int
    correct: int
    accuracy: float  # percent
    average_quality: float
    duration_minutes: float
    cards_per_minute: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cards": self.total_cards,
            "completed_cards": self.completed_cards,
            "correct": self.correct,
            "accuracy": self.accuracy,
            "average_quality": self.average_quality,
            "duration_minutes": self.duration_minutes,
            "cards_per_minute": self.cards_per_minute,
        }


@dataclass(frozen=True)
class NextSessionInfo:
    """Forward-looking summary returned when a session closes."""

    has_due_cards: bool
    due_count: int
    upcoming_week: int
    next_review_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_due_cards": self.has_due_cards,
            "due_count": self.due_count,
            "upcoming_week": self.upcoming_week,
            "next_review_at": self.next_review_at.isoformat() if self.next_review_at else None,
        }


@dataclass
class ReviewSession:
    session_id: str
    student_id: str
    subject: str | None
    cards: list[Card]
    started_at: datetime
    state: SessionState = SessionState.IN_PROGRESS
    completed_cards: int = 0
    results: list[SessionResult] = field(default_factory=list)
    last_activity_at: datetime | None = None
    completed_at: datetime | None = None
    duration_minutes: float | None = None
    stats: SessionStats | None = None

    def __post_init__(self):
        if self.last_activity_at is None:
            self.last_activity_at = self.started_at

    @property
    def total_cards(self) -> int:
        return len(self.cards)

    @property
    def is_complete(self) -> bool:
        return self.completed_cards >= self.total_cards

    def find_card(self, card_id: str) -> Card | None:
        for card in self.cards:
            if card.id == card_id:
                return card
        return None

    def replace_card(self, card: Card) -> None:
        """Swap in the current state of a card already in the session."""
        for i, existing in enumerate(self.cards):
            if existing.id == card.id:
                self.cards[i] = card
                return

    def count_status(self, status: CardStatus) -> int:
        return sum(1 for c in self.cards if c.status is status)


@dataclass(frozen=True)
class SessionReviewOutcome:
    result: ReviewResult
    is_complete: bool
    session: ReviewSession


@dataclass(frozen=True)
class SessionCompletion:
    stats: SessionStats
    next_session: NextSessionInfo
    session: ReviewSession
