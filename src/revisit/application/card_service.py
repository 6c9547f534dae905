"""
Card Service: application layer orchestrator.

Coordinates the repository, the scheduler and the due selector for every
card-level operation.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from revisit.domain.clock import Clock, utc_now
from revisit.domain.constants import (
    ARCHIVE_AFTER_DAYS,
    DEFAULT_CALENDAR_DAYS,
    DEFAULT_DIFFICULTY,
    DEFAULT_DUE_LIMIT,
    PASSING_QUALITY,
)
from revisit.domain.errors import (
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from revisit.domain.models import Card, CardStatus, Performance, ReviewResult
from revisit.domain.ports import CardRepository
from revisit.domain.session import NextSessionInfo

from .due_selector import DueSelector
from .id_service import generate_card_id
from .locks import KeyedLock
from .scheduler import Scheduler
from .stats import DaySchedule, MetricsCalculator, ReviewStats

logger = logging.getLogger(__name__)


class CardService:
    """
    Application service for card scheduling.

    Depends on the CardRepository abstraction, not a concrete adapter.

    Storage policy:
        - Read failures are logged as warnings and treated as an empty set.
        - Write failures are logged and re-raised as StorageError. The mutated
          card is kept in memory and served to later reads until a save succeeds.
    """

    def __init__(
        self,
        repository: CardRepository,
        scheduler: Scheduler | None = None,
        selector: DueSelector | None = None,
        calculator: MetricsCalculator | None = None,
        clock: Clock = utc_now,
        archive_after_days: int = ARCHIVE_AFTER_DAYS,
        due_limit: int = DEFAULT_DUE_LIMIT,
    ):
        """
        Args:
            repository: The repository (port) for loading and saving cards.
            scheduler: Optional custom scheduler; uses default if not provided.
            selector: Optional custom due selector; uses default if not provided.
            calculator: Optional custom metrics calculator.
            clock: Time source shared with the default scheduler and selector.
            archive_after_days: Default age threshold for the archival sweep.
            due_limit: Default cap on due-card queries.
        """
        self._repo = repository
        self._clock = clock
        self.scheduler = scheduler or Scheduler(clock=clock)
        self.selector = selector or DueSelector(clock=clock)
        self._calc = calculator or MetricsCalculator()
        self.archive_after_days = archive_after_days
        self.due_limit = due_limit
        self._locks = KeyedLock()
        self._unsaved: dict[str, Card] = {}

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _save(self, card: Card) -> None:
        try:
            self._repo.save_card(card)
        except StorageError as e:
            self._unsaved[card.id] = card
            logger.error(f"Failed to save card {card.id}: {e}")
            raise
        self._unsaved.pop(card.id, None)

    def _load_student_cards(self, student_id: str) -> list[Card]:
        try:
            cards = self._repo.load_cards(student_id)
        except StorageError as e:
            logger.warning(f"Could not load cards for student {student_id}: {e}")
            cards = []

        merged = {c.id: c for c in cards}
        for card in self._unsaved.values():
            if card.student_id == student_id:
                merged[card.id] = card
        return list(merged.values())

    @property
    def pending_writes(self) -> list[str]:
        """Ids of cards whose last save failed."""
        return list(self._unsaved)

    def flush(self) -> int:
        """Retry saving cards whose last write failed. Returns how many were saved."""
        saved = 0
        for card in list(self._unsaved.values()):
            try:
                self._save(card)
                saved += 1
            except StorageError:
                continue
        return saved

    # ------------------------------------------------------------------
    # Card lifecycle
    # ------------------------------------------------------------------

    def add_card(
        self,
        student_id: str,
        *,
        topic_id: str | None = None,
        subject: str | None = None,
        grade_level: int | str = 0,
        question_id: str | None = None,
        concept_text: str | None = None,
        difficulty: int | None = None,
        card_id: str | None = None,
    ) -> Card:
        """
        Create a new card due immediately and save it.

        Raises:
            ValidationError: Invalid grade or difficulty.
            InvalidStateError: `card_id` is already taken.
        """
        if card_id is not None and self._exists(card_id):
            raise InvalidStateError(f"Card {card_id} already exists")

        now = self._clock()
        card = Card(
            id=card_id or generate_card_id(),
            student_id=student_id,
            topic_id=topic_id,
            subject=subject,
            grade_level=grade_level,
            question_id=question_id,
            concept_text=concept_text,
            difficulty=DEFAULT_DIFFICULTY if difficulty is None else difficulty,
            created_at=now,
            next_review_at=now,
        )
        self._save(card)
        logger.debug(f"Added card {card.id} for student {student_id}")
        return card

    def add_cards_from_topic(
        self,
        student_id: str,
        subject: str,
        topic_id: str,
        grade_level: int | str,
        questions: Iterable[Mapping[str, Any]],
    ) -> list[Card]:
        """
        Bulk-create cards once a student has covered a topic.

        Each question is a mapping with `id`, `text` and optional `difficulty`.
        """
        cards = [
            self.add_card(
                student_id,
                topic_id=topic_id,
                subject=subject,
                grade_level=grade_level,
                question_id=q.get("id"),
                concept_text=q.get("text"),
                difficulty=q.get("difficulty"),
            )
            for q in questions
        ]
        logger.info(f"Added {len(cards)} cards for {student_id} from topic {topic_id}")
        return cards

    def schedule_initial_review(
        self,
        student_id: str,
        question_id: str,
        *,
        subject: str | None = None,
        topic_id: str | None = None,
        grade_level: int | str = 0,
        concept_text: str | None = None,
        initial_quality: int = PASSING_QUALITY,
    ) -> Card:
        """
        Create a card for a concept just learned and apply its first review.

        If the student already has a card for this question it is returned unchanged.
        """
        for existing in self._load_student_cards(student_id):
            if existing.question_id == question_id:
                return existing

        card = Card(
            id=generate_card_id(),
            student_id=student_id,
            topic_id=topic_id,
            subject=subject,
            grade_level=grade_level,
            question_id=question_id,
            concept_text=concept_text,
            created_at=self._clock(),
        )
        with self._locks.hold(card.id):
            self.scheduler.review(card, initial_quality, card.grade_level)
            self._save(card)
        return card

    def _exists(self, card_id: str) -> bool:
        try:
            self.get_card(card_id)
        except NotFoundError:
            return False
        return True

    def get_card(self, card_id: str) -> Card:
        """
        Raises:
            NotFoundError: If the card does not exist.
        """
        if card_id in self._unsaved:
            return self._unsaved[card_id]
        return self._repo.load_card(card_id)

    def list_cards(
        self,
        student_id: str,
        *,
        subject: str | None = None,
        topic_id: str | None = None,
        status: CardStatus | str | None = None,
    ) -> list[Card]:
        cards = self._load_student_cards(student_id)
        if subject is not None:
            cards = [c for c in cards if c.subject == subject]
        if topic_id is not None:
            cards = [c for c in cards if c.topic_id == topic_id]
        if status is not None:
            try:
                wanted = CardStatus(status)
            except ValueError as e:
                raise ValidationError(f"unknown card status: {status!r}") from e
            cards = [c for c in cards if c.status is wanted]
        return cards

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def review_card(self, card_id: str, performance: Performance | Mapping[str, Any]) -> ReviewResult:
        """
        Apply a review to a stored card and persist it.

        Raises:
            ValidationError: Malformed performance.
            NotFoundError: Unknown card.
            InvalidStateError: Card is retired.
            StorageError: The card was rescheduled but could not be saved.
        """
        if not isinstance(performance, Performance):
            performance = Performance.from_mapping(performance)

        with self._locks.hold(card_id):
            card = self.get_card(card_id)
            result = self.scheduler.review(
                card,
                performance.quality,
                card.grade_level,
                time_spent=performance.time_spent,
                correct=performance.correct,
            )
            self._save(card)
        return result

    def get_due_cards(
        self, student_id: str, subject: str | None = None, limit: int | None = None
    ) -> list[Card]:
        limit = self.due_limit if limit is None else limit
        cards = self._load_student_cards(student_id)
        return self.selector.get_due_cards(cards, now=self._clock(), subject=subject, limit=limit)

    def archive_mastered_cards(self, student_id: str, days_old: int | None = None) -> int:
        """Run the archival sweep for one student. Returns the number of cards retired."""
        days_old = self.archive_after_days if days_old is None else days_old
        now = self._clock()

        archived = 0
        for candidate in self._load_student_cards(student_id):
            if candidate.status is not CardStatus.MASTERED:
                continue
            with self._locks.hold(candidate.id):
                # Re-read under the lock so a concurrent review is not overwritten
                try:
                    card = self.get_card(candidate.id)
                except NotFoundError:
                    continue
                if self.selector.archive_mastered_cards([card], now=now, days_old=days_old):
                    self._save(card)
                    archived += 1
        return archived

    def reset_card(self, card_id: str) -> Card:
        with self._locks.hold(card_id):
            card = self.get_card(card_id)
            self.selector.reset_card(card, now=self._clock())
            self._save(card)
        return card

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_review_stats(self, student_id: str, subject: str | None = None) -> ReviewStats:
        cards = self.list_cards(student_id, subject=subject)
        return self._calc.review_stats(cards, self._clock())

    def get_upcoming_reviews(
        self, student_id: str, days: int = DEFAULT_CALENDAR_DAYS
    ) -> list[DaySchedule]:
        return self._calc.upcoming_reviews(
            self._load_student_cards(student_id), self._clock(), days=days
        )

    def get_mastery(self, card_id: str) -> int:
        return self._calc.mastery(self.get_card(card_id))

    def next_session_info(self, student_id: str, subject: str | None = None) -> NextSessionInfo:
        cards = self.list_cards(student_id, subject=subject)
        now = self._clock()
        due = self.selector.get_due_cards(cards, now=now, limit=1)
        stats = self._calc.review_stats(cards, now)

        if due:
            next_review_at = due[0].next_review_at
        else:
            upcoming = [c.next_review_at for c in cards if c.status is not CardStatus.RETIRED]
            next_review_at = min(upcoming) if upcoming else None

        return NextSessionInfo(
            has_due_cards=bool(due),
            due_count=stats.due_today,
            upcoming_week=stats.due_this_week,
            next_review_at=next_review_at,
        )
