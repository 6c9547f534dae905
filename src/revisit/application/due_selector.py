"""
Due selector: picks the cards a student should review now.

Also hosts the two maintenance operations that move cards outside the
review path: the archival sweep and the re-learning reset.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from revisit.domain.clock import Clock, utc_now
from revisit.domain.constants import (
    ARCHIVE_AFTER_DAYS,
    ARCHIVE_MIN_REPETITIONS,
    DEFAULT_DUE_LIMIT,
    INITIAL_EASINESS_FACTOR,
)
from revisit.domain.models import Card, CardStatus

logger = logging.getLogger(__name__)

# Tie-break among equally overdue cards: new cards first
STATUS_PRIORITY = {
    CardStatus.NEW: 0,
    CardStatus.LEARNING: 1,
    CardStatus.REVIEW: 2,
    CardStatus.MASTERED: 3,
}


class DueSelector:
    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def get_due_cards(
        self,
        cards: Iterable[Card],
        *,
        now: datetime | None = None,
        subject: str | None = None,
        limit: int = DEFAULT_DUE_LIMIT,
    ) -> list[Card]:
        """
        Return due cards ordered most overdue first, truncated to `limit`.

        A card is due when it is not retired and next_review_at <= now.
        """
        now = now or self._clock()
        if limit <= 0:
            return []

        due = [
            c for c in cards if c.is_due(now) and (subject is None or c.subject == subject)
        ]
        due.sort(key=lambda c: (c.next_review_at - now, STATUS_PRIORITY[c.status]))
        return due[:limit]

    def archive_mastered_cards(
        self,
        cards: Iterable[Card],
        *,
        now: datetime | None = None,
        days_old: int = ARCHIVE_AFTER_DAYS,
    ) -> list[Card]:
        """
        Retire mastered cards with enough repetitions that have not been
        reviewed for more than `days_old` days. Returns the cards retired.
        """
        now = now or self._clock()
        cutoff = now - timedelta(days=days_old)

        retired: list[Card] = []
        for card in cards:
            if card.status is not CardStatus.MASTERED:
                continue
            if card.repetitions < ARCHIVE_MIN_REPETITIONS:
                continue
            if card.last_reviewed_at is None or card.last_reviewed_at >= cutoff:
                continue

            card.status = CardStatus.RETIRED
            card.retired_at = now
            retired.append(card)

        if retired:
            logger.info(f"Archived {len(retired)} mastered cards (older than {days_old} days)")
        return retired

    def reset_card(self, card: Card, *, now: datetime | None = None) -> Card:
        """
        Send a card back to `new` for deliberate re-learning.

        Review history and counters are kept.
        """
        now = now or self._clock()
        card.easiness_factor = INITIAL_EASINESS_FACTOR
        card.interval = 0
        card.repetitions = 0
        card.status = CardStatus.NEW
        card.next_review_at = now
        card.retired_at = None
        logger.info(f"Reset card {card.id} for re-learning")
        return card
