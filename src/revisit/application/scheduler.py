"""
Modified SM-2 scheduler.

Differences from textbook SM-2:
1. Intervals come from a per-grade table instead of the fixed 1 / 6 / I*EF chain.
2. From the third successful repetition the table entry is scaled by the new EF.
3. A failed review brings the card back half a day later instead of tomorrow.
"""

import logging
import math
from datetime import datetime, timedelta

from revisit.domain.clock import Clock, utc_now
from revisit.domain.constants import (
    DEFAULT_INTERVALS,
    FAILED_REVIEW_DELAY_DAYS,
    GRADE_INTERVALS,
    MASTERY_MIN_EASINESS,
    MASTERY_MIN_REPETITIONS,
    MIN_EASINESS_FACTOR,
    PASSING_QUALITY,
)
from revisit.domain.errors import InvalidStateError, ValidationError
from revisit.domain.models import (
    Card,
    CardStatus,
    ReviewRecord,
    ReviewResult,
    normalize_grade_level,
    validate_quality,
)

logger = logging.getLogger(__name__)


def update_easiness_factor(
    easiness_factor: float, quality: int, ceiling: float | None = None
) -> float:
    """
    SM-2 easiness update: EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)).

    Floored at 1.3; capped at `ceiling` only when one is configured.
    """
    miss = 5 - quality
    new_ef = max(MIN_EASINESS_FACTOR, easiness_factor + (0.1 - miss * (0.08 + miss * 0.02)))
    if ceiling is not None:
        new_ef = min(new_ef, ceiling)
    return new_ef


def interval_table_for(grade_level) -> tuple[int, ...]:
    """Interval table for a grade; unknown grades get the default table."""
    try:
        grade = normalize_grade_level(grade_level)
    except ValidationError:
        return DEFAULT_INTERVALS
    return GRADE_INTERVALS.get(grade, DEFAULT_INTERVALS)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_quality(
    correct: bool, confidence: float, time_spent: float, expected_time: float
) -> int:
    """
    Translate raw answer data into the 0-5 quality scale.

    Incorrect answers score 0-2 by how confident the student was.
    Correct answers score 3-5 by confidence and speed relative to expected_time.
    """
    if not correct:
        if confidence > 0.5:
            return 2
        if confidence > 0.2:
            return 1
        return 0

    if expected_time <= 0:
        raise ValidationError(f"expected_time must be positive, got {expected_time}")

    time_ratio = time_spent / expected_time
    if confidence >= 0.9 and time_ratio <= 0.7:
        return 5
    if confidence >= 0.8 and time_ratio <= 1.0:
        return 4
    return 3


class Scheduler:
    """
    Computes new scheduling fields for a card after a review.

    Stateless apart from its policy (EF ceiling) and clock.
    """

    def __init__(self, max_easiness_factor: float | None = None, clock: Clock = utc_now):
        self.max_easiness_factor = max_easiness_factor
        self._clock = clock

    def review(
        self,
        card: Card,
        quality: int,
        grade_level: int | str | None = None,
        *,
        time_spent: float = 0.0,
        correct: bool | None = None,
        now: datetime | None = None,
    ) -> ReviewResult:
        """
        Apply one review to `card` in place and return the scheduling result.

        Args:
            card: The card being reviewed. Mutated.
            quality: Recall quality 0-5.
            grade_level: Grade used for the interval table; defaults to the card's.
            time_spent: Seconds spent answering, for the review log.
            correct: Whether the answer was correct; defaults to quality >= 3.
            now: Review time; defaults to the scheduler's clock.

        Raises:
            ValidationError: quality outside 0..5.
            InvalidStateError: the card is retired.
        """
        validate_quality(quality)
        if card.status is CardStatus.RETIRED:
            raise InvalidStateError(f"Card {card.id} is retired; reset it before reviewing")

        now = now or self._clock()
        if correct is None:
            correct = quality >= PASSING_QUALITY
        grade = card.grade_level if grade_level is None else grade_level
        intervals = interval_table_for(grade)

        card.easiness_factor = update_easiness_factor(
            card.easiness_factor, quality, self.max_easiness_factor
        )

        if quality < PASSING_QUALITY:
            # Failed recall: start over, see it again later today
            card.repetitions = 0
            card.interval = 0
            card.status = CardStatus.LEARNING
            card.next_review_at = now + timedelta(days=FAILED_REVIEW_DELAY_DAYS)
        else:
            card.repetitions += 1

            if card.repetitions == 1:
                card.interval = intervals[0]
                card.status = CardStatus.LEARNING
            elif card.repetitions == 2:
                card.interval = intervals[1]
                card.status = CardStatus.LEARNING
            else:
                base = intervals[min(card.repetitions - 1, len(intervals) - 1)]
                card.interval = _round_half_up(base * card.easiness_factor)
                card.status = CardStatus.REVIEW

                if (
                    card.repetitions >= MASTERY_MIN_REPETITIONS
                    and card.easiness_factor >= MASTERY_MIN_EASINESS
                ):
                    card.status = CardStatus.MASTERED

            card.next_review_at = now + timedelta(days=card.interval)

        card.last_reviewed_at = now
        card.review_history.append(
            ReviewRecord(
                timestamp=now,
                quality=quality,
                time_spent=time_spent,
                correct=correct,
                interval=card.interval,
                easiness_factor=card.easiness_factor,
            )
        )
        card.total_reviews += 1
        if correct:
            card.successful_reviews += 1

        logger.debug(
            f"Reviewed {card.id} q={quality}: status={card.status.value} "
            f"interval={card.interval}d ef={card.easiness_factor:.2f}"
        )

        return ReviewResult.from_card(card)
