"""
Metrics calculator for review statistics over a student's cards.

This is a pure computation module with no I/O.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from revisit.domain.constants import (
    DEFAULT_CALENDAR_DAYS,
    INITIAL_EASINESS_FACTOR,
    MAX_QUALITY,
    MIN_EASINESS_FACTOR,
    UPCOMING_WINDOW_DAYS,
)
from revisit.domain.models import Card, CardStatus


@dataclass
class ReviewStats:
    """
    Aggregate counters for a set of cards.
    """

    total: int = 0
    by_status: dict[str, int] = field(
        default_factory=lambda: {status.value: 0 for status in CardStatus}
    )
    due_today: int = 0
    due_this_week: int = 0  # due within the window but not yet due
    average_easiness_factor: float = 0.0
    total_reviews: int = 0
    success_rate: float = 0.0  # percent

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            **self.by_status,
            "due_today": self.due_today,
            "due_this_week": self.due_this_week,
            "average_easiness_factor": self.average_easiness_factor,
            "total_reviews": self.total_reviews,
            "success_rate": self.success_rate,
        }


@dataclass
class DaySchedule:
    date: date
    count: int
    cards: list[dict]

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "count": self.count, "cards": self.cards}


class MetricsCalculator:
    """
    Computes derived metrics from cards.

    Stateless and side-effect free.
    """

    def review_stats(
        self, cards: Iterable[Card], now: datetime, window_days: int = UPCOMING_WINDOW_DAYS
    ) -> ReviewStats:
        stats = ReviewStats()
        week_end = now + timedelta(days=window_days)

        ef_sum = 0.0
        successful = 0
        for card in cards:
            stats.total += 1
            stats.by_status[card.status.value] += 1
            ef_sum += card.easiness_factor
            successful += card.successful_reviews
            stats.total_reviews += card.total_reviews

            if card.status is CardStatus.RETIRED:
                continue
            if card.next_review_at <= now:
                stats.due_today += 1
            elif card.next_review_at <= week_end:
                stats.due_this_week += 1

        if stats.total:
            stats.average_easiness_factor = ef_sum / stats.total
        if stats.total_reviews:
            stats.success_rate = successful / stats.total_reviews * 100
        return stats

    def upcoming_reviews(
        self, cards: Iterable[Card], now: datetime, days: int = DEFAULT_CALENDAR_DAYS
    ) -> list[DaySchedule]:
        """
        Calendar of reviews for the next `days` dates, starting today.

        Retired cards are skipped. Overdue cards are not on the calendar.
        """
        start = now.date()
        schedule: dict[date, list[dict]] = {
            start + timedelta(days=i): [] for i in range(max(days, 0))
        }

        for card in cards:
            if card.status is CardStatus.RETIRED:
                continue
            day = card.next_review_at.date()
            if day in schedule:
                schedule[day].append(
                    {
                        "card_id": card.id,
                        "topic_id": card.topic_id,
                        "subject": card.subject,
                        "status": card.status.value,
                    }
                )

        return [DaySchedule(date=d, count=len(c), cards=c) for d, c in schedule.items()]

    def mastery(self, card: Card) -> int:
        """
        Mastery score 0-100.

        50% average quality, 30% repetitions (saturating at 10),
        20% position of the EF between the floor and its initial value.
        """
        qualities = [r.quality for r in card.review_history]
        average_quality = sum(qualities) / len(qualities) if qualities else 0.0

        quality_score = average_quality / MAX_QUALITY * 100
        repetition_score = min(100.0, card.repetitions / 10 * 100)
        ef_span = INITIAL_EASINESS_FACTOR - MIN_EASINESS_FACTOR
        ef_score = min(100.0, (card.easiness_factor - MIN_EASINESS_FACTOR) / ef_span * 100)

        score = quality_score * 0.5 + repetition_score * 0.3 + ef_score * 0.2
        return min(100, max(0, round(score)))
