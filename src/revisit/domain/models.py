"""
Domain models for spaced-repetition scheduling.

These are plain data structures with no I/O. The only behaviour they carry
is validation of their own invariants.
"""

from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .clock import utc_now
from .constants import (
    DEFAULT_DIFFICULTY,
    INITIAL_EASINESS_FACTOR,
    KINDERGARTEN,
    MAX_QUALITY,
    MAX_REVIEW_HISTORY,
    MIN_EASINESS_FACTOR,
    MIN_QUALITY,
    PASSING_QUALITY,
)
from .errors import ValidationError


class CardStatus(str, Enum):
    """Scheduling state of a card. RETIRED is terminal."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    MASTERED = "mastered"
    RETIRED = "retired"

    @property
    def is_terminal(self) -> bool:
        return self is CardStatus.RETIRED


def validate_quality(quality: Any) -> int:
    """Return quality unchanged if it is an int in 0..5, else raise ValidationError."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValidationError(f"quality must be an integer 0-5, got {quality!r}")
    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise ValidationError(f"quality must be between 0 and 5, got {quality}")
    return quality


def normalize_grade_level(grade: Any) -> int:
    """
    Normalize a grade level to an int. Kindergarten ("K") becomes 0.

    Grades outside K-12 are kept as-is; the scheduler falls back to the
    default interval table for them.
    """
    if isinstance(grade, bool):
        raise ValidationError(f"invalid grade level: {grade!r}")
    if isinstance(grade, int):
        return grade
    if isinstance(grade, str):
        value = grade.strip().upper()
        if value == "K":
            return KINDERGARTEN
        try:
            return int(value)
        except ValueError:
            pass
    raise ValidationError(f"invalid grade level: {grade!r}")


@dataclass(frozen=True)
class ReviewRecord:
    """
    A single entry of a card's review log.

    Attributes:
        timestamp: When the review happened.
        quality: Quality rating given (0-5).
        time_spent: Seconds the student spent on the item.
        correct: Whether the answer was correct.
        interval: Interval assigned by this review (days).
        easiness_factor: Easiness factor after this review.
    """

    timestamp: datetime
    quality: int
    time_spent: float
    correct: bool
    interval: int
    easiness_factor: float


class ReviewHistory:
    """
    Capped append-only log of review records. Oldest entries drop first.
    """

    def __init__(self, records: Iterable[ReviewRecord] = (), maxlen: int = MAX_REVIEW_HISTORY):
        self._records: deque[ReviewRecord] = deque(records, maxlen=maxlen)

    @property
    def maxlen(self) -> int:
        return self._records.maxlen or MAX_REVIEW_HISTORY

    def append(self, record: ReviewRecord) -> None:
        self._records.append(record)

    @property
    def latest(self) -> ReviewRecord | None:
        return self._records[-1] if self._records else None

    def to_list(self) -> list[ReviewRecord]:
        return list(self._records)

    def __iter__(self) -> Iterator[ReviewRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> ReviewRecord:
        return self._records[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ReviewHistory):
            return list(self._records) == list(other._records)
        if isinstance(other, list):
            return list(self._records) == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"ReviewHistory({len(self._records)} records)"


@dataclass(eq=True)
class Card:
    """
    One unit of knowledge tracked for one student.

    Identity fields (id, student_id, topic_id, subject, grade_level,
    question_id, concept_text) never change after creation. Scheduling
    fields are mutated only by the scheduler and the explicit reset
    operation.
    """

    id: str
    student_id: str
    topic_id: str | None = None
    subject: str | None = None
    grade_level: int = KINDERGARTEN

    # Content references (opaque to the engine)
    question_id: str | None = None
    concept_text: str | None = None
    difficulty: int = DEFAULT_DIFFICULTY  # 1-10, informational only

    # SM-2 parameters
    easiness_factor: float = INITIAL_EASINESS_FACTOR
    interval: int = 0  # days
    repetitions: int = 0  # consecutive successful reviews

    status: CardStatus = CardStatus.NEW

    # Timing
    created_at: datetime = field(default_factory=utc_now)
    last_reviewed_at: datetime | None = None
    next_review_at: datetime = field(default_factory=utc_now)
    retired_at: datetime | None = None

    # Performance tracking
    review_history: ReviewHistory = field(default_factory=ReviewHistory)
    total_reviews: int = 0
    successful_reviews: int = 0

    def __post_init__(self):
        self.grade_level = normalize_grade_level(self.grade_level)
        try:
            self.status = CardStatus(self.status)
        except ValueError as e:
            raise ValidationError(f"unknown card status: {self.status!r}") from e
        if not isinstance(self.review_history, ReviewHistory):
            self.review_history = ReviewHistory(self.review_history)

        if self.easiness_factor < MIN_EASINESS_FACTOR:
            raise ValidationError(
                f"easiness factor must be >= {MIN_EASINESS_FACTOR}, got {self.easiness_factor}"
            )
        if self.interval < 0 or self.repetitions < 0:
            raise ValidationError("interval and repetitions must be non-negative")
        if not 1 <= self.difficulty <= 10:
            raise ValidationError(f"difficulty must be between 1 and 10, got {self.difficulty}")

    def is_due(self, now: datetime) -> bool:
        return self.status is not CardStatus.RETIRED and self.next_review_at <= now

    def days_until_review(self, now: datetime) -> float:
        """Negative when overdue."""
        return (self.next_review_at - now).total_seconds() / 86400.0


@dataclass(frozen=True)
class Performance:
    """
    Outcome of answering one card.

    `correct` defaults to whether the quality counts as a pass.
    """

    quality: int
    time_spent: float = 0.0
    correct: bool | None = None

    def __post_init__(self):
        validate_quality(self.quality)
        if isinstance(self.time_spent, bool) or not isinstance(self.time_spent, (int, float)):
            raise ValidationError(f"time_spent must be a number, got {self.time_spent!r}")
        if self.time_spent < 0:
            raise ValidationError(f"time_spent must be non-negative, got {self.time_spent}")
        if self.correct is None:
            object.__setattr__(self, "correct", self.quality >= PASSING_QUALITY)
        elif not isinstance(self.correct, bool):
            raise ValidationError(f"correct must be a boolean, got {self.correct!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Performance":
        """Build from a raw payload such as {"quality": 4, "timeSpent": 12, "correct": True}."""
        if not isinstance(data, Mapping):
            raise ValidationError("performance payload must be a mapping")
        if "quality" not in data:
            raise ValidationError("performance payload is missing 'quality'")
        time_spent = data.get("time_spent", data.get("timeSpent", 0.0))
        return cls(
            quality=data["quality"],
            time_spent=0.0 if time_spent is None else time_spent,
            correct=data.get("correct"),
        )


@dataclass(frozen=True)
class ReviewResult:
    """Scheduling outcome of a single review."""

    card_id: str
    next_review_at: datetime
    interval: int
    status: CardStatus
    easiness_factor: float

    @classmethod
    def from_card(cls, card: Card) -> "ReviewResult":
        return cls(
            card_id=card.id,
            next_review_at=card.next_review_at,
            interval=card.interval,
            status=card.status,
            easiness_factor=card.easiness_factor,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "next_review_at": self.next_review_at.isoformat(),
            "interval": self.interval,
            "status": self.status.value,
            "easiness_factor": self.easiness_factor,
        }
